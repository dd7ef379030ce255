"""Price Process — discretized geometric Brownian motion, one candle per tick.

    logRet = (mu - 0.5 * sigma^2) * dt + sigma * z * sqrt(dt),  dt = 1/252
    mu     = base_drift - 0.5 * interest_rate + event_drift + instrument.trend
    sigma  = base_vol + event_vol + instrument.volatility

Every tick is one simulated trading day. Prices are quoted to 2 decimals
and floored at 0.01.
"""

from __future__ import annotations

import math

import numpy as np

from tradesim.core.data_types import Candle, MarketEvent
from tradesim.market.instrument import Instrument

TRADING_DAYS_PER_YEAR = 252
PRICE_FLOOR = 0.01
RANGE_SCALE = 0.1  # high/low excursion as a fraction of sigma


def market_inputs(
    base_drift: float,
    base_volatility: float,
    interest_rate: float,
    event: MarketEvent | None = None,
) -> tuple[float, float]:
    """Market-wide (drift, volatility) after interest-rate drag and the active event."""
    drift = base_drift - 0.5 * interest_rate
    volatility = base_volatility
    if event is not None:
        drift += event.drift_modifier
        volatility += event.volatility_modifier
    return drift, volatility


class PriceProcess:
    """Generates OHLC candles from a seeded numpy Generator."""

    def __init__(
        self,
        rng: np.random.Generator | None = None,
        dt: float = 1 / TRADING_DAYS_PER_YEAR,
        price_floor: float = PRICE_FLOOR,
    ) -> None:
        self._rng = rng if rng is not None else np.random.default_rng()
        self._dt = dt
        self._sqrt_dt = math.sqrt(dt)
        self._floor = price_floor

    @property
    def rng(self) -> np.random.Generator:
        return self._rng

    def standard_normal(self) -> float:
        """Box-Muller transform. U1 is drawn from (0, 1] so log() stays finite."""
        u1 = 1.0 - self._rng.random()
        u2 = self._rng.random()
        return math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)

    def advance(
        self,
        instrument: Instrument,
        market_drift: float,
        market_volatility: float,
        now_ns: int,
    ) -> Candle:
        """Step one instrument forward and append the resulting candle."""
        drift = market_drift + instrument.trend
        # Event modifiers can drive the sum negative
        sigma = max(0.0, market_volatility + instrument.volatility)
        z = self.standard_normal()

        log_return = (drift - 0.5 * sigma ** 2) * self._dt + sigma * z * self._sqrt_dt
        open_ = instrument.price
        close = max(self._floor, round(open_ * math.exp(log_return), 2))
        high = max(open_, close) * (1 + self._rng.random() * RANGE_SCALE * sigma)
        low = min(open_, close) * (1 - self._rng.random() * RANGE_SCALE * sigma)

        candle = Candle(
            timestamp_ns=now_ns,
            open=open_,
            high=round(high, 2),
            low=max(self._floor, round(low, 2)),
            close=close,
        )
        instrument.apply_candle(candle)
        return candle

    def advance_all(
        self,
        instruments: dict[str, Instrument],
        market_drift: float,
        market_volatility: float,
        now_ns: int,
    ) -> dict[str, Candle]:
        """Advance every instrument in catalog order."""
        return {
            symbol: self.advance(inst, market_drift, market_volatility, now_ns)
            for symbol, inst in instruments.items()
        }
