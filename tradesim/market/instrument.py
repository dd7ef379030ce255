"""Instrument — a listed stock with its live price and bounded candle history."""

from __future__ import annotations

from dataclasses import dataclass

from tradesim.core.data_types import Candle
from tradesim.core.ring_buffer import CANDLE_DTYPE, RingBuffer


@dataclass(frozen=True)
class CatalogEntry:
    """Static catalog row loaded once at engine construction."""

    symbol: str
    name: str
    price: float
    volatility: float
    trend: float


class Instrument:
    """Mutable market state for one symbol. Never deleted once listed."""

    def __init__(
        self,
        symbol: str,
        name: str,
        price: float,
        volatility: float,
        trend: float,
        history_capacity: int = 50,
        listed_at_ns: int = 0,
    ) -> None:
        self.symbol = symbol
        self.name = name
        self.price = price
        self.last_price = price
        self.volatility = volatility
        self.trend = trend
        self._history = RingBuffer(capacity=history_capacity, dtype=CANDLE_DTYPE)
        # Seed with a flat candle so charts always have a starting bar
        self._history.push(listed_at_ns, price, price, price, price)

    @classmethod
    def from_catalog(cls, entry: CatalogEntry, history_capacity: int = 50) -> Instrument:
        return cls(
            symbol=entry.symbol,
            name=entry.name,
            price=entry.price,
            volatility=entry.volatility,
            trend=entry.trend,
            history_capacity=history_capacity,
        )

    @property
    def history(self) -> RingBuffer:
        return self._history

    def resize_history(self, capacity: int) -> None:
        if capacity != self._history.capacity:
            self._history = self._history.resized(capacity)

    @property
    def change_pct(self) -> float:
        """Tick-over-tick change versus last_price."""
        if self.last_price <= 0:
            return 0.0
        return (self.price - self.last_price) / self.last_price

    def apply_candle(self, candle: Candle) -> None:
        """Record a new bar: last_price keeps the prior price, price takes the close."""
        self._history.push(candle.timestamp_ns, candle.open, candle.high, candle.low, candle.close)
        self.last_price = self.price
        self.price = candle.close

    def candles(self) -> list[Candle]:
        return [
            Candle(
                timestamp_ns=int(row["timestamp_ns"]),
                open=float(row["open"]),
                high=float(row["high"]),
                low=float(row["low"]),
                close=float(row["close"]),
            )
            for row in self._history.to_array()
        ]

    def snapshot(self) -> dict:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "price": self.price,
            "last_price": self.last_price,
            "change_pct": self.change_pct,
            "volatility": self.volatility,
            "trend": self.trend,
        }
