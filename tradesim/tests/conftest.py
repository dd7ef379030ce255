"""Shared fixtures for TradeSim tests."""

from __future__ import annotations

import numpy as np
import pytest

from tradesim.config.config_manager import DEFAULT_CONFIG_PATH, ConfigManager
from tradesim.config.settings import NS_PER_SECOND, SimulationSettings
from tradesim.core.data_types import Candle, Trader
from tradesim.core.event_bus import EventBus
from tradesim.engine.market_engine import MarketEngine
from tradesim.execution.order_book import OrderBook
from tradesim.execution.settlement_ledger import SettlementLedger
from tradesim.market.instrument import CatalogEntry, Instrument
from tradesim.market.price_process import PriceProcess
from tradesim.persistence.ledger_store import InMemoryLedgerStore


CONFIG_PATH = str(DEFAULT_CONFIG_PATH)

SECOND = NS_PER_SECOND

# Small catalog: index = (10 + 20 + 30) / 3 = 20.0 at listing
TEST_CATALOG = [
    CatalogEntry("AAA", "Alpha Holdings", 10.00, 0.02, 0.0),
    CatalogEntry("BBB", "Beta Bank", 20.00, 0.02, 0.0),
    CatalogEntry("CCC", "Gamma Mining", 30.00, 0.02, 0.0),
]


class FakeClock:
    """Injectable engine clock."""

    def __init__(self, now_ns: int = 1_000 * SECOND) -> None:
        self.now_ns = now_ns

    def __call__(self) -> int:
        return self.now_ns

    def advance(self, seconds: float) -> int:
        self.now_ns += int(seconds * SECOND)
        return self.now_ns


class ScriptedPriceProcess(PriceProcess):
    """Closes come from a per-symbol script; unscripted symbols stay flat."""

    def __init__(self, script: dict[str, list[float]] | None = None) -> None:
        super().__init__(rng=np.random.default_rng(0))
        self.script = {symbol: list(prices) for symbol, prices in (script or {}).items()}

    def set_next(self, **prices: float) -> None:
        for symbol, price in prices.items():
            self.script.setdefault(symbol, []).insert(0, price)

    def advance(self, instrument, market_drift, market_volatility, now_ns):
        queue = self.script.get(instrument.symbol)
        close = queue.pop(0) if queue else instrument.price
        candle = Candle(
            timestamp_ns=now_ns,
            open=instrument.price,
            high=max(instrument.price, close),
            low=min(instrument.price, close),
            close=close,
        )
        instrument.apply_candle(candle)
        return candle


@pytest.fixture
def config():
    """Loaded ConfigManager with base config only."""
    ConfigManager.reset()
    cm = ConfigManager()
    cm.load(CONFIG_PATH)
    yield cm
    ConfigManager.reset()


@pytest.fixture
def settings():
    """Normal speed, T+2, 5-minute sessions, breaker at 7% / 30s."""
    return SimulationSettings(seed=42, event_frequency=0.0)


@pytest.fixture
def trader():
    return Trader(trader_id="u1", name="Ama")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def notices(event_bus):
    """Every event published on the bus, in order."""
    received = []
    event_bus.subscribe_all(received.append)
    return received


@pytest.fixture
def ledger():
    """100k cash, 10s settlement delay."""
    return SettlementLedger(cash=100_000.0, settlement_delay_ns=10 * SECOND)


@pytest.fixture
def book(ledger, event_bus):
    """0.5% fee, 5s arming delay."""
    return OrderBook(ledger, commission_fee=0.005, arming_delay_ns=5 * SECOND, event_bus=event_bus)


@pytest.fixture
def catalog():
    return list(TEST_CATALOG)


@pytest.fixture
def instruments(catalog):
    return {
        entry.symbol: Instrument.from_catalog(entry)
        for entry in catalog
    }


@pytest.fixture
def price_script():
    return ScriptedPriceProcess()


@pytest.fixture
def engine(settings, catalog, clock, event_bus, price_script):
    """Engine over the 3-symbol catalog with scripted prices and an in-memory store."""
    return MarketEngine(
        settings=settings,
        catalog=catalog,
        store=InMemoryLedgerStore(),
        event_bus=event_bus,
        price_process=price_script,
        clock=clock,
    )
