"""TradeSimState — Singleton that holds the live MarketEngine and provides API snapshots."""

from __future__ import annotations

import itertools
import threading
from collections import deque
from pathlib import Path
from typing import Any

from tradesim.config.config_manager import DEFAULT_CONFIG_PATH, ConfigManager
from tradesim.config.settings import SimulationSettings
from tradesim.core.data_types import Event, Order, OrderHistoryItem
from tradesim.engine.market_engine import MarketEngine
from tradesim.engine.scheduler import MarketScheduler
from tradesim.market.catalog import load_catalog
from tradesim.persistence.control_channel import ControlChannel
from tradesim.persistence.ledger_store import InMemoryLedgerStore, JsonFileLedgerStore, LedgerStore


class TradeSimState:
    """Singleton holding the engine, its scheduler, team map and recent notices."""

    _instance: TradeSimState | None = None
    _lock = threading.Lock()

    def __new__(cls) -> TradeSimState:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self.engine: MarketEngine | None = None
        self.scheduler: MarketScheduler | None = None
        self.control_channel = ControlChannel()
        self.run_scheduler = True
        # team_id -> leader trader_id
        self.teams: dict[str, str] = {}
        self.notices: deque[dict[str, Any]] = deque(maxlen=200)
        self._seq = itertools.count(1)
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def attach(self, engine: MarketEngine, timer_poll_seconds: float = 0.25) -> None:
        if self.engine is not None:
            self.engine.event_bus.unsubscribe_all(self._record_notice)
        self.engine = engine
        self.scheduler = MarketScheduler(engine, timer_poll_seconds=timer_poll_seconds)
        engine.event_bus.subscribe_all(self._record_notice)

    def build_engine(
        self,
        config_path: str | Path | None = None,
        profile: str | None = None,
        store_dir: str | Path | None = None,
        catalog_path: str | Path | None = None,
    ) -> MarketEngine:
        """Construct an engine from TOML config and attach it."""
        config = ConfigManager()
        if not config.is_loaded:
            config.load(config_path or DEFAULT_CONFIG_PATH, profile=profile)
        settings = SimulationSettings.from_config(config)
        store: LedgerStore = JsonFileLedgerStore(store_dir) if store_dir else InMemoryLedgerStore()
        engine = MarketEngine(
            settings=settings,
            catalog=load_catalog(catalog_path),
            store=store,
            control_channel=self.control_channel,
            currency=config.get("system.currency", "GHS"),
        )
        self.attach(engine, timer_poll_seconds=float(config.get("scheduler.timer_poll_seconds", 0.25)))
        return engine

    def _record_notice(self, event: Event) -> None:
        self.notices.append({
            "seq": next(self._seq),
            "type": event.type.value,
            "timestamp_ns": event.timestamp_ns,
            "source": event.source,
            **event.payload,
        })

    def notices_since(self, seq: int) -> list[dict[str, Any]]:
        return [n for n in list(self.notices) if n["seq"] > seq]

    # -- snapshots ----------------------------------------------------------

    def snapshot_account(self, key: str) -> dict[str, Any]:
        """Account summary. Raises KeyError for a ledger that was never created."""
        engine = self.engine

        def view(account):
            summary = account.summary(engine.prices())
            summary["version"] = account.version
            return summary

        return engine.read_account(key, view)

    def snapshot_orders(self, key: str) -> list[dict[str, Any]]:
        return self.engine.read_account(key, lambda a: [order_view(o) for o in a.book.active_orders])

    def snapshot_history(self, key: str) -> list[dict[str, Any]]:
        return self.engine.read_account(key, lambda a: [history_view(h) for h in a.book.history])

    def snapshot_performance(self, key: str) -> list[dict[str, Any]]:
        return self.engine.read_account(key, lambda a: [
            {"timestamp_ns": e.timestamp_ns, "portfolio_value": e.portfolio_value}
            for e in a.recorder.entries()
        ])


def order_view(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.order_id,
        "symbol": order.symbol,
        "name": order.name,
        "trade_type": order.trade_type.value,
        "order_type": order.order_type.value,
        "quantity": order.quantity,
        "status": order.status.value,
        "created_at_ns": order.created_at_ns,
        "submitted_at_ns": order.submitted_at_ns,
        "trader_id": order.trader_id,
        "trader_name": order.trader_name,
        "limit_price": order.limit_price,
        "trail_percent": order.trail_percent,
        "high_water_mark": order.high_water_mark,
        "trigger_price": order.trigger_price,
        "reserved_cash": order.reserved_cash,
    }


def history_view(item: OrderHistoryItem) -> dict[str, Any]:
    return {
        "order_id": item.order_id,
        "symbol": item.symbol,
        "name": item.name,
        "trade_type": item.trade_type.value,
        "order_type": item.order_type.value,
        "quantity": item.quantity,
        "final_status": item.final_status.value,
        "timestamp_ns": item.timestamp_ns,
        "trader_id": item.trader_id,
        "trader_name": item.trader_name,
        "price": item.price,
        "total": item.total,
        "commission": item.commission,
    }
