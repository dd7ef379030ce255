"""MarketEngine — owns every piece of simulation state and its mutators.

Composes, leaf-first:
  PriceProcess → EventInjector → SessionClock → CircuitBreaker →
  TraderAccount (OrderBook + SettlementLedger + PerformanceRecorder)

Tick order while OPEN:
  1. release settled sale proceeds
  2. advance every instrument one candle
  3. circuit breaker check (a halt ends the tick)
  4. arm / evaluate / fill active orders
  5. record a performance sample per account
then every attached account is persisted to the ledger store.

All mutators take the engine lock, so the scheduler and API threads never
interleave a pass. `now_ns` is optional everywhere; when omitted the
injected clock is read.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

import numpy as np

from tradesim.config.settings import SimulationSettings
from tradesim.core.data_types import (
    Candle,
    ControlSignal,
    Fill,
    ManualEventSignal,
    OrderRequest,
    OrderResult,
    Trader,
)
from tradesim.core.event_bus import EventBus, make_notice
from tradesim.core.types import (
    ControlAction,
    EventType,
    NoticeLevel,
    SessionStatus,
)
from tradesim.execution.account import TraderAccount
from tradesim.market.catalog import build_instruments, load_catalog
from tradesim.market.event_injector import EventInjector
from tradesim.market.instrument import CatalogEntry, Instrument
from tradesim.market.price_process import PriceProcess, market_inputs
from tradesim.market.session_clock import SessionClock
from tradesim.persistence.control_channel import ControlChannel
from tradesim.persistence.ledger_store import InMemoryLedgerStore, LedgerStore, StaleLedgerError
from tradesim.persistence.snapshot import account_to_snapshot, restore_account
from tradesim.risk.circuit_breaker import CircuitBreaker, equal_weighted_index

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TickResult:
    timestamp_ns: int
    candles: dict[str, Candle] = field(default_factory=dict)
    fills: list[Fill] = field(default_factory=list)
    settled: float = 0.0
    halted: bool = False


class MarketEngine:
    """The simulation. One instance per market."""

    def __init__(
        self,
        settings: SimulationSettings | None = None,
        catalog: list[CatalogEntry] | None = None,
        store: LedgerStore | None = None,
        control_channel: ControlChannel | None = None,
        event_bus: EventBus | None = None,
        rng: np.random.Generator | None = None,
        price_process: PriceProcess | None = None,
        clock: Callable[[], int] = time.time_ns,
        currency: str = "GHS",
    ) -> None:
        self._settings = settings if settings is not None else SimulationSettings()
        self._settings.validate()
        self._pending_settings: SimulationSettings | None = None
        self._clock_fn = clock
        self._currency = currency
        self._lock = threading.RLock()

        self._rng = rng if rng is not None else np.random.default_rng(self._settings.seed)
        self._event_bus = event_bus if event_bus is not None else EventBus()
        self._store = store if store is not None else InMemoryLedgerStore()
        self._control = control_channel

        entries = catalog if catalog is not None else load_catalog()
        self._instruments: dict[str, Instrument] = build_instruments(
            entries, history_capacity=self._settings.history_candles
        )
        self._price_process = price_process if price_process is not None else PriceProcess(rng=self._rng)
        self._injector = EventInjector(
            frequency=self._settings.event_frequency,
            min_duration_seconds=self._settings.event_min_duration_seconds,
            max_duration_seconds=self._settings.event_max_duration_seconds,
            freshness_seconds=self._settings.control_freshness_seconds,
            rng=self._rng,
            event_bus=self._event_bus,
        )
        self._session = SessionClock(freshness_seconds=self._settings.control_freshness_seconds)
        self._breaker = CircuitBreaker(
            self._session,
            enabled=self._settings.circuit_breaker_enabled,
            threshold=self._settings.circuit_breaker_threshold,
            halt_seconds=self._settings.circuit_breaker_halt_seconds,
            event_bus=self._event_bus,
        )
        self._accounts: dict[str, TraderAccount] = {}
        # Set while an explicit open (admin or control signal) is in progress
        self._explicit_open = False

        self._session.register_transition_callback(self._on_transition)
        if self._control is not None:
            self._control.subscribe_control(self._on_control_signal)
            self._control.subscribe_events(self._on_manual_event)
            # Join a running market: replay the channel's latest messages, freshness permitting
            if self._control.last_control is not None:
                self.apply_control_signal(self._control.last_control)
            if self._control.last_event is not None:
                self.apply_manual_event(self._control.last_event)

        logger.info(
            "MarketEngine ready: %d instruments, speed=%s, settlement=%s",
            len(self._instruments),
            self._settings.simulation_speed.value,
            self._settings.settlement_cycle.value,
        )

    # -- read-only views ----------------------------------------------------

    @property
    def settings(self) -> SimulationSettings:
        return self._settings

    @property
    def pending_settings(self) -> SimulationSettings | None:
        return self._pending_settings

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def session(self) -> SessionClock:
        return self._session

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def injector(self) -> EventInjector:
        return self._injector

    @property
    def instruments(self) -> dict[str, Instrument]:
        return self._instruments

    @property
    def accounts(self) -> dict[str, TraderAccount]:
        return dict(self._accounts)

    def now_ns(self) -> int:
        return self._clock_fn()

    def prices(self) -> dict[str, float]:
        return {symbol: inst.price for symbol, inst in self._instruments.items()}

    def index(self) -> float:
        return equal_weighted_index(inst.price for inst in self._instruments.values())

    # -- accounts -----------------------------------------------------------

    def attach_account(self, key: str) -> TraderAccount:
        """Load (or create) the ledger for `key` and include it in every tick."""
        with self._lock:
            account = self._accounts.get(key)
            if account is None:
                account = self._load_account(key)
                self._accounts[key] = account
                logger.info("Account %s attached (version %d)", key, account.version)
            return account

    def detach_account(self, key: str) -> None:
        with self._lock:
            account = self._accounts.get(key)
            if account is not None:
                self._persist(account)
                self._accounts.pop(key, None)

    def account(self, key: str) -> TraderAccount:
        """An attached account. Raises KeyError when not attached."""
        return self._accounts[key]

    def read_account(self, key: str, view: Callable[[TraderAccount], T]) -> T:
        """Apply `view` to a ledger under the engine lock without attaching it.

        Stored but unattached ledgers are read from a throwaway copy. Raises
        KeyError when the key is neither attached nor stored.
        """
        with self._lock:
            account = self._accounts.get(key)
            if account is None:
                data, version = self._store.load(key)
                if data is None:
                    raise KeyError(key)
                account = restore_account(key, data, self._settings, None, version, self._currency)
            return view(account)

    def _load_account(self, key: str) -> TraderAccount:
        data, version = self._store.load(key)
        return restore_account(key, data, self._settings, self._event_bus, version, self._currency)

    def _persist(self, account: TraderAccount) -> None:
        try:
            account.version = self._store.save(account.key, account_to_snapshot(account), account.version)
        except StaleLedgerError as exc:
            logger.warning(
                "Ledger %s changed underneath us (expected v%d, found v%d) — reloading",
                account.key,
                exc.expected,
                exc.actual,
            )
            self._accounts[account.key] = self._load_account(account.key)

    def _persist_all(self) -> None:
        for account in list(self._accounts.values()):
            self._persist(account)

    # -- scheduler-driven mutators -----------------------------------------

    def tick(self, now_ns: int | None = None) -> TickResult | None:
        """One price step. No-op unless the session is OPEN."""
        with self._lock:
            now = self._resolve(now_ns)
            if not self._session.is_open:
                return None

            settled = 0.0
            for account in self._accounts.values():
                released = account.ledger.release_settled(now)
                if released > 0:
                    settled += released
                    self._notify(
                        EventType.CASH_SETTLED,
                        NoticeLevel.SUCCESS,
                        f"{self._currency} {released:.2f} from a sale has settled.",
                        now,
                        key=account.key,
                    )

            drift, volatility = market_inputs(
                self._settings.base_drift,
                self._settings.base_volatility,
                self._settings.interest_rate,
                self._injector.active_event,
            )
            candles = self._price_process.advance_all(self._instruments, drift, volatility, now)

            if self._breaker.check(self.index(), now):
                self._persist_all()
                return TickResult(timestamp_ns=now, candles=candles, settled=settled, halted=True)

            prices = self.prices()
            fills: list[Fill] = []
            for account in self._accounts.values():
                fills.extend(account.book.process(prices, now))
                account.record_performance(prices, now)

            self._persist_all()
            return TickResult(timestamp_ns=now, candles=candles, fills=fills, settled=settled)

    def scan_events(self, now_ns: int | None = None):
        """Event-injector pass (OPEN only). Returns the active event, if any."""
        with self._lock:
            now = self._resolve(now_ns)
            if not self._session.is_open:
                return self._injector.active_event
            return self._injector.scan(now)

    def poll_timers(self, now_ns: int | None = None) -> bool:
        """Resume from a circuit-breaker halt once it has elapsed."""
        with self._lock:
            return self._breaker.poll(self._resolve(now_ns))

    # -- trader mutators ----------------------------------------------------

    def place_order(
        self,
        key: str,
        trader: Trader,
        request: OrderRequest,
        now_ns: int | None = None,
    ) -> OrderResult:
        with self._lock:
            now = self._resolve(now_ns)
            account = self.attach_account(key)
            result = account.book.place_order(
                request,
                trader,
                self._instruments.get(request.symbol),
                self._session.is_open,
                now,
            )
            if result.accepted:
                self._persist(account)
            return result

    def cancel_order(self, key: str, order_id: str, now_ns: int | None = None) -> OrderResult:
        with self._lock:
            now = self._resolve(now_ns)
            account = self.attach_account(key)
            result = account.book.cancel_order(order_id, now)
            if result.accepted:
                self._persist(account)
            return result

    # -- session control ----------------------------------------------------

    def open_session(self, now_ns: int | None = None) -> bool:
        """Open (or re-open from a halt). No-op when already OPEN."""
        with self._lock:
            self._explicit_open = True
            try:
                return self._session.open(self._resolve(now_ns))
            finally:
                self._explicit_open = False

    def close_session(self, now_ns: int | None = None) -> bool:
        """Close from OPEN or HALTED. Every active order expires."""
        with self._lock:
            return self._session.close(self._resolve(now_ns))

    def apply_control_signal(self, signal: ControlSignal, now_ns: int | None = None) -> bool:
        with self._lock:
            now = self._resolve(now_ns)
            if signal.action == ControlAction.OPEN:
                self._explicit_open = True
            try:
                return self._session.apply_control(signal, now)
            finally:
                self._explicit_open = False

    def apply_manual_event(self, signal: ManualEventSignal) -> None:
        """Queue a manual market event; the next scan decides whether it is still fresh."""
        with self._lock:
            self._injector.request_manual(signal)

    def open_session_admin(self, now_ns: int | None = None) -> bool:
        """Admin open: ignored while OPEN or HALTED, otherwise open and broadcast."""
        with self._lock:
            now = self._resolve(now_ns)
            if self._session.status in (SessionStatus.OPEN, SessionStatus.HALTED):
                return False
            opened = self.open_session(now)
            self._broadcast(ControlSignal(action=ControlAction.OPEN, timestamp_ns=now))
            return opened

    def close_session_admin(self, now_ns: int | None = None) -> bool:
        """Admin close: only from OPEN, then broadcast."""
        with self._lock:
            now = self._resolve(now_ns)
            if self._session.status != SessionStatus.OPEN:
                return False
            closed = self.close_session(now)
            self._broadcast(ControlSignal(action=ControlAction.CLOSE, timestamp_ns=now))
            return closed

    def trigger_event_admin(self, event_name: str, now_ns: int | None = None) -> bool:
        """Request a named market event. Returns False for unknown names."""
        if event_name not in self._injector.template_names():
            return False
        signal = ManualEventSignal(event_name=event_name, timestamp_ns=self._resolve(now_ns))
        if self._control is not None:
            self._control.publish_event(signal)
        else:
            self.apply_manual_event(signal)
        return True

    def _broadcast(self, signal: ControlSignal) -> None:
        if self._control is not None:
            self._control.publish_control(signal)

    def _on_control_signal(self, signal: ControlSignal) -> None:
        self.apply_control_signal(signal)

    def _on_manual_event(self, signal: ManualEventSignal) -> None:
        self.apply_manual_event(signal)

    def _on_transition(self, old: SessionStatus, new: SessionStatus, now_ns: int) -> None:
        if new == SessionStatus.OPEN:
            if old == SessionStatus.HALTED and not self._explicit_open:
                # Timed auto-resume: same session, breaker stays tripped
                return
            self._apply_pending_settings()
            self._breaker.arm(self.index())
            logger.info(
                "Session %d open — breaker baseline %.4f", self._session.session_number, self._breaker.open_index
            )
            self._notify(
                EventType.SESSION_OPENED,
                NoticeLevel.INFO,
                "The market is now open for trading!",
                now_ns,
                session_number=self._session.session_number,
            )
        elif new == SessionStatus.CLOSED:
            self._injector.clear()
            self._breaker.disarm()
            expired = 0
            for account in self._accounts.values():
                expired += len(account.book.expire_all(now_ns))
            self._persist_all()
            self._notify(
                EventType.SESSION_CLOSED,
                NoticeLevel.INFO,
                "The market has closed. Pending orders have expired.",
                now_ns,
                expired_orders=expired,
            )

    # -- settings -----------------------------------------------------------

    def update_settings(self, **changes: Any) -> SimulationSettings:
        """Stage new settings. They take effect at the next session open."""
        with self._lock:
            base = self._pending_settings if self._pending_settings is not None else self._settings
            self._pending_settings = base.with_updates(**changes)
            logger.info("Settings staged for next open: %s", sorted(changes))
            return self._pending_settings

    def _apply_pending_settings(self) -> None:
        if self._pending_settings is None:
            return
        settings, self._pending_settings = self._pending_settings, None
        self._settings = settings
        self._injector.set_frequency(settings.event_frequency)
        self._injector.set_windows(
            settings.event_min_duration_seconds,
            settings.event_max_duration_seconds,
            settings.control_freshness_seconds,
        )
        self._session.set_freshness(settings.control_freshness_seconds)
        for instrument in self._instruments.values():
            instrument.resize_history(settings.history_candles)
        self._breaker.configure(
            settings.circuit_breaker_enabled,
            settings.circuit_breaker_threshold,
            settings.circuit_breaker_halt_seconds,
        )
        for account in self._accounts.values():
            account.book.configure(settings.commission_fee, settings.arming_delay_ns)
            account.ledger.set_settlement_delay(settings.settlement_delay_ns)
            account.recorder.resize(settings.performance_samples)
        logger.info("Applied staged settings: %s", settings.to_dict())

    # -- admin ledger operations ------------------------------------------

    def adjust_cash(self, key: str, amount: float, now_ns: int | None = None) -> float:
        with self._lock:
            now = self._resolve(now_ns)
            account = self.attach_account(key)
            balance = account.ledger.adjust_cash(amount)
            self._persist(account)
            self._notify(
                EventType.LEDGER_ADJUSTED,
                NoticeLevel.INFO,
                f"Cash for {key} adjusted by {self._currency} {amount:.2f}.",
                now,
                key=key,
            )
            return balance

    def reset_ledger(self, key: str, now_ns: int | None = None) -> TraderAccount:
        """Replace a ledger with a fresh default one (starting capital, nothing held)."""
        with self._lock:
            now = self._resolve(now_ns)
            _, version = self._store.load(key)
            account = restore_account(key, None, self._settings, self._event_bus, version, self._currency)
            self._accounts[key] = account
            self._persist(account)
            logger.info("Ledger %s reset to %.2f", key, account.ledger.cash)
            self._notify(
                EventType.LEDGER_ADJUSTED,
                NoticeLevel.INFO,
                f"Ledger for {key} has been reset.",
                now,
                key=key,
            )
            return account

    def _all_accounts(self) -> list[TraderAccount]:
        """Attached accounts plus read-only copies of every other stored ledger."""
        accounts = dict(self._accounts)
        for key in self._store.keys():
            if key not in accounts:
                accounts[key] = self._load_account(key)
        return list(accounts.values())

    def leaderboard(self) -> list[dict[str, Any]]:
        with self._lock:
            prices = self.prices()
            rows = [
                {
                    "key": account.key,
                    "total_value": account.total_value(prices),
                    "profit_loss": account.profit_loss(prices),
                    "executed_trades": account.executed_trade_count(),
                }
                for account in self._all_accounts()
            ]
        rows.sort(key=lambda r: r["total_value"], reverse=True)
        for rank, row in enumerate(rows, start=1):
            row["rank"] = rank
        return rows

    def admin_summary(self) -> dict[str, Any]:
        board = self.leaderboard()
        return {
            "accounts": len(board),
            "total_aum": sum(r["total_value"] for r in board),
            "total_executed_trades": sum(r["executed_trades"] for r in board),
            "leaderboard": board,
        }

    # -- market views -------------------------------------------------------

    def instrument_views(self) -> list[dict[str, Any]]:
        with self._lock:
            return [inst.snapshot() for inst in self._instruments.values()]

    def instrument_detail(self, symbol: str) -> dict[str, Any] | None:
        """Instrument snapshot plus its candle history, or None when not listed."""
        with self._lock:
            inst = self._instruments.get(symbol)
            if inst is None:
                return None
            data = inst.snapshot()
            data["history"] = inst.history.to_records()
            return data

    def market_movers(self, count: int = 5) -> dict[str, list[dict[str, Any]]]:
        """Top gainers and losers by tick-over-tick percent change."""
        with self._lock:
            ranked = sorted(self._instruments.values(), key=lambda i: i.change_pct, reverse=True)
            gainers = [i.snapshot() for i in ranked if i.change_pct > 0][:count]
            losers = [i.snapshot() for i in reversed(ranked) if i.change_pct < 0][:count]
        return {"gainers": gainers, "losers": losers}

    def market_snapshot(self) -> dict[str, Any]:
        with self._lock:
            event = self._injector.active_event
            index = self.index()
            return {
                "status": self._session.status.value,
                "session_number": self._session.session_number,
                "index": index,
                "open_index": self._breaker.open_index,
                "drawdown": self._breaker.drawdown(index),
                "circuit_breaker": {
                    "enabled": self._settings.circuit_breaker_enabled,
                    "triggered": self._breaker.triggered,
                    "resume_at_ns": self._breaker.resume_at_ns,
                },
                "active_event": None if event is None else {
                    "title": event.title,
                    "description": event.description,
                    "drift_modifier": event.drift_modifier,
                    "volatility_modifier": event.volatility_modifier,
                    "expires_at_ns": event.expires_at_ns,
                },
                "instruments": [inst.snapshot() for inst in self._instruments.values()],
                "settings": self._settings.to_dict(),
                "tick_interval_seconds": self._settings.tick_interval_seconds,
            }

    # -- helpers ------------------------------------------------------------

    def _resolve(self, now_ns: int | None) -> int:
        return self._clock_fn() if now_ns is None else now_ns

    def _notify(self, event_type: EventType, level: NoticeLevel, text: str, now_ns: int, **extra: Any) -> None:
        self._event_bus.publish(make_notice(event_type, level, text, now_ns, "MarketEngine", **extra))
