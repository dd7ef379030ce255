"""Dataclasses for trading simulator data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from tradesim.core.types import (
    ControlAction,
    EventType,
    NoticeLevel,
    OrderStatus,
    OrderType,
    TradeType,
)


@dataclass(frozen=True)
class Candle:
    """One OHLC bar produced by a price tick."""

    timestamp_ns: int
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class MarketEventTemplate:
    title: str
    description: str
    drift_modifier: float
    volatility_modifier: float


@dataclass(frozen=True)
class MarketEvent:
    """Market-wide shock that shifts drift/volatility until it expires."""

    title: str
    description: str
    drift_modifier: float
    volatility_modifier: float
    duration_seconds: float
    expires_at_ns: int

    def is_expired(self, now_ns: int) -> bool:
        return now_ns >= self.expires_at_ns


@dataclass(frozen=True)
class OrderRequest:
    """What a trader submits. Validated by the OrderBook before it becomes an Order."""

    symbol: str
    quantity: int
    trade_type: TradeType
    order_type: OrderType = OrderType.MARKET
    limit_price: float | None = None
    trail_percent: float | None = None


@dataclass(frozen=True)
class Trader:
    trader_id: str
    name: str


@dataclass
class Order:
    """A live (PENDING/WORKING) order owned by one ledger."""

    order_id: str
    symbol: str
    name: str
    trade_type: TradeType
    order_type: OrderType
    quantity: int
    status: OrderStatus
    created_at_ns: int
    submitted_at_ns: int
    trader_id: str
    trader_name: str
    limit_price: float | None = None
    trail_percent: float | None = None
    high_water_mark: float | None = None
    trigger_price: float | None = None
    reserved_cash: float = 0.0
    commission_hold: float = 0.0


@dataclass(frozen=True)
class OrderHistoryItem:
    """Immutable record of an order's terminal outcome."""

    order_id: str
    symbol: str
    name: str
    trade_type: TradeType
    order_type: OrderType
    quantity: int
    final_status: OrderStatus
    timestamp_ns: int
    trader_id: str
    trader_name: str
    price: float | None = None
    total: float | None = None
    commission: float | None = None


@dataclass(frozen=True)
class OrderResult:
    accepted: bool
    reason: str
    order: Order | None = None


@dataclass(frozen=True)
class Fill:
    order_id: str
    symbol: str
    trade_type: TradeType
    quantity: int
    price: float
    total: float
    commission: float
    trader_name: str


@dataclass
class Holding:
    symbol: str
    quantity: int
    avg_cost: float


@dataclass(frozen=True)
class UnsettledCashItem:
    amount: float
    settles_at_ns: int


@dataclass(frozen=True)
class PerformanceHistoryEntry:
    timestamp_ns: int
    portfolio_value: float


@dataclass(frozen=True)
class ControlSignal:
    """Cross-actor session control message."""

    action: ControlAction
    timestamp_ns: int


@dataclass(frozen=True)
class ManualEventSignal:
    """Cross-actor request to start a named market event."""

    event_name: str
    timestamp_ns: int


@dataclass(frozen=True)
class Event:
    """Event bus message."""

    type: EventType
    timestamp_ns: int
    source: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def level(self) -> NoticeLevel:
        return NoticeLevel(self.payload.get("level", NoticeLevel.INFO.value))

    @property
    def text(self) -> str:
        return self.payload.get("text", "")
