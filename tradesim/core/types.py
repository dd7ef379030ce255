"""Core enums used across the trading simulator."""

from enum import Enum


class SessionStatus(Enum):
    PRE_MARKET = "PRE_MARKET"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    HALTED = "HALTED"


class TradeType(Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    TRAILING_STOP = "TRAILING_STOP"


class OrderStatus(Enum):
    PENDING = "PENDING"
    WORKING = "WORKING"
    EXECUTED = "EXECUTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


ACTIVE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.WORKING})
TERMINAL_STATUSES = frozenset({OrderStatus.EXECUTED, OrderStatus.CANCELLED, OrderStatus.EXPIRED})


class SimulationSpeed(Enum):
    SLOW = "Slow"
    NORMAL = "Normal"
    FAST = "Fast"


class SettlementCycle(Enum):
    T1 = "T+1"
    T2 = "T+2"
    T3 = "T+3"


class NoticeLevel(Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class ControlAction(Enum):
    OPEN = "OPEN"
    CLOSE = "CLOSE"


class EventType(Enum):
    SESSION_OPENED = "SESSION_OPENED"
    SESSION_CLOSED = "SESSION_CLOSED"
    CIRCUIT_BREAKER_HALT = "CIRCUIT_BREAKER_HALT"
    TRADING_RESUMED = "TRADING_RESUMED"
    MARKET_EVENT_STARTED = "MARKET_EVENT_STARTED"
    MARKET_EVENT_ENDED = "MARKET_EVENT_ENDED"
    ORDER_REJECTED = "ORDER_REJECTED"
    ORDER_EXECUTED = "ORDER_EXECUTED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_EXPIRED = "ORDER_EXPIRED"
    CASH_SETTLED = "CASH_SETTLED"
    LEDGER_ADJUSTED = "LEDGER_ADJUSTED"
