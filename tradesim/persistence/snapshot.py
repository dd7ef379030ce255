"""Ledger snapshots — TraderAccount ⇄ plain JSON-able dict.

Layout (camelCase keys; every timestamp is integer nanoseconds):

    {
      "portfolio": {"cash": float, "unsettledCash": [{amount, settlesAt}],
                    "holdings": {symbol: {symbol, quantity, avgCost}}},
      "activeOrders": [...],
      "orderHistory": [...],          # most recent first
      "performanceHistory": [{timestamp, portfolioValue}],
      "startingCapital": float,
      "timeUnit": "ns"
    }

Older snapshots are migrated on load; a snapshot that still cannot be
parsed is replaced by a fresh default ledger. Snapshots without the
``timeUnit`` marker were written with epoch-millisecond timestamps, which
are scaled to nanoseconds. SELL orders the restored holdings cannot cover
are cancelled on load.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from tradesim.config.settings import SimulationSettings
from tradesim.core.data_types import (
    Holding,
    Order,
    OrderHistoryItem,
    PerformanceHistoryEntry,
    UnsettledCashItem,
)
from tradesim.core.event_bus import EventBus
from tradesim.core.types import OrderStatus, OrderType, TradeType
from tradesim.execution.account import TraderAccount
from tradesim.execution.order_book import OrderBook
from tradesim.execution.performance_recorder import PerformanceRecorder
from tradesim.execution.settlement_ledger import SettlementLedger

logger = logging.getLogger(__name__)

TIME_UNIT = "ns"
NS_PER_MS = 1_000_000
# Anything below this is taken as milliseconds (1e14 ns is about a day after the epoch)
MS_THRESHOLD = 10**14


def default_snapshot(starting_capital: float) -> dict[str, Any]:
    return {
        "portfolio": {"cash": starting_capital, "unsettledCash": [], "holdings": {}},
        "activeOrders": [],
        "orderHistory": [],
        "performanceHistory": [],
        "startingCapital": starting_capital,
        "timeUnit": TIME_UNIT,
    }


def _to_ns(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and 0 < value < MS_THRESHOLD:
        return int(value * NS_PER_MS)
    return value


def _scale_timestamps(data: dict[str, Any]) -> None:
    for item in data["portfolio"]["unsettledCash"]:
        item["settlesAt"] = _to_ns(item.get("settlesAt"))
    for order in data["activeOrders"]:
        for field in ("createdAt", "submittedAt"):
            if field in order:
                order[field] = _to_ns(order[field])
    for row in (*data["orderHistory"], *data["performanceHistory"]):
        if "timestamp" in row:
            row["timestamp"] = _to_ns(row["timestamp"])


def migrate_snapshot(data: dict[str, Any]) -> dict[str, Any]:
    """Fill in fields that older snapshots lack. Returns a new dict."""
    data = copy.deepcopy(data)
    portfolio = data["portfolio"]
    if not isinstance(portfolio.get("unsettledCash"), list):
        portfolio["unsettledCash"] = []
    if not isinstance(portfolio.get("holdings"), dict):
        portfolio["holdings"] = {}
    for key in ("activeOrders", "orderHistory", "performanceHistory"):
        if not isinstance(data.get(key), list):
            data[key] = []
    if data.get("timeUnit") != TIME_UNIT:
        _scale_timestamps(data)
        data["timeUnit"] = TIME_UNIT
    for order in data["activeOrders"]:
        if not order.get("status"):
            order["status"] = OrderStatus.WORKING.value
        if not order.get("submittedAt"):
            order["submittedAt"] = order["createdAt"]
        if "reservedCash" not in order:
            # LIMIT reservations are recoverable; a MARKET reservation's price is lost
            if order.get("orderType") == OrderType.LIMIT.value and order.get("tradeType") == TradeType.BUY.value:
                order["reservedCash"] = order["quantity"] * order["limitPrice"]
            else:
                order["reservedCash"] = 0.0
    return data


# -- encode ------------------------------------------------------------------

def _order_to_dict(order: Order) -> dict[str, Any]:
    return {
        "id": order.order_id,
        "symbol": order.symbol,
        "name": order.name,
        "tradeType": order.trade_type.value,
        "orderType": order.order_type.value,
        "quantity": order.quantity,
        "status": order.status.value,
        "createdAt": order.created_at_ns,
        "submittedAt": order.submitted_at_ns,
        "traderId": order.trader_id,
        "traderName": order.trader_name,
        "limitPrice": order.limit_price,
        "trailPercent": order.trail_percent,
        "highWaterMark": order.high_water_mark,
        "triggerPrice": order.trigger_price,
        "reservedCash": order.reserved_cash,
        "commissionHold": order.commission_hold,
    }


def _history_to_dict(item: OrderHistoryItem) -> dict[str, Any]:
    return {
        "id": item.order_id,
        "symbol": item.symbol,
        "name": item.name,
        "tradeType": item.trade_type.value,
        "orderType": item.order_type.value,
        "quantity": item.quantity,
        "finalStatus": item.final_status.value,
        "timestamp": item.timestamp_ns,
        "traderId": item.trader_id,
        "traderName": item.trader_name,
        "price": item.price,
        "total": item.total,
        "commission": item.commission,
    }


def account_to_snapshot(account: TraderAccount) -> dict[str, Any]:
    ledger = account.ledger
    return {
        "portfolio": {
            "cash": ledger.cash,
            "unsettledCash": [
                {"amount": item.amount, "settlesAt": item.settles_at_ns} for item in ledger.unsettled
            ],
            "holdings": {
                symbol: {"symbol": h.symbol, "quantity": h.quantity, "avgCost": h.avg_cost}
                for symbol, h in ledger.holdings.items()
            },
        },
        "activeOrders": [_order_to_dict(o) for o in account.book.active_orders],
        "orderHistory": [_history_to_dict(h) for h in account.book.history],
        "performanceHistory": [
            {"timestamp": e.timestamp_ns, "portfolioValue": e.portfolio_value}
            for e in account.recorder.entries()
        ],
        "startingCapital": account.starting_capital,
        "timeUnit": TIME_UNIT,
    }


# -- decode ------------------------------------------------------------------

def _order_from_dict(row: dict[str, Any]) -> Order:
    return Order(
        order_id=row["id"],
        symbol=row["symbol"],
        name=row.get("name", row["symbol"]),
        trade_type=TradeType(row["tradeType"]),
        order_type=OrderType(row.get("orderType", OrderType.MARKET.value)),
        quantity=int(row["quantity"]),
        status=OrderStatus(row["status"]),
        created_at_ns=int(row["createdAt"]),
        submitted_at_ns=int(row["submittedAt"]),
        trader_id=row.get("traderId", ""),
        trader_name=row.get("traderName", ""),
        limit_price=row.get("limitPrice"),
        trail_percent=row.get("trailPercent"),
        high_water_mark=row.get("highWaterMark"),
        trigger_price=row.get("triggerPrice"),
        reserved_cash=float(row.get("reservedCash", 0.0)),
        commission_hold=float(row.get("commissionHold", 0.0)),
    )


def _history_from_dict(row: dict[str, Any]) -> OrderHistoryItem:
    return OrderHistoryItem(
        order_id=row["id"],
        symbol=row["symbol"],
        name=row.get("name", row["symbol"]),
        trade_type=TradeType(row["tradeType"]),
        order_type=OrderType(row.get("orderType", OrderType.MARKET.value)),
        quantity=int(row["quantity"]),
        final_status=OrderStatus(row["finalStatus"]),
        timestamp_ns=int(row["timestamp"]),
        trader_id=row.get("traderId", ""),
        trader_name=row.get("traderName", ""),
        price=row.get("price"),
        total=row.get("total"),
        commission=row.get("commission"),
    )


def account_from_snapshot(
    key: str,
    data: dict[str, Any],
    settings: SimulationSettings,
    event_bus: EventBus | None = None,
    version: int = 0,
    currency: str = "GHS",
) -> TraderAccount:
    """Rebuild an account. Raises on malformed data; see restore_account()."""
    data = migrate_snapshot(data)
    portfolio = data["portfolio"]

    ledger = SettlementLedger(
        cash=float(portfolio["cash"]),
        settlement_delay_ns=settings.settlement_delay_ns,
        unsettled=[
            UnsettledCashItem(amount=float(u["amount"]), settles_at_ns=int(u["settlesAt"]))
            for u in portfolio["unsettledCash"]
        ],
        holdings={
            symbol: Holding(symbol=symbol, quantity=int(h["quantity"]), avg_cost=float(h["avgCost"]))
            for symbol, h in portfolio["holdings"].items()
        },
    )
    active = [_order_from_dict(row) for row in data["activeOrders"]]
    for order in active:
        if order.status not in (OrderStatus.PENDING, OrderStatus.WORKING):
            raise ValueError(f"Active order {order.order_id} has terminal status {order.status.value}")
    book = OrderBook(
        ledger,
        commission_fee=settings.commission_fee,
        arming_delay_ns=settings.arming_delay_ns,
        event_bus=event_bus,
        active_orders=active,
        history=[_history_from_dict(row) for row in data["orderHistory"]],
        currency=currency,
    )
    dropped = book.drop_uncovered_sells()
    if dropped:
        logger.warning(
            "Ledger %s: cancelled %d sell order(s) not covered by holdings",
            key,
            len(dropped),
        )
    recorder = PerformanceRecorder(capacity=settings.performance_samples)
    recorder.load([
        PerformanceHistoryEntry(timestamp_ns=int(p["timestamp"]), portfolio_value=float(p["portfolioValue"]))
        for p in data["performanceHistory"]
    ])
    return TraderAccount(
        key=key,
        ledger=ledger,
        book=book,
        recorder=recorder,
        starting_capital=float(data.get("startingCapital", settings.starting_capital)),
        version=version,
    )


def restore_account(
    key: str,
    data: dict[str, Any] | None,
    settings: SimulationSettings,
    event_bus: EventBus | None = None,
    version: int = 0,
    currency: str = "GHS",
) -> TraderAccount:
    """Load a stored snapshot, falling back to a default ledger when absent or corrupt."""
    if data is not None:
        try:
            return account_from_snapshot(key, data, settings, event_bus, version, currency)
        except (KeyError, TypeError, ValueError, AttributeError):
            logger.exception("Corrupt ledger snapshot for %s — starting from a default ledger", key)

    account = TraderAccount.fresh(
        key=key,
        starting_capital=settings.starting_capital,
        settlement_delay_ns=settings.settlement_delay_ns,
        commission_fee=settings.commission_fee,
        arming_delay_ns=settings.arming_delay_ns,
        performance_samples=settings.performance_samples,
        event_bus=event_bus,
        currency=currency,
    )
    account.version = version
    return account
