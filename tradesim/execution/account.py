"""Trader Account — one ledger key's cash, orders and equity curve.

A team shares one account keyed by its leader; every member places orders
against the same ledger, so reservations made by one member are visible to
the others' validation.
"""

from __future__ import annotations

from typing import Mapping

from tradesim.core.event_bus import EventBus
from tradesim.core.types import OrderStatus
from tradesim.execution.order_book import OrderBook
from tradesim.execution.performance_recorder import PerformanceRecorder
from tradesim.execution.settlement_ledger import SettlementLedger


class TraderAccount:
    """Ledger + order book + performance ring for a single ledger key."""

    def __init__(
        self,
        key: str,
        ledger: SettlementLedger,
        book: OrderBook,
        recorder: PerformanceRecorder,
        starting_capital: float,
        version: int = 0,
    ) -> None:
        self.key = key
        self.ledger = ledger
        self.book = book
        self.recorder = recorder
        self.starting_capital = starting_capital
        # Store version this in-memory copy was loaded from / last saved as
        self.version = version

    @classmethod
    def fresh(
        cls,
        key: str,
        starting_capital: float,
        settlement_delay_ns: int,
        commission_fee: float,
        arming_delay_ns: int,
        performance_samples: int = 100,
        event_bus: EventBus | None = None,
        currency: str = "GHS",
    ) -> TraderAccount:
        """Default ledger: all cash, nothing held, no orders."""
        ledger = SettlementLedger(cash=starting_capital, settlement_delay_ns=settlement_delay_ns)
        book = OrderBook(
            ledger,
            commission_fee=commission_fee,
            arming_delay_ns=arming_delay_ns,
            event_bus=event_bus,
            currency=currency,
        )
        return cls(
            key=key,
            ledger=ledger,
            book=book,
            recorder=PerformanceRecorder(capacity=performance_samples),
            starting_capital=starting_capital,
        )

    def total_value(self, prices: Mapping[str, float]) -> float:
        return self.ledger.total_value(prices)

    def profit_loss(self, prices: Mapping[str, float]) -> float:
        return self.total_value(prices) - self.starting_capital

    def record_performance(self, prices: Mapping[str, float], now_ns: int) -> float:
        value = self.total_value(prices)
        self.recorder.record(now_ns, value)
        return value

    def executed_trade_count(self) -> int:
        return sum(1 for item in self.book.history if item.final_status == OrderStatus.EXECUTED)

    def summary(self, prices: Mapping[str, float]) -> dict:
        """Flat view for the API and the leaderboard."""
        ledger = self.ledger
        holdings = [
            {
                "symbol": h.symbol,
                "quantity": h.quantity,
                "avg_cost": h.avg_cost,
                "price": prices.get(h.symbol),
                "market_value": h.quantity * prices.get(h.symbol, h.avg_cost),
                "reserved": self.book.reserved_shares(h.symbol),
            }
            for h in ledger.holdings.values()
        ]
        return {
            "key": self.key,
            "cash": ledger.cash,
            "held_commission": self.book.held_commission(),
            "unsettled_total": ledger.unsettled_total,
            "unsettled": [
                {"amount": item.amount, "settles_at_ns": item.settles_at_ns}
                for item in ledger.unsettled
            ],
            "holdings": holdings,
            "holdings_value": ledger.holdings_value(prices),
            "cost_basis": ledger.cost_basis(),
            "total_value": self.total_value(prices),
            "profit_loss": self.profit_loss(prices),
            "active_orders": len(self.book.active_orders),
        }
