"""Settlement Ledger — cash, unsettled sale proceeds, and holdings cost basis.

Cash is *available* cash: BUY principal is debited at order placement, so a
fill only charges the commission. SELL proceeds (net of commission) sit in
the unsettled list until their settlement timestamp passes.
"""

from __future__ import annotations

import logging
from typing import Mapping

from tradesim.core.data_types import Holding, Order, UnsettledCashItem
from tradesim.core.types import TradeType

logger = logging.getLogger(__name__)


class SettlementLedger:
    """One ledger per trader (or per team, keyed by the leader)."""

    def __init__(
        self,
        cash: float,
        settlement_delay_ns: int,
        unsettled: list[UnsettledCashItem] | None = None,
        holdings: dict[str, Holding] | None = None,
    ) -> None:
        self._cash = cash
        self._settlement_delay_ns = settlement_delay_ns
        self._unsettled: list[UnsettledCashItem] = list(unsettled or [])
        self._holdings: dict[str, Holding] = dict(holdings or {})

    @property
    def cash(self) -> float:
        return self._cash

    @property
    def unsettled(self) -> list[UnsettledCashItem]:
        return list(self._unsettled)

    @property
    def holdings(self) -> dict[str, Holding]:
        return self._holdings

    @property
    def settlement_delay_ns(self) -> int:
        return self._settlement_delay_ns

    def set_settlement_delay(self, delay_ns: int) -> None:
        self._settlement_delay_ns = delay_ns

    def holding_quantity(self, symbol: str) -> int:
        holding = self._holdings.get(symbol)
        return holding.quantity if holding is not None else 0

    @property
    def unsettled_total(self) -> float:
        return sum(item.amount for item in self._unsettled)

    def holdings_value(self, prices: Mapping[str, float]) -> float:
        return sum(
            h.quantity * prices[h.symbol]
            for h in self._holdings.values()
            if h.symbol in prices
        )

    def total_value(self, prices: Mapping[str, float]) -> float:
        """cash + unsettled proceeds + marked-to-market holdings."""
        return self._cash + self.unsettled_total + self.holdings_value(prices)

    def cost_basis(self) -> float:
        return sum(h.quantity * h.avg_cost for h in self._holdings.values())

    # -- reservations -------------------------------------------------------

    def debit_reservation(self, amount: float) -> None:
        """Lock BUY principal at placement. Pre-validated by the order book."""
        self._cash -= amount

    def credit_reservation(self, amount: float) -> None:
        """Return a BUY reservation (cancel or expiry)."""
        self._cash += amount

    def adjust_cash(self, amount: float) -> float:
        """Admin cash adjustment. Returns the new balance."""
        self._cash += amount
        logger.info("Cash adjusted by %.2f → %.2f", amount, self._cash)
        return self._cash

    # -- fills & settlement -------------------------------------------------

    def apply_fill(self, order: Order, fill_price: float, commission: float, now_ns: int) -> float:
        """Book a fill. Returns the gross total (quantity × fill price)."""
        total = order.quantity * fill_price
        if order.trade_type == TradeType.BUY:
            self._cash -= commission
            existing = self._holdings.get(order.symbol)
            if existing is not None:
                quantity = existing.quantity + order.quantity
                cost = existing.avg_cost * existing.quantity + total
                existing.quantity = quantity
                existing.avg_cost = cost / quantity
            else:
                self._holdings[order.symbol] = Holding(
                    symbol=order.symbol,
                    quantity=order.quantity,
                    avg_cost=fill_price,
                )
        else:
            held = self.holding_quantity(order.symbol)
            if held < order.quantity:
                raise ValueError(f"Cannot sell {order.quantity} {order.symbol}, only {held} held")
            proceeds = total - commission
            self._unsettled.append(UnsettledCashItem(
                amount=proceeds,
                settles_at_ns=now_ns + self._settlement_delay_ns,
            ))
            existing = self._holdings[order.symbol]
            remaining = existing.quantity - order.quantity
            if remaining <= 0:
                del self._holdings[order.symbol]
            else:
                existing.quantity = remaining
        return total

    def release_settled(self, now_ns: int) -> float:
        """Credit every item whose settlement time has passed. Returns the amount."""
        due = [item for item in self._unsettled if now_ns >= item.settles_at_ns]
        if not due:
            return 0.0
        self._unsettled = [item for item in self._unsettled if now_ns < item.settles_at_ns]
        released = sum(item.amount for item in due)
        self._cash += released
        logger.debug("Settled %d item(s), %.2f credited", len(due), released)
        return released
