"""Order Book — per-ledger order lifecycle and fill logic.

Lifecycle: PENDING → WORKING → EXECUTED | CANCELLED | EXPIRED (never reverses).

Placement gates (cheapest first, fail closed, no mutation on rejection):
  session open → instrument listed → order shape → funds / shares
BUY principal is reserved at placement (limit price for LIMIT, market price
otherwise); the commission estimate is held against later placements and
charged at fill. SELL quantity is reserved against the holding so two open
sells can never both claim the same shares.

Each tick, against the current tick's price only:
  1. PENDING orders arm after the routing delay and are evaluated on the same pass.
  2. MARKET fills at the price; LIMIT fills at the price once it crosses the
     limit; TRAILING_STOP ratchets its high-water mark and fills at the price
     when it falls to the trigger.
  3. A SELL the holdings no longer cover is cancelled instead of filled; a BUY
     whose commission exceeds the remaining cash is charged what is left.
"""

from __future__ import annotations

import logging
import uuid
from typing import Mapping

from tradesim.core.data_types import (
    Fill,
    Order,
    OrderHistoryItem,
    OrderRequest,
    OrderResult,
    Trader,
)
from tradesim.core.event_bus import EventBus, make_notice
from tradesim.core.types import (
    EventType,
    NoticeLevel,
    OrderStatus,
    OrderType,
    TradeType,
)
from tradesim.execution.settlement_ledger import SettlementLedger
from tradesim.market.instrument import Instrument

logger = logging.getLogger(__name__)


def _new_order_id() -> str:
    return f"ord_{uuid.uuid4().hex[:12]}"


def _history_item(order: Order, status: OrderStatus, now_ns: int, **fill) -> OrderHistoryItem:
    return OrderHistoryItem(
        order_id=order.order_id,
        symbol=order.symbol,
        name=order.name,
        trade_type=order.trade_type,
        order_type=order.order_type,
        quantity=order.quantity,
        final_status=status,
        timestamp_ns=now_ns,
        trader_id=order.trader_id,
        trader_name=order.trader_name,
        **fill,
    )


class OrderBook:
    """Active orders and terminal history for one ledger."""

    def __init__(
        self,
        ledger: SettlementLedger,
        commission_fee: float = 0.005,
        arming_delay_ns: int = 5_000_000_000,
        event_bus: EventBus | None = None,
        active_orders: list[Order] | None = None,
        history: list[OrderHistoryItem] | None = None,
        currency: str = "GHS",
    ) -> None:
        self._ledger = ledger
        self._fee = commission_fee
        self._arming_delay_ns = arming_delay_ns
        self._event_bus = event_bus
        self._active: list[Order] = list(active_orders or [])
        self._history: list[OrderHistoryItem] = list(history or [])
        self._currency = currency

    @property
    def active_orders(self) -> list[Order]:
        return list(self._active)

    @property
    def history(self) -> list[OrderHistoryItem]:
        return list(self._history)

    @property
    def ledger(self) -> SettlementLedger:
        return self._ledger

    def configure(self, commission_fee: float, arming_delay_ns: int) -> None:
        self._fee = commission_fee
        self._arming_delay_ns = arming_delay_ns

    def get(self, order_id: str) -> Order | None:
        for order in self._active:
            if order.order_id == order_id:
                return order
        return None

    def held_commission(self) -> float:
        """Commission estimates of open BUY orders, not yet charged."""
        return sum(o.commission_hold for o in self._active if o.trade_type == TradeType.BUY)

    def reserved_shares(self, symbol: str) -> int:
        """Shares already promised to open SELL orders."""
        return sum(
            o.quantity for o in self._active
            if o.trade_type == TradeType.SELL and o.symbol == symbol
        )

    # -- placement ----------------------------------------------------------

    def evaluate_gates(
        self,
        request: OrderRequest,
        instrument: Instrument | None,
        session_open: bool,
    ) -> tuple[bool, str]:
        """Evaluate all placement gates. Returns (passed, rejection_reason)."""
        if not session_open:
            return False, "Market is closed or halted. No orders can be placed."

        if instrument is None:
            return False, f"Stock not found: {request.symbol}"

        quantity = request.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            return False, "Quantity must be a positive whole number of shares."

        if request.order_type == OrderType.LIMIT:
            if request.limit_price is None or request.limit_price <= 0:
                return False, "Limit orders need a positive limit price."

        if request.order_type == OrderType.TRAILING_STOP:
            if request.trade_type != TradeType.SELL:
                return False, "Trailing stops can only be used to sell."
            if request.trail_percent is None or not 0.0 < request.trail_percent < 1.0:
                return False, "Trail percent must be between 0 and 1."

        if request.trade_type == TradeType.BUY:
            cost = self._reservation(request, instrument.price)
            commission = cost * self._fee
            spendable = self._ledger.cash - self.held_commission()
            if spendable < cost + commission:
                return False, "Insufficient funds for cost + commission."
        else:
            free_shares = self._ledger.holding_quantity(request.symbol) - self.reserved_shares(request.symbol)
            if free_shares < quantity:
                return False, "Not enough shares to sell."

        return True, "accepted"

    def place_order(
        self,
        request: OrderRequest,
        trader: Trader,
        instrument: Instrument | None,
        session_open: bool,
        now_ns: int,
    ) -> OrderResult:
        passed, reason = self.evaluate_gates(request, instrument, session_open)
        if not passed:
            logger.info(
                "Order rejected for %s: %s %s %s x%s — %s",
                trader.name,
                request.trade_type.value,
                request.order_type.value,
                request.symbol,
                request.quantity,
                reason,
            )
            self._notify(EventType.ORDER_REJECTED, NoticeLevel.ERROR, reason, now_ns)
            return OrderResult(accepted=False, reason=reason)

        price = instrument.price
        order = Order(
            order_id=_new_order_id(),
            symbol=instrument.symbol,
            name=instrument.name,
            trade_type=request.trade_type,
            order_type=request.order_type,
            quantity=request.quantity,
            status=OrderStatus.PENDING,
            created_at_ns=now_ns,
            submitted_at_ns=now_ns,
            trader_id=trader.trader_id,
            trader_name=trader.name,
            limit_price=request.limit_price if request.order_type == OrderType.LIMIT else None,
            trail_percent=request.trail_percent if request.order_type == OrderType.TRAILING_STOP else None,
        )

        if order.trade_type == TradeType.BUY:
            order.reserved_cash = self._reservation(request, price)
            order.commission_hold = order.reserved_cash * self._fee
            self._ledger.debit_reservation(order.reserved_cash)

        if order.order_type == OrderType.TRAILING_STOP:
            order.high_water_mark = price
            order.trigger_price = price * (1 - order.trail_percent)

        self._active.append(order)
        logger.info(
            "Order %s placed by %s: %s %s %d %s (reserved %.2f)",
            order.order_id,
            trader.name,
            order.order_type.value,
            order.trade_type.value,
            order.quantity,
            order.symbol,
            order.reserved_cash,
        )
        return OrderResult(accepted=True, reason="accepted", order=order)

    @staticmethod
    def _reservation(request: OrderRequest, market_price: float) -> float:
        if request.order_type == OrderType.LIMIT:
            return request.quantity * request.limit_price
        return request.quantity * market_price

    # -- per-tick evaluation -------------------------------------------------

    def process(self, prices: Mapping[str, float], now_ns: int) -> list[Fill]:
        """Arm, evaluate and fill active orders against this tick's prices."""
        fills: list[Fill] = []
        still_active: list[Order] = []
        for order in self._active:
            price = prices.get(order.symbol)
            if price is None:
                still_active.append(order)
                continue

            if order.status == OrderStatus.PENDING and now_ns >= order.submitted_at_ns + self._arming_delay_ns:
                order.status = OrderStatus.WORKING

            if order.status == OrderStatus.WORKING and self._should_fill(order, price):
                if order.trade_type == TradeType.SELL and not self._covered(order):
                    self._drop_uncovered(order, now_ns)
                    continue
                fills.append(self._execute(order, price, now_ns))
            else:
                still_active.append(order)
        self._active = still_active
        return fills

    @staticmethod
    def _should_fill(order: Order, price: float) -> bool:
        if order.order_type == OrderType.MARKET:
            return True
        if order.order_type == OrderType.LIMIT:
            if order.trade_type == TradeType.BUY:
                return price <= order.limit_price
            return price >= order.limit_price
        # TRAILING_STOP: the trigger only ever ratchets up
        order.high_water_mark = max(order.high_water_mark, price)
        order.trigger_price = order.high_water_mark * (1 - order.trail_percent)
        return price <= order.trigger_price

    def _covered(self, order: Order) -> bool:
        return self._ledger.holding_quantity(order.symbol) >= order.quantity

    def _drop_uncovered(self, order: Order, now_ns: int) -> None:
        order.status = OrderStatus.CANCELLED
        self._history.insert(0, _history_item(order, OrderStatus.CANCELLED, now_ns))
        logger.warning(
            "Order %s cancelled: %d %s no longer held (%d left)",
            order.order_id,
            order.quantity,
            order.symbol,
            self._ledger.holding_quantity(order.symbol),
        )
        self._notify(
            EventType.ORDER_CANCELLED,
            NoticeLevel.ERROR,
            f"Sell order for {order.quantity} {order.symbol} was cancelled: not enough shares held.",
            now_ns,
            order_id=order.order_id,
        )

    def drop_uncovered_sells(self, now_ns: int | None = None) -> list[OrderHistoryItem]:
        """Cancel SELL orders the holdings can no longer cover, oldest claim first.

        Without `now_ns` each dropped order is stamped with its submission time.
        """
        promised: dict[str, int] = {}
        dropped = []
        kept = []
        for order in self._active:
            if order.trade_type == TradeType.SELL:
                claimed = promised.get(order.symbol, 0) + order.quantity
                if claimed > self._ledger.holding_quantity(order.symbol):
                    self._drop_uncovered(order, order.submitted_at_ns if now_ns is None else now_ns)
                    dropped.append(self._history[0])
                    continue
                promised[order.symbol] = claimed
            kept.append(order)
        self._active = kept
        return dropped

    def _execute(self, order: Order, fill_price: float, now_ns: int) -> Fill:
        total = order.quantity * fill_price
        commission = total * self._fee
        waived = 0.0
        if order.trade_type == TradeType.BUY and commission > self._ledger.cash:
            # Principal was reserved at placement; only the fee can overrun cash
            charged = max(self._ledger.cash, 0.0)
            waived = commission - charged
            commission = charged
            logger.warning(
                "Order %s: commission shortfall %.2f waived, cash %.2f",
                order.order_id,
                waived,
                self._ledger.cash,
            )
        self._ledger.apply_fill(order, fill_price, commission, now_ns)
        order.status = OrderStatus.EXECUTED
        self._history.insert(0, _history_item(
            order, OrderStatus.EXECUTED, now_ns,
            price=fill_price, total=total, commission=commission,
        ))
        logger.info(
            "Order %s executed: %s %d %s @ %.2f (total %.2f, fee %.2f)",
            order.order_id,
            order.trade_type.value,
            order.quantity,
            order.symbol,
            fill_price,
            total,
            commission,
        )
        self._notify(
            EventType.ORDER_EXECUTED,
            NoticeLevel.SUCCESS,
            f"{order.trade_type.value} order by {order.trader_name} for {order.quantity} {order.symbol} "
            f"executed at {self._currency} {fill_price:.2f}. Fee: {self._currency} {commission:.2f}.",
            now_ns,
            order_id=order.order_id,
            commission_waived=waived,
        )
        return Fill(
            order_id=order.order_id,
            symbol=order.symbol,
            trade_type=order.trade_type,
            quantity=order.quantity,
            price=fill_price,
            total=total,
            commission=commission,
            trader_name=order.trader_name,
        )

    # -- cancellation & expiry -----------------------------------------------

    def cancel_order(self, order_id: str, now_ns: int) -> OrderResult:
        """Cancel a PENDING/WORKING order. BUYs get their exact reservation back."""
        order = self.get(order_id)
        if order is None:
            return OrderResult(accepted=False, reason=f"No active order {order_id}")

        self._active.remove(order)
        if order.trade_type == TradeType.BUY:
            self._ledger.credit_reservation(order.reserved_cash)
        order.status = OrderStatus.CANCELLED
        self._history.insert(0, _history_item(order, OrderStatus.CANCELLED, now_ns))
        logger.info("Order %s cancelled (refunded %.2f)", order.order_id, order.reserved_cash)
        self._notify(
            EventType.ORDER_CANCELLED,
            NoticeLevel.INFO,
            f"Order for {order.symbol} has been cancelled.",
            now_ns,
            order_id=order.order_id,
        )
        return OrderResult(accepted=True, reason="cancelled", order=order)

    def expire_all(self, now_ns: int) -> list[OrderHistoryItem]:
        """Session close: every active order becomes EXPIRED, reservations returned."""
        expired = []
        refunded = 0.0
        for order in self._active:
            if order.trade_type == TradeType.BUY:
                self._ledger.credit_reservation(order.reserved_cash)
                refunded += order.reserved_cash
            order.status = OrderStatus.EXPIRED
            expired.append(_history_item(order, OrderStatus.EXPIRED, now_ns))
        self._active = []
        # Most recent first, matching how individual records are prepended
        self._history[:0] = list(reversed(expired))
        if expired:
            logger.info("Expired %d order(s), refunded %.2f in reservations", len(expired), refunded)
        return expired

    def _notify(self, event_type: EventType, level: NoticeLevel, text: str, now_ns: int, **extra) -> None:
        if self._event_bus is None:
            return
        self._event_bus.publish(make_notice(event_type, level, text, now_ns, "OrderBook", **extra))
