"""Tests for OrderBook: placement gates, arming, fills, cancel, expiry."""

import pytest

from tradesim.core.data_types import Holding, OrderRequest
from tradesim.core.types import EventType, NoticeLevel, OrderStatus, OrderType, TradeType

SECOND = 1_000_000_000
T0 = 100 * SECOND


def buy(symbol="AAA", quantity=100, order_type=OrderType.MARKET, limit_price=None):
    return OrderRequest(symbol, quantity, TradeType.BUY, order_type, limit_price=limit_price)


def sell(symbol="AAA", quantity=100, order_type=OrderType.MARKET, limit_price=None, trail_percent=None):
    return OrderRequest(symbol, quantity, TradeType.SELL, order_type, limit_price, trail_percent)


class TestPlacementGates:
    def test_market_closed(self, book, ledger, trader, instruments, notices):
        result = book.place_order(buy(), trader, instruments["AAA"], session_open=False, now_ns=T0)
        assert not result.accepted
        assert result.reason.startswith("Market is closed")
        assert ledger.cash == 100_000.0
        assert book.active_orders == []
        assert notices[-1].type == EventType.ORDER_REJECTED
        assert notices[-1].level == NoticeLevel.ERROR

    def test_unknown_instrument(self, book, trader):
        result = book.place_order(buy("NOPE"), trader, None, session_open=True, now_ns=T0)
        assert not result.accepted
        assert "NOPE" in result.reason

    @pytest.mark.parametrize("quantity", [0, -5, 1.5, True])
    def test_quantity_must_be_positive_integer(self, book, trader, instruments, quantity):
        result = book.place_order(buy(quantity=quantity), trader, instruments["AAA"], True, T0)
        assert not result.accepted
        assert "Quantity" in result.reason

    @pytest.mark.parametrize("limit_price", [None, 0.0, -1.0])
    def test_limit_needs_positive_price(self, book, trader, instruments, limit_price):
        request = buy(order_type=OrderType.LIMIT, limit_price=limit_price)
        assert not book.place_order(request, trader, instruments["AAA"], True, T0).accepted

    def test_trailing_stop_buy_rejected(self, book, trader, instruments):
        request = OrderRequest("AAA", 10, TradeType.BUY, OrderType.TRAILING_STOP, trail_percent=0.1)
        result = book.place_order(request, trader, instruments["AAA"], True, T0)
        assert not result.accepted
        assert "sell" in result.reason

    @pytest.mark.parametrize("trail", [None, 0.0, 1.0, 1.5])
    def test_trail_percent_range(self, book, ledger, trader, instruments, trail):
        ledger.holdings["AAA"] = Holding("AAA", 100, 10.0)
        request = sell(order_type=OrderType.TRAILING_STOP, trail_percent=trail)
        assert not book.place_order(request, trader, instruments["AAA"], True, T0).accepted

    def test_insufficient_funds_includes_commission(self, book, trader, instruments):
        # 10,000 x 10.00 = 100,000 + 500 commission > 100,000
        assert not book.place_order(buy(quantity=10_000), trader, instruments["AAA"], True, T0).accepted
        # 9,950 x 10.00 = 99,500 + 497.50 commission <= 100,000
        assert book.place_order(buy(quantity=9_950), trader, instruments["AAA"], True, T0).accepted

    def test_commission_hold_counts_against_later_orders(self, book, ledger, trader, instruments):
        book.place_order(buy(quantity=9_950), trader, instruments["AAA"], True, T0)
        assert ledger.cash == pytest.approx(500.0)
        assert book.held_commission() == pytest.approx(497.5)
        # 500 cash - 497.50 held = 2.50 spendable < 10.05
        result = book.place_order(buy(quantity=1), trader, instruments["AAA"], True, T0)
        assert not result.accepted
        assert "Insufficient funds" in result.reason

    def test_limit_buy_reserves_at_limit_price(self, book, ledger, trader, instruments):
        result = book.place_order(
            buy(order_type=OrderType.LIMIT, limit_price=8.0), trader, instruments["AAA"], True, T0
        )
        assert result.order.reserved_cash == 800.0
        assert ledger.cash == 99_200.0

    def test_sell_without_shares(self, book, trader, instruments):
        result = book.place_order(sell(), trader, instruments["AAA"], True, T0)
        assert not result.accepted
        assert result.reason == "Not enough shares to sell."

    def test_sell_reserves_shares(self, book, ledger, trader, instruments):
        ledger.holdings["AAA"] = Holding("AAA", 100, 10.0)
        assert book.place_order(sell(quantity=60), trader, instruments["AAA"], True, T0).accepted
        assert book.reserved_shares("AAA") == 60
        # Only 40 unreserved shares left
        assert not book.place_order(sell(quantity=50), trader, instruments["AAA"], True, T0).accepted
        assert book.place_order(sell(quantity=40), trader, instruments["AAA"], True, T0).accepted

    def test_accepted_order_is_pending(self, book, trader, instruments):
        order = book.place_order(buy(), trader, instruments["AAA"], True, T0).order
        assert order.status == OrderStatus.PENDING
        assert order.submitted_at_ns == T0
        assert order.created_at_ns == T0
        assert order.order_id.startswith("ord_")
        assert order.trader_name == "Ama"
        assert order.name == "Alpha Holdings"


class TestArmingAndFills:
    def test_scenario_a_market_buy(self, book, ledger, trader, instruments, notices):
        book.place_order(buy(), trader, instruments["AAA"], True, T0)
        assert ledger.cash == 99_000.0

        # Still routing
        assert book.process({"AAA": 10.0}, T0 + 4 * SECOND) == []
        assert book.active_orders[0].status == OrderStatus.PENDING

        fills = book.process({"AAA": 10.0}, T0 + 5 * SECOND)
        assert len(fills) == 1
        assert fills[0].commission == pytest.approx(5.0)
        assert ledger.cash == pytest.approx(98_995.0)
        holding = ledger.holdings["AAA"]
        assert holding.quantity == 100
        assert holding.avg_cost == 10.0
        assert book.active_orders == []
        assert book.history[0].final_status == OrderStatus.EXECUTED
        assert book.history[0].price == 10.0
        assert notices[-1].type == EventType.ORDER_EXECUTED
        assert notices[-1].text == "BUY order by Ama for 100 AAA executed at GHS 10.00. Fee: GHS 5.00."

    def test_scenario_b_sell_goes_to_unsettled(self, book, ledger, trader, instruments):
        ledger.holdings["AAA"] = Holding("AAA", 100, 10.0)
        instruments["AAA"].price = 12.0
        book.place_order(sell(quantity=50), trader, instruments["AAA"], True, T0)
        cash_before = ledger.cash

        fill_time = T0 + 5 * SECOND
        fills = book.process({"AAA": 12.0}, fill_time)
        assert fills[0].total == 600.0
        assert fills[0].commission == pytest.approx(3.0)
        assert ledger.cash == cash_before
        assert len(ledger.unsettled) == 1
        assert ledger.unsettled[0].amount == pytest.approx(597.0)
        assert ledger.unsettled[0].settles_at_ns == fill_time + 10 * SECOND
        assert ledger.holdings["AAA"].quantity == 50
        assert ledger.holdings["AAA"].avg_cost == 10.0
        assert book.reserved_shares("AAA") == 0

    def test_scenario_c_trailing_stop(self, book, ledger, trader, instruments):
        ledger.holdings["AAA"] = Holding("AAA", 100, 8.0)
        order = book.place_order(
            sell(order_type=OrderType.TRAILING_STOP, trail_percent=0.10), trader, instruments["AAA"], True, T0
        ).order
        assert order.trigger_price == pytest.approx(9.0)

        t = T0 + 5 * SECOND
        assert book.process({"AAA": 10.0}, t) == []
        assert book.process({"AAA": 15.0}, t + 3 * SECOND) == []
        assert order.high_water_mark == 15.0
        assert order.trigger_price == pytest.approx(13.5)

        # Trigger never ratchets down
        assert book.process({"AAA": 14.0}, t + 6 * SECOND) == []
        assert order.trigger_price == pytest.approx(13.5)

        fills = book.process({"AAA": 13.40}, t + 9 * SECOND)
        assert len(fills) == 1
        assert fills[0].price == 13.40

    def test_scenario_d_limit_buy(self, book, ledger, trader, instruments):
        instruments["AAA"].price = 5.10
        book.place_order(buy(order_type=OrderType.LIMIT, limit_price=5.00), trader, instruments["AAA"], True, T0)

        t = T0 + 5 * SECOND
        assert book.process({"AAA": 5.10}, t) == []
        assert book.active_orders[0].status == OrderStatus.WORKING

        fills = book.process({"AAA": 5.00}, t + 3 * SECOND)
        assert fills[0].price == 5.00
        assert ledger.holdings["AAA"].avg_cost == 5.00
        assert ledger.cash == pytest.approx(100_000 - 500 - 2.5)

    def test_limit_sell_fills_at_or_above_limit(self, book, ledger, trader, instruments):
        ledger.holdings["AAA"] = Holding("AAA", 100, 10.0)
        book.place_order(sell(order_type=OrderType.LIMIT, limit_price=11.0), trader, instruments["AAA"], True, T0)
        t = T0 + 5 * SECOND
        assert book.process({"AAA": 10.99}, t) == []
        fills = book.process({"AAA": 11.25}, t + SECOND)
        assert fills[0].price == 11.25

    def test_weighted_average_cost(self, book, ledger, trader, instruments):
        ledger.holdings["AAA"] = Holding("AAA", 100, 10.0)
        instruments["AAA"].price = 13.0
        book.place_order(buy(quantity=50), trader, instruments["AAA"], True, T0)
        book.process({"AAA": 13.0}, T0 + 5 * SECOND)
        holding = ledger.holdings["AAA"]
        assert holding.quantity == 150
        assert holding.quantity * holding.avg_cost == pytest.approx(100 * 10.0 + 50 * 13.0)

    def test_selling_everything_removes_holding(self, book, ledger, trader, instruments):
        ledger.holdings["AAA"] = Holding("AAA", 100, 10.0)
        book.place_order(sell(quantity=100), trader, instruments["AAA"], True, T0)
        book.process({"AAA": 10.0}, T0 + 5 * SECOND)
        assert "AAA" not in ledger.holdings

    def test_missing_price_carries_order_over(self, book, trader, instruments):
        book.place_order(buy(), trader, instruments["AAA"], True, T0)
        assert book.process({"BBB": 20.0}, T0 + 10 * SECOND) == []
        assert len(book.active_orders) == 1


class TestShortfalls:
    def test_sell_no_longer_covered_is_cancelled(self, book, ledger, trader, instruments, notices):
        ledger.holdings["AAA"] = Holding("AAA", 100, 10.0)
        order = book.place_order(sell(quantity=100), trader, instruments["AAA"], True, T0).order
        ledger.holdings["AAA"].quantity = 40

        assert book.process({"AAA": 10.0}, T0 + 5 * SECOND) == []
        assert book.active_orders == []
        assert order.status == OrderStatus.CANCELLED
        assert book.history[0].final_status == OrderStatus.CANCELLED
        assert ledger.holdings["AAA"].quantity == 40
        assert ledger.unsettled == []
        assert notices[-1].type == EventType.ORDER_CANCELLED
        assert notices[-1].level == NoticeLevel.ERROR

    def test_drop_uncovered_sells_keeps_oldest_claims(self, book, ledger, trader, instruments):
        ledger.holdings["AAA"] = Holding("AAA", 100, 10.0)
        first = book.place_order(sell(quantity=60), trader, instruments["AAA"], True, T0).order
        second = book.place_order(sell(quantity=40), trader, instruments["AAA"], True, T0 + SECOND).order
        ledger.holdings["AAA"].quantity = 70

        dropped = book.drop_uncovered_sells()
        assert [h.order_id for h in dropped] == [second.order_id]
        assert dropped[0].timestamp_ns == T0 + SECOND
        assert book.active_orders == [first]
        assert book.reserved_shares("AAA") == 60

    def test_commission_capped_at_remaining_cash(self, book, ledger, trader, instruments, notices):
        ledger.adjust_cash(1005.0 - ledger.cash)
        # 1,000 principal + 5.00 estimate spends every cedi
        assert book.place_order(buy(), trader, instruments["AAA"], True, T0).accepted
        assert ledger.cash == pytest.approx(5.0)

        fills = book.process({"AAA": 12.0}, T0 + 5 * SECOND)
        assert fills[0].commission == pytest.approx(5.0)
        assert ledger.cash == pytest.approx(0.0)
        assert book.history[0].commission == pytest.approx(5.0)
        assert notices[-1].payload["commission_waived"] == pytest.approx(1.0)

    def test_full_commission_when_cash_allows(self, book, ledger, trader, instruments, notices):
        book.place_order(buy(), trader, instruments["AAA"], True, T0)
        book.process({"AAA": 12.0}, T0 + 5 * SECOND)
        assert ledger.cash == pytest.approx(99_000.0 - 6.0)
        assert notices[-1].payload["commission_waived"] == 0.0


class TestCancelAndExpire:
    def test_cancel_refunds_exact_reservation(self, book, ledger, trader, instruments, notices):
        order = book.place_order(buy(), trader, instruments["AAA"], True, T0).order
        # Price moves a lot before cancellation
        instruments["AAA"].price = 50.0
        result = book.cancel_order(order.order_id, T0 + SECOND)
        assert result.accepted
        assert ledger.cash == 100_000.0
        assert book.held_commission() == 0.0
        assert book.active_orders == []
        assert book.history[0].final_status == OrderStatus.CANCELLED
        assert notices[-1].text == "Order for AAA has been cancelled."

    def test_cancel_sell_releases_shares(self, book, ledger, trader, instruments):
        ledger.holdings["AAA"] = Holding("AAA", 100, 10.0)
        order = book.place_order(sell(), trader, instruments["AAA"], True, T0).order
        book.cancel_order(order.order_id, T0 + SECOND)
        assert book.reserved_shares("AAA") == 0
        assert book.place_order(sell(), trader, instruments["AAA"], True, T0).accepted

    def test_cancel_unknown(self, book):
        result = book.cancel_order("ord_missing", T0)
        assert not result.accepted

    def test_cancel_after_fill(self, book, trader, instruments):
        order = book.place_order(buy(), trader, instruments["AAA"], True, T0).order
        book.process({"AAA": 10.0}, T0 + 5 * SECOND)
        assert not book.cancel_order(order.order_id, T0 + 6 * SECOND).accepted

    def test_expire_all(self, book, ledger, trader, instruments):
        ledger.holdings["BBB"] = Holding("BBB", 10, 20.0)
        book.place_order(buy(), trader, instruments["AAA"], True, T0)
        book.place_order(sell("BBB", 10), trader, instruments["BBB"], True, T0)

        expired = book.expire_all(T0 + SECOND)
        assert len(expired) == 2
        assert all(item.final_status == OrderStatus.EXPIRED for item in expired)
        assert book.active_orders == []
        assert ledger.cash == 100_000.0
        assert book.reserved_shares("BBB") == 0
        assert [h.final_status for h in book.history] == [OrderStatus.EXPIRED, OrderStatus.EXPIRED]

        # Nothing comes back on later ticks
        assert book.process({"AAA": 10.0, "BBB": 20.0}, T0 + 60 * SECOND) == []
        assert book.active_orders == []

    def test_history_most_recent_first(self, book, trader, instruments):
        first = book.place_order(buy(quantity=1), trader, instruments["AAA"], True, T0).order
        book.process({"AAA": 10.0}, T0 + 5 * SECOND)
        second = book.place_order(buy(quantity=1), trader, instruments["AAA"], True, T0 + 6 * SECOND).order
        book.cancel_order(second.order_id, T0 + 7 * SECOND)
        assert [h.order_id for h in book.history] == [second.order_id, first.order_id]
