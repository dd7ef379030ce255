"""Tests for ledger snapshots: round trip, migration, corrupt fallback."""

import json
import logging

import pytest

from tradesim.core.data_types import Holding, OrderRequest
from tradesim.core.types import OrderStatus, OrderType, TradeType
from tradesim.execution.account import TraderAccount
from tradesim.persistence.snapshot import (
    account_from_snapshot,
    account_to_snapshot,
    default_snapshot,
    migrate_snapshot,
    restore_account,
)

SECOND = 1_000_000_000
MS = 1_000_000


@pytest.fixture
def account(settings, trader, instruments):
    """One fill, one open trailing stop, one cancelled limit, one settled-later sale."""
    acct = TraderAccount.fresh(
        key="u1",
        starting_capital=settings.starting_capital,
        settlement_delay_ns=settings.settlement_delay_ns,
        commission_fee=settings.commission_fee,
        arming_delay_ns=settings.arming_delay_ns,
    )
    book = acct.book
    book.place_order(OrderRequest("AAA", 100, TradeType.BUY), trader, instruments["AAA"], True, 0)
    book.process({"AAA": 10.0}, 5 * SECOND)
    book.place_order(OrderRequest("AAA", 20, TradeType.SELL), trader, instruments["AAA"], True, 6 * SECOND)
    book.process({"AAA": 10.0}, 11 * SECOND)
    book.place_order(
        OrderRequest("AAA", 50, TradeType.SELL, OrderType.TRAILING_STOP, trail_percent=0.1),
        trader, instruments["AAA"], True, 12 * SECOND,
    )
    limit = book.place_order(
        OrderRequest("BBB", 10, TradeType.BUY, OrderType.LIMIT, limit_price=19.0),
        trader, instruments["BBB"], True, 13 * SECOND,
    ).order
    book.place_order(
        OrderRequest("BBB", 5, TradeType.BUY, OrderType.LIMIT, limit_price=18.0),
        trader, instruments["BBB"], True, 13 * SECOND,
    )
    book.cancel_order(limit.order_id, 14 * SECOND)
    acct.record_performance({"AAA": 10.0}, 15 * SECOND)
    return acct


class TestSnapshotRoundTrip:
    def test_layout(self, account):
        snap = account_to_snapshot(account)
        assert set(snap) == {
            "portfolio", "activeOrders", "orderHistory", "performanceHistory", "startingCapital", "timeUnit",
        }
        assert snap["portfolio"]["holdings"]["AAA"] == {"symbol": "AAA", "quantity": 80, "avgCost": 10.0}
        assert snap["portfolio"]["unsettledCash"][0]["settlesAt"] > 11 * SECOND
        assert snap["orderHistory"][0]["finalStatus"] == "CANCELLED"
        assert snap["activeOrders"][0]["orderType"] == "TRAILING_STOP"
        # JSON-able
        json.dumps(snap)

    def test_round_trip_preserves_state(self, account, settings):
        snap = json.loads(json.dumps(account_to_snapshot(account)))
        restored = account_from_snapshot("u1", snap, settings, version=4)

        assert restored.version == 4
        assert restored.ledger.cash == account.ledger.cash
        assert restored.ledger.unsettled == account.ledger.unsettled
        assert restored.ledger.holdings == account.ledger.holdings
        assert restored.book.active_orders == account.book.active_orders
        assert restored.book.history == account.book.history
        assert restored.recorder.entries() == account.recorder.entries()
        assert restored.book.held_commission() == pytest.approx(account.book.held_commission())
        assert restored.book.reserved_shares("AAA") == 50

    def test_restored_reservation_refunds_exactly(self, account, settings):
        snap = account_to_snapshot(account)
        restored = account_from_snapshot("u1", snap, settings)
        limit = next(o for o in restored.book.active_orders if o.order_type == OrderType.LIMIT)
        cash_before = restored.ledger.cash
        restored.book.cancel_order(limit.order_id, 20 * SECOND)
        assert restored.ledger.cash == pytest.approx(cash_before + 90.0)


class TestMigration:
    def legacy_snapshot(self):
        return {
            "portfolio": {"cash": 5000.0, "holdings": {"AAA": {"symbol": "AAA", "quantity": 10, "avgCost": 9.5}}},
            "activeOrders": [
                {"id": "o1", "symbol": "BBB", "tradeType": "BUY", "orderType": "LIMIT",
                 "quantity": 10, "limitPrice": 19.0, "createdAt": 100},
                {"id": "o2", "symbol": "BBB", "tradeType": "BUY", "orderType": "MARKET",
                 "quantity": 10, "createdAt": 200},
                {"id": "o3", "symbol": "AAA", "tradeType": "SELL", "orderType": "MARKET",
                 "quantity": 5, "createdAt": 300, "status": "PENDING", "submittedAt": 350},
            ],
            "startingCapital": 10_000.0,
        }

    def test_missing_fields_filled(self):
        migrated = migrate_snapshot(self.legacy_snapshot())
        assert migrated["portfolio"]["unsettledCash"] == []
        assert migrated["orderHistory"] == []
        assert migrated["performanceHistory"] == []
        o1, o2, o3 = migrated["activeOrders"]
        assert o1["status"] == "WORKING"
        assert o1["submittedAt"] == 100 * MS
        assert o1["reservedCash"] == 190.0
        assert o2["reservedCash"] == 0.0
        assert o3["status"] == "PENDING"
        assert o3["submittedAt"] == 350 * MS

    def test_does_not_mutate_input(self):
        legacy = self.legacy_snapshot()
        migrate_snapshot(legacy)
        assert "unsettledCash" not in legacy["portfolio"]
        assert "status" not in legacy["activeOrders"][0]

    def test_legacy_snapshot_loads(self, settings):
        account = account_from_snapshot("u1", self.legacy_snapshot(), settings)
        assert account.ledger.cash == 5000.0
        assert account.starting_capital == 10_000.0
        assert [o.status for o in account.book.active_orders] == [
            OrderStatus.WORKING, OrderStatus.WORKING, OrderStatus.PENDING,
        ]
        assert account.book.reserved_shares("AAA") == 5

    def test_millisecond_timestamps_scaled(self):
        legacy = self.legacy_snapshot()
        legacy["portfolio"]["unsettledCash"] = [{"amount": 250.0, "settlesAt": 1_700_000_200_000}]
        legacy["orderHistory"] = [
            {"id": "h1", "symbol": "AAA", "tradeType": "SELL", "quantity": 5,
             "finalStatus": "EXECUTED", "timestamp": 1_700_000_000_000},
        ]
        legacy["performanceHistory"] = [{"timestamp": 1_700_000_000_000, "portfolioValue": 5250.0}]
        migrated = migrate_snapshot(legacy)
        assert migrated["timeUnit"] == "ns"
        assert migrated["portfolio"]["unsettledCash"][0]["settlesAt"] == 1_700_000_200_000 * MS
        assert migrated["orderHistory"][0]["timestamp"] == 1_700_000_000_000 * MS
        assert migrated["performanceHistory"][0]["timestamp"] == 1_700_000_000_000 * MS
        assert migrated["activeOrders"][0]["createdAt"] == 100 * MS

    def test_marked_snapshot_not_rescaled(self):
        snap = default_snapshot(1000.0)
        snap["portfolio"]["unsettledCash"] = [{"amount": 10.0, "settlesAt": 5 * SECOND}]
        assert migrate_snapshot(snap)["portfolio"]["unsettledCash"][0]["settlesAt"] == 5 * SECOND

    def test_uncovered_sells_cancelled_on_load(self, settings, caplog):
        legacy = self.legacy_snapshot()
        legacy["activeOrders"].append(
            {"id": "o4", "symbol": "AAA", "tradeType": "SELL", "orderType": "MARKET",
             "quantity": 10, "createdAt": 400},
        )
        with caplog.at_level(logging.WARNING):
            account = account_from_snapshot("u1", legacy, settings)
        assert [o.order_id for o in account.book.active_orders] == ["o1", "o2", "o3"]
        assert account.book.history[0].order_id == "o4"
        assert account.book.history[0].final_status == OrderStatus.CANCELLED
        assert account.book.history[0].timestamp_ns == 400 * MS
        assert "not covered by holdings" in caplog.text


class TestRestore:
    def test_absent_snapshot_is_default(self, settings):
        account = restore_account("u1", None, settings, version=0)
        assert account.ledger.cash == settings.starting_capital
        assert account_to_snapshot(account) == default_snapshot(settings.starting_capital)

    @pytest.mark.parametrize("corrupt", [
        {},
        {"portfolio": "nope"},
        {"portfolio": {"cash": "lots"}},
        {"portfolio": {"cash": 1.0}, "activeOrders": [{"id": "x"}]},
        {"portfolio": {"cash": 1.0}, "activeOrders": [
            {"id": "x", "symbol": "AAA", "tradeType": "BUY", "quantity": 1,
             "createdAt": 0, "status": "EXECUTED"},
        ]},
    ])
    def test_corrupt_snapshot_falls_back(self, settings, corrupt, caplog):
        with caplog.at_level(logging.ERROR):
            account = restore_account("u1", corrupt, settings, version=3)
        assert account.ledger.cash == settings.starting_capital
        assert account.book.active_orders == []
        # Keeps the stored version so the replacement can be saved over it
        assert account.version == 3
        assert "Corrupt ledger snapshot" in caplog.text

    def test_holdings_survive(self, settings):
        snap = default_snapshot(1000.0)
        snap["portfolio"]["holdings"]["CCC"] = {"symbol": "CCC", "quantity": 3, "avgCost": 30.0}
        account = restore_account("u1", snap, settings)
        assert account.ledger.holdings["CCC"] == Holding("CCC", 3, 30.0)
