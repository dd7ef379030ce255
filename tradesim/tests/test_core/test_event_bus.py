"""Tests for EventBus: typed subscribers, catch-all sinks, fault isolation, counts."""

from tradesim.core.data_types import Event
from tradesim.core.event_bus import EventBus, make_notice
from tradesim.core.types import EventType, NoticeLevel


def make_event(event_type: EventType) -> Event:
    return Event(type=event_type, timestamp_ns=0, source="test")


class TestEventBus:
    def test_basic_pub_sub(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventType.ORDER_EXECUTED, received.append)
        bus.publish(make_event(EventType.ORDER_EXECUTED))
        assert len(received) == 1

    def test_event_type_isolation(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventType.ORDER_EXECUTED, received.append)
        bus.publish(make_event(EventType.ORDER_CANCELLED))
        assert received == []

    def test_typed_subscribers_run_before_sinks(self):
        bus = EventBus()
        order = []
        bus.subscribe_all(lambda e: order.append("sink"))
        bus.subscribe(EventType.CIRCUIT_BREAKER_HALT, lambda e: order.append("typed"))
        bus.publish(make_event(EventType.CIRCUIT_BREAKER_HALT))
        assert order == ["typed", "sink"]

    def test_wildcard_receives_everything(self):
        bus = EventBus()
        received = []
        bus.subscribe_all(received.append)
        bus.publish(make_event(EventType.SESSION_OPENED))
        bus.publish(make_event(EventType.ORDER_REJECTED))
        assert [e.type for e in received] == [EventType.SESSION_OPENED, EventType.ORDER_REJECTED]

        bus.unsubscribe_all(received.append)
        bus.publish(make_event(EventType.SESSION_CLOSED))
        assert len(received) == 2

    def test_faulty_subscriber_does_not_break_others(self, caplog):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(EventType.ORDER_EXECUTED, broken)
        bus.subscribe(EventType.ORDER_EXECUTED, received.append)
        bus.publish(make_event(EventType.ORDER_EXECUTED))
        assert len(received) == 1
        assert "ORDER_EXECUTED" in caplog.text

    def test_published_counts(self):
        bus = EventBus()
        bus.publish(make_event(EventType.ORDER_EXECUTED))
        bus.publish(make_event(EventType.ORDER_EXECUTED))
        bus.publish(make_event(EventType.SESSION_OPENED))
        assert bus.published_counts() == {"ORDER_EXECUTED": 2, "SESSION_OPENED": 1}

    def test_make_notice_payload(self):
        event = make_notice(EventType.CASH_SETTLED, NoticeLevel.SUCCESS, "settled", 7, "test", key="u1")
        assert event.level == NoticeLevel.SUCCESS
        assert event.text == "settled"
        assert event.payload["key"] == "u1"
        assert event.timestamp_ns == 7
