"""Notice bus: every engine component reports what happened through here.

Fills, cancellations, expiries, settlements, halts and market-event lifecycle
are published as ``Event`` notices carrying a ``{level, text}`` payload.
Delivery is synchronous and in subscription order, inside the caller's
engine lock, so subscribers must be quick and must not call back into the engine.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from typing import Any, Callable

from tradesim.core.types import EventType, NoticeLevel
from tradesim.core.data_types import Event

logger = logging.getLogger(__name__)

Subscriber = Callable[[Event], None]


def make_notice(
    event_type: EventType,
    level: NoticeLevel,
    text: str,
    timestamp_ns: int,
    source: str,
    **extra: Any,
) -> Event:
    """Build a notice event carrying the `{level, text}` payload the UI expects."""
    payload = {"level": level.value, "text": text}
    payload.update(extra)
    return Event(type=event_type, timestamp_ns=timestamp_ns, source=source, payload=payload)


class EventBus:
    """Per-type subscriber lists plus catch-all sinks."""

    def __init__(self) -> None:
        self._subscribers: dict[EventType, list[Subscriber]] = defaultdict(list)
        self._sinks: list[Subscriber] = []
        self._published: Counter[EventType] = Counter()

    def subscribe(self, event_type: EventType, callback: Subscriber) -> None:
        self._subscribers[event_type].append(callback)

    def subscribe_all(self, callback: Subscriber) -> None:
        """Register a sink that sees every event type (notice feeds, counters)."""
        self._sinks.append(callback)

    def unsubscribe_all(self, callback: Subscriber) -> None:
        if callback in self._sinks:
            self._sinks.remove(callback)

    def publish(self, event: Event) -> None:
        self._published[event.type] += 1
        for callback in [*self._subscribers.get(event.type, ()), *self._sinks]:
            try:
                callback(event)
            except Exception:
                logger.exception("Error in notice subscriber for %s", event.type.value)

    def published_counts(self) -> dict[str, int]:
        """Events published so far, by type value."""
        return {event_type.value: n for event_type, n in self._published.items()}
