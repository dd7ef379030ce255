"""Control Channel — cross-actor session control and manual event triggers.

Every engine instance subscribes; an admin publishes. Messages carry their
issue timestamp so receivers can discard replays older than the freshness
window. The channel keeps the last message of each kind for late joiners.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from tradesim.core.data_types import ControlSignal, ManualEventSignal

logger = logging.getLogger(__name__)


class ControlChannel:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._control_subscribers: list[Callable[[ControlSignal], None]] = []
        self._event_subscribers: list[Callable[[ManualEventSignal], None]] = []
        self._last_control: ControlSignal | None = None
        self._last_event: ManualEventSignal | None = None

    @property
    def last_control(self) -> ControlSignal | None:
        return self._last_control

    @property
    def last_event(self) -> ManualEventSignal | None:
        return self._last_event

    def subscribe_control(self, callback: Callable[[ControlSignal], None]) -> None:
        with self._lock:
            self._control_subscribers.append(callback)

    def subscribe_events(self, callback: Callable[[ManualEventSignal], None]) -> None:
        with self._lock:
            self._event_subscribers.append(callback)

    def publish_control(self, signal: ControlSignal) -> None:
        with self._lock:
            self._last_control = signal
            subscribers = list(self._control_subscribers)
        logger.info("Control signal published: %s", signal.action.value)
        for callback in subscribers:
            try:
                callback(signal)
            except Exception:
                logger.exception("Error in control subscriber for %s", signal.action.value)

    def publish_event(self, signal: ManualEventSignal) -> None:
        with self._lock:
            self._last_event = signal
            subscribers = list(self._event_subscribers)
        logger.info("Manual event published: %s", signal.event_name)
        for callback in subscribers:
            try:
                callback(signal)
            except Exception:
                logger.exception("Error in manual event subscriber for %s", signal.event_name)
