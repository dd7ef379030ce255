"""Circuit Breaker — market-wide halt on an index drawdown.

Checks the equal-weighted index after every price step:
  drawdown = (open_index - index) / open_index
At or past the threshold the session is forced HALTED and an unconditional
resume is scheduled `halt_seconds` later. Fires at most once per session;
only arm() (called on session open) resets it.
"""

from __future__ import annotations

import logging

import numpy as np

from tradesim.core.data_types import Event
from tradesim.core.event_bus import EventBus, make_notice
from tradesim.core.types import EventType, NoticeLevel
from tradesim.market.session_clock import SessionClock

logger = logging.getLogger(__name__)

NS_PER_SECOND = 1_000_000_000


def equal_weighted_index(prices) -> float:
    """Mean price over all instruments."""
    values = np.fromiter(prices, dtype=np.float64)
    if values.size == 0:
        return 0.0
    return float(values.mean())


class CircuitBreaker:
    """Independent safety monitor. Never part of order logic."""

    def __init__(
        self,
        clock: SessionClock,
        enabled: bool = True,
        threshold: float = 0.07,
        halt_seconds: float = 30.0,
        event_bus: EventBus | None = None,
    ) -> None:
        self._clock = clock
        self._enabled = enabled
        self._threshold = threshold
        self._halt_ns = int(halt_seconds * NS_PER_SECOND)
        self._event_bus = event_bus

        # State
        self._open_index: float = 0.0
        self._triggered: bool = False
        self._resume_at_ns: int | None = None

    @property
    def triggered(self) -> bool:
        return self._triggered

    @property
    def open_index(self) -> float:
        return self._open_index

    @property
    def resume_at_ns(self) -> int | None:
        return self._resume_at_ns

    def configure(self, enabled: bool, threshold: float, halt_seconds: float) -> None:
        self._enabled = enabled
        self._threshold = threshold
        self._halt_ns = int(halt_seconds * NS_PER_SECOND)

    def arm(self, open_index: float) -> None:
        """Capture the session baseline and clear the once-per-session flag."""
        self._open_index = open_index
        self._triggered = False
        self._resume_at_ns = None

    def disarm(self) -> None:
        """Forget a scheduled resume (session closed while halted)."""
        self._resume_at_ns = None

    def drawdown(self, index: float) -> float:
        if self._open_index <= 0:
            return 0.0
        return (self._open_index - index) / self._open_index

    def check(self, index: float, now_ns: int) -> bool:
        """Run the drawdown check. Returns True if this call halted the market."""
        if not self._enabled or self._triggered or not self._clock.is_open:
            return False
        if self._open_index <= 0:
            return False

        drawdown = self.drawdown(index)
        if drawdown < self._threshold:
            return False

        self._triggered = True
        self._resume_at_ns = now_ns + self._halt_ns
        logger.critical(
            "CIRCUIT BREAKER: index %.4f vs open %.4f (-%.2f%%) — trading halted for %.0fs",
            index,
            self._open_index,
            drawdown * 100,
            self._halt_ns / NS_PER_SECOND,
        )
        self._clock.halt(now_ns)
        self._publish(make_notice(
            EventType.CIRCUIT_BREAKER_HALT,
            NoticeLevel.ERROR,
            f"CIRCUIT BREAKER: Market has dropped {self._threshold * 100:g}%. Trading halted!",
            now_ns,
            "CircuitBreaker",
            drawdown=drawdown,
            resume_at_ns=self._resume_at_ns,
        ))
        return True

    def poll(self, now_ns: int) -> bool:
        """Resume once the halt has run its course. Returns True on resume."""
        if self._resume_at_ns is None or now_ns < self._resume_at_ns:
            return False
        self._resume_at_ns = None
        if not self._clock.resume(now_ns):
            return False
        logger.info("Circuit breaker halt elapsed — trading resumed")
        self._publish(make_notice(
            EventType.TRADING_RESUMED,
            NoticeLevel.INFO,
            "Trading has resumed.",
            now_ns,
            "CircuitBreaker",
        ))
        return True

    def _publish(self, event: Event) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)
