"""Session Clock — PRE_MARKET → OPEN → CLOSED, with OPEN ⇄ HALTED.

State transitions:
  PRE_MARKET → OPEN: admin open
  OPEN → HALTED: circuit breaker only
  HALTED → OPEN: timed auto-resume, or an explicit open (clears the halt)
  OPEN/HALTED → CLOSED: admin close
  CLOSED → OPEN: next session
No PRE_MARKET → HALTED or CLOSED → HALTED.
"""

from __future__ import annotations

import logging
from typing import Callable

from tradesim.core.data_types import ControlSignal
from tradesim.core.types import ControlAction, SessionStatus

logger = logging.getLogger(__name__)

NS_PER_SECOND = 1_000_000_000

TransitionCallback = Callable[[SessionStatus, SessionStatus, int], None]

ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PRE_MARKET: frozenset({SessionStatus.OPEN}),
    SessionStatus.OPEN: frozenset({SessionStatus.HALTED, SessionStatus.CLOSED}),
    SessionStatus.HALTED: frozenset({SessionStatus.OPEN, SessionStatus.CLOSED}),
    SessionStatus.CLOSED: frozenset({SessionStatus.OPEN}),
}


class SessionClock:
    """Finite-state controller for market status."""

    def __init__(self, freshness_seconds: float = 5.0) -> None:
        self._status = SessionStatus.PRE_MARKET
        self._freshness_ns = int(freshness_seconds * NS_PER_SECOND)
        self._transition_callbacks: list[TransitionCallback] = []
        self._session_number = 0

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_open(self) -> bool:
        return self._status == SessionStatus.OPEN

    @property
    def session_number(self) -> int:
        """Count of sessions opened from PRE_MARKET/CLOSED."""
        return self._session_number

    def register_transition_callback(self, callback: TransitionCallback) -> None:
        """Register callback for state transitions. Called with (old, new, now_ns)."""
        self._transition_callbacks.append(callback)

    def can_transition(self, new_status: SessionStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self._status]

    def transition_to(self, new_status: SessionStatus, now_ns: int) -> bool:
        """Move to new_status if the FSM allows it. Returns True on a change."""
        if new_status == self._status:
            return False
        if not self.can_transition(new_status):
            logger.warning(
                "Session: illegal transition %s → %s ignored", self._status.name, new_status.name
            )
            return False
        old_status = self._status
        self._status = new_status
        if new_status == SessionStatus.OPEN and old_status != SessionStatus.HALTED:
            self._session_number += 1
        logger.info("Session: %s → %s", old_status.name, new_status.name)
        for cb in self._transition_callbacks:
            cb(old_status, new_status, now_ns)
        return True

    def open(self, now_ns: int) -> bool:
        """Open the market. No-op when already OPEN."""
        return self.transition_to(SessionStatus.OPEN, now_ns)

    def close(self, now_ns: int) -> bool:
        """Close the market. No-op unless OPEN or HALTED."""
        return self.transition_to(SessionStatus.CLOSED, now_ns)

    def halt(self, now_ns: int) -> bool:
        return self.transition_to(SessionStatus.HALTED, now_ns)

    def resume(self, now_ns: int) -> bool:
        """Auto-resume from a halt. Only valid while HALTED."""
        if self._status != SessionStatus.HALTED:
            return False
        return self.transition_to(SessionStatus.OPEN, now_ns)

    def set_freshness(self, freshness_seconds: float) -> None:
        self._freshness_ns = int(freshness_seconds * NS_PER_SECOND)

    def is_fresh(self, timestamp_ns: int, now_ns: int) -> bool:
        """Control messages older than the freshness window are replays."""
        return now_ns - timestamp_ns <= self._freshness_ns

    def apply_control(self, signal: ControlSignal, now_ns: int) -> bool:
        """Apply a cross-actor OPEN/CLOSE. Stale or redundant signals change nothing."""
        if not self.is_fresh(signal.timestamp_ns, now_ns):
            logger.debug(
                "Discarding stale control signal %s (age %.1fs)",
                signal.action.value,
                (now_ns - signal.timestamp_ns) / NS_PER_SECOND,
            )
            return False
        if signal.action == ControlAction.OPEN:
            return self.open(now_ns)
        return self.close(now_ns)
