"""Event Injector — at most one market-wide shock at a time.

Runs on its own scan cadence (2s) while the market is OPEN:
  1. A fresh manual request pre-empts everything for that scan.
  2. An expired event is cleared ("The market has stabilized.").
  3. With no active event, roll against event_frequency.
"""

from __future__ import annotations

import logging

import numpy as np

from tradesim.core.data_types import ManualEventSignal, MarketEvent, MarketEventTemplate
from tradesim.core.event_bus import EventBus, make_notice
from tradesim.core.types import EventType, NoticeLevel

logger = logging.getLogger(__name__)

NS_PER_SECOND = 1_000_000_000


class EventInjector:
    """Owns the active MarketEvent and the pending manual trigger."""

    def __init__(
        self,
        templates: tuple[MarketEventTemplate, ...] | None = None,
        frequency: float = 0.05,
        min_duration_seconds: float = 20.0,
        max_duration_seconds: float = 40.0,
        freshness_seconds: float = 5.0,
        rng: np.random.Generator | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._templates = templates if templates is not None else MARKET_EVENT_TEMPLATES
        self._frequency = frequency
        self._min_duration = min_duration_seconds
        self._max_duration = max_duration_seconds
        self._freshness_ns = int(freshness_seconds * NS_PER_SECOND)
        self._rng = rng if rng is not None else np.random.default_rng()
        self._event_bus = event_bus

        self._active: MarketEvent | None = None
        self._pending_manual: ManualEventSignal | None = None

    @property
    def active_event(self) -> MarketEvent | None:
        return self._active

    @property
    def templates(self) -> tuple[MarketEventTemplate, ...]:
        return self._templates

    def template_names(self) -> list[str]:
        return [t.title for t in self._templates]

    def set_frequency(self, frequency: float) -> None:
        self._frequency = frequency

    def set_windows(self, min_duration_seconds: float, max_duration_seconds: float, freshness_seconds: float) -> None:
        """New event duration range and manual-trigger freshness. An active event keeps its end time."""
        self._min_duration = min_duration_seconds
        self._max_duration = max_duration_seconds
        self._freshness_ns = int(freshness_seconds * NS_PER_SECOND)

    def request_manual(self, signal: ManualEventSignal) -> None:
        """Queue a manual trigger; it is honored (or discarded) on the next scan."""
        self._pending_manual = signal

    def scan(self, now_ns: int) -> MarketEvent | None:
        """Run one scheduling pass. Returns the active event afterwards."""
        if self._pending_manual is not None:
            signal, self._pending_manual = self._pending_manual, None
            if self._start_manual(signal, now_ns):
                return self._active

        if self._active is not None:
            if self._active.is_expired(now_ns):
                logger.info("Market event ended: %s", self._active.title)
                self._active = None
                self._notify(EventType.MARKET_EVENT_ENDED, "The market has stabilized.", now_ns)
            return self._active

        if self._rng.random() < self._frequency:
            idx = int(self._rng.integers(len(self._templates)))
            self._start(self._templates[idx], now_ns, source="random")
        return self._active

    def clear(self) -> None:
        """Drop the active event and any queued trigger (session close)."""
        if self._active is not None:
            logger.info("Market event cleared: %s", self._active.title)
        self._active = None
        self._pending_manual = None

    def _start_manual(self, signal: ManualEventSignal, now_ns: int) -> bool:
        age_ns = now_ns - signal.timestamp_ns
        if age_ns >= self._freshness_ns:
            logger.debug("Discarding stale manual event %r (age %.1fs)", signal.event_name, age_ns / NS_PER_SECOND)
            return False
        template = self._find(signal.event_name)
        if template is None:
            logger.warning("Unknown manual event %r ignored", signal.event_name)
            return False
        self._start(template, now_ns, source="manual")
        return True

    def _start(self, template: MarketEventTemplate, now_ns: int, source: str) -> None:
        duration = self._min_duration + self._rng.random() * (self._max_duration - self._min_duration)
        self._active = MarketEvent(
            title=template.title,
            description=template.description,
            drift_modifier=template.drift_modifier,
            volatility_modifier=template.volatility_modifier,
            duration_seconds=duration,
            expires_at_ns=now_ns + int(duration * NS_PER_SECOND),
        )
        logger.info(
            "Market event started (%s): %s | drift %+.2f vol %+.2f for %.0fs",
            source,
            template.title,
            template.drift_modifier,
            template.volatility_modifier,
            duration,
        )
        self._notify(
            EventType.MARKET_EVENT_STARTED,
            template.title,
            now_ns,
            description=template.description,
            trigger=source,
        )

    def _find(self, title: str) -> MarketEventTemplate | None:
        for template in self._templates:
            if template.title == title:
                return template
        return None

    def _notify(self, event_type: EventType, text: str, now_ns: int, **extra) -> None:
        if self._event_bus is None:
            return
        self._event_bus.publish(
            make_notice(event_type, NoticeLevel.INFO, text, now_ns, "EventInjector", **extra)
        )


MARKET_EVENT_TEMPLATES = (
    MarketEventTemplate(
        title="BREAKING: Positive Economic Report",
        description="Stronger than expected GDP growth boosts investor confidence.",
        drift_modifier=0.15,
        volatility_modifier=0.05,
    ),
    MarketEventTemplate(
        title="NEWS: Inflation Fears Rise",
        description="Concerns over rising inflation are causing market uncertainty and a potential downturn.",
        drift_modifier=-0.20,
        volatility_modifier=0.15,
    ),
    MarketEventTemplate(
        title="ALERT: Major Tech Sector Breakthrough",
        description="A significant technological advancement is driving a rally in growth stocks.",
        drift_modifier=0.25,
        volatility_modifier=0.20,
    ),
    MarketEventTemplate(
        title="UPDATE: Global Supply Chain Issues",
        description="Disruptions in global supply chains are negatively impacting corporate earnings.",
        drift_modifier=-0.15,
        volatility_modifier=0.10,
    ),
    MarketEventTemplate(
        title="FLASH: Market Experiencing Unusual Stability",
        description="Low trading volume and a lack of news have led to a period of market calm.",
        drift_modifier=0.0,
        volatility_modifier=-0.10,
    ),
)
