"""Asyncio scheduler driving the engine's three periodic triggers.

  price tick  — every settings.tick_interval_seconds (Slow 5s / Normal 3s / Fast 1.5s)
  event scan  — every settings.event_scan_seconds (2s)
  timer poll  — every timer_poll_seconds (halt auto-resume)

Intervals are re-read each cycle so a speed change applied at the next
open takes effect without restarting the loops. Engine mutators are
blocking (they take the engine lock) and run in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from tradesim.engine.market_engine import MarketEngine

logger = logging.getLogger(__name__)


class MarketScheduler:
    def __init__(self, engine: MarketEngine, timer_poll_seconds: float = 0.25) -> None:
        self.engine = engine
        self.timer_poll_seconds = timer_poll_seconds
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run_periodic(
        self,
        name: str,
        interval: Callable[[], float],
        callback: Callable[[], object],
        stop_event: asyncio.Event,
    ) -> None:
        loop = asyncio.get_running_loop()
        while not stop_event.is_set():
            start = loop.time()
            try:
                await asyncio.to_thread(callback)
            except Exception:
                logger.exception("Scheduler %s loop error", name)
            delay = max(0.0, interval() - (loop.time() - start))
            if delay:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        if stop_event is None:
            stop_event = asyncio.Event()
        self._stop_event = stop_event
        engine = self.engine
        logger.info("Scheduler started")
        await asyncio.gather(
            self._run_periodic(
                "tick",
                lambda: engine.settings.tick_interval_seconds,
                engine.tick,
                stop_event,
            ),
            self._run_periodic(
                "events",
                lambda: engine.settings.event_scan_seconds,
                engine.scan_events,
                stop_event,
            ),
            self._run_periodic(
                "timers",
                lambda: self.timer_poll_seconds,
                engine.poll_timers,
                stop_event,
            ),
        )
        logger.info("Scheduler stopped")

    def start(self) -> asyncio.Task:
        """Run in the background on the current event loop."""
        if not self.running:
            self._stop_event = asyncio.Event()
            self._task = asyncio.create_task(self.run_forever(self._stop_event))
        return self._task

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
