"""Tests for MarketScheduler: periodic loops, error isolation, clean stop."""

import asyncio
from types import SimpleNamespace

import pytest

from tradesim.engine.scheduler import MarketScheduler


class CountingEngine:
    """Stand-in exposing only what the scheduler drives."""

    def __init__(self, fail_first_tick=False):
        self.settings = SimpleNamespace(tick_interval_seconds=0.01, event_scan_seconds=0.01)
        self.ticks = 0
        self.scans = 0
        self.polls = 0
        self._fail_first_tick = fail_first_tick

    def tick(self):
        self.ticks += 1
        if self._fail_first_tick and self.ticks == 1:
            raise RuntimeError("tick failure")

    def scan_events(self):
        self.scans += 1

    def poll_timers(self):
        self.polls += 1
        return False


class TestMarketScheduler:
    @pytest.mark.asyncio
    async def test_runs_all_three_loops(self):
        engine = CountingEngine()
        scheduler = MarketScheduler(engine, timer_poll_seconds=0.01)
        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.1)
        await scheduler.stop()
        assert not scheduler.running
        assert engine.ticks >= 2
        assert engine.scans >= 2
        assert engine.polls >= 2

    @pytest.mark.asyncio
    async def test_loop_survives_callback_error(self):
        engine = CountingEngine(fail_first_tick=True)
        scheduler = MarketScheduler(engine, timer_poll_seconds=0.01)
        scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()
        assert engine.ticks >= 2

    @pytest.mark.asyncio
    async def test_stop_interrupts_long_interval(self):
        engine = CountingEngine()
        engine.settings.tick_interval_seconds = 60.0
        engine.settings.event_scan_seconds = 60.0
        scheduler = MarketScheduler(engine, timer_poll_seconds=60.0)
        scheduler.start()
        await asyncio.sleep(0.05)
        await asyncio.wait_for(scheduler.stop(), timeout=2.0)
        assert engine.ticks == 1

    @pytest.mark.asyncio
    async def test_drives_real_engine(self, engine):
        engine.open_session()
        stop = asyncio.Event()
        task = asyncio.create_task(MarketScheduler(engine).run_forever(stop))
        await asyncio.sleep(0.1)
        stop.set()
        await asyncio.wait_for(task, timeout=2.0)
        # One immediate tick on top of the listing candle
        assert len(engine.instruments["AAA"].candles()) == 2
