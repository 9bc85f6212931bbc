"""
tests/test_scheduler.py — Reset Scheduler Timer Tests
======================================================
Uses a fake clock and a fake sleep that advances the clock instead of
waiting.  Once its budget of completed sleeps is spent, the fake sleep
parks forever, which is where the armed timer waits for cancellation.
"""

from __future__ import annotations

import asyncio
import threading
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from rankup.engine.errors import StoreFailure
from rankup.services.schedule_service import ResetSchedule, load_schedule, save_schedule
from rankup.services.scheduler import ResetScheduler

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)
DAY = 86_400.0


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    return asyncio.run(coro)


async def until(predicate, timeout: float = 2.0) -> None:
    """Poll *predicate* on the real loop (run_db hops to a worker thread)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class FakeTime:

    def __init__(self, now: datetime) -> None:
        self.now = now
        self.delays: list[float] = []
        self.budget = 0

    def clock(self) -> datetime:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.budget <= 0:
            await asyncio.Event().wait()
        self.budget -= 1
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime(NOW)


def _scheduler(db_engine, ledger, fake_time, **kwargs) -> ResetScheduler:
    return ResetScheduler(
        db_engine, ledger,
        clock=fake_time.clock, sleep=fake_time.sleep, **kwargs,
    )


class TestArming:

    def test_idle_without_persisted_boundary(self, db_engine, ledger, fake_time):
        async def scenario():
            scheduler = _scheduler(db_engine, ledger, fake_time)
            assert await scheduler.schedule_next() is None
            assert scheduler.is_armed is False
            assert scheduler.next_fire_at is None

        run_async(scenario())

    def test_stale_boundary_fires_once_for_all_missed_cycles(self, db_engine, ledger, fake_time):
        stale = NOW - timedelta(days=40)
        save_schedule(db_engine, ResetSchedule(stale, 14))
        ledger.add_messages(1, 5)
        on_reset = AsyncMock()

        async def scenario():
            scheduler = _scheduler(db_engine, ledger, fake_time, on_reset=on_reset)
            corrected = await scheduler.schedule_next()
            await until(lambda: fake_time.delays)
            scheduler.cancel()
            return corrected

        corrected = run_async(scenario())

        assert corrected.next_reset_at == stale + timedelta(days=28)
        assert ledger.get_snapshot(1).message_count == 0
        on_reset.assert_awaited_once_with(1, stale + timedelta(days=42))
        assert fake_time.delays == [2 * DAY]
        assert load_schedule(db_engine).next_reset_at == stale + timedelta(days=42)

    def test_rearming_cancels_previous_timer(self, db_engine, ledger, fake_time):
        save_schedule(db_engine, ResetSchedule(NOW + timedelta(days=1), 14))

        async def scenario():
            scheduler = _scheduler(db_engine, ledger, fake_time)
            await scheduler.schedule_next()
            first = scheduler._task
            await scheduler.schedule_next()
            second = scheduler._task
            await asyncio.sleep(0)
            assert first.cancelled()
            assert second is not first
            assert scheduler.is_armed
            scheduler.cancel()
            scheduler.cancel()
            assert scheduler.is_armed is False

        run_async(scenario())

    def test_configure_persists_and_rearms(self, db_engine, ledger, fake_time):
        async def scenario():
            scheduler = _scheduler(db_engine, ledger, fake_time)
            schedule = await scheduler.configure(NOW + timedelta(days=3), 7)
            assert scheduler.next_fire_at == NOW + timedelta(days=3)
            assert schedule.interval_days == 7
            scheduler.cancel()

        run_async(scenario())
        assert load_schedule(db_engine) == ResetSchedule(NOW + timedelta(days=3), 7)

    def test_configure_rejects_bad_interval(self, db_engine, ledger, fake_time):
        async def scenario():
            scheduler = _scheduler(db_engine, ledger, fake_time)
            with pytest.raises(ValueError):
                await scheduler.configure(NOW + timedelta(days=3), 0)

        run_async(scenario())


class TestFiring:

    def test_fires_resets_and_advances_one_interval(self, db_engine, ledger, fake_time):
        boundary = NOW + timedelta(hours=1)
        save_schedule(db_engine, ResetSchedule(boundary, 14))
        ledger.add_messages(1, 5)
        ledger.add_voice_minutes(2, 30)
        on_reset = AsyncMock()
        fake_time.budget = 1

        async def scenario():
            scheduler = _scheduler(db_engine, ledger, fake_time, on_reset=on_reset)
            await scheduler.schedule_next()
            await until(lambda: len(fake_time.delays) == 2)
            assert scheduler.next_fire_at == boundary + timedelta(days=14)
            scheduler.cancel()

        run_async(scenario())

        on_reset.assert_awaited_once_with(2, boundary + timedelta(days=14))
        assert ledger.get_snapshot(1).message_count == 0
        assert ledger.get_snapshot(2).voice_minutes == 0
        assert fake_time.delays == [3600.0, 14 * DAY]
        assert load_schedule(db_engine).next_reset_at == boundary + timedelta(days=14)

    def test_failed_reset_retries_same_boundary(self, db_engine, fake_time):
        boundary = NOW + timedelta(hours=1)
        save_schedule(db_engine, ResetSchedule(boundary, 14))
        ledger = MagicMock()
        ledger.reset_all.side_effect = [StoreFailure("reset_all"), 7]
        on_reset = AsyncMock()
        fake_time.budget = 2

        async def scenario():
            scheduler = _scheduler(
                db_engine, ledger, fake_time,
                retry_delay=timedelta(minutes=60), on_reset=on_reset,
            )
            await scheduler.schedule_next()
            await until(lambda: len(fake_time.delays) == 3)
            scheduler.cancel()

        run_async(scenario())

        assert ledger.reset_all.call_count == 2
        assert fake_time.delays[:2] == [3600.0, 3600.0]
        on_reset.assert_awaited_once_with(7, boundary + timedelta(days=14))
        assert fake_time.delays[2] == 14 * DAY - 3600.0

    def test_notification_failure_keeps_timer_running(self, db_engine, ledger, fake_time):
        save_schedule(db_engine, ResetSchedule(NOW + timedelta(minutes=5), 14))
        on_reset = AsyncMock(side_effect=RuntimeError("channel gone"))
        fake_time.budget = 1

        async def scenario():
            scheduler = _scheduler(db_engine, ledger, fake_time, on_reset=on_reset)
            await scheduler.schedule_next()
            await until(lambda: len(fake_time.delays) == 2)
            assert scheduler.is_armed
            scheduler.cancel()

        run_async(scenario())
        on_reset.assert_awaited_once()

    def test_cancel_during_reset_still_advances_boundary(self, db_engine, fake_time):
        boundary = NOW - timedelta(hours=1)
        save_schedule(db_engine, ResetSchedule(boundary, 14))
        entered = threading.Event()
        release = threading.Event()

        def slow_reset():
            entered.set()
            release.wait(2)
            return 4

        ledger = MagicMock()
        ledger.reset_all.side_effect = slow_reset

        async def scenario():
            scheduler = _scheduler(db_engine, ledger, fake_time)
            await scheduler.schedule_next()
            await until(entered.is_set)
            rearm = asyncio.create_task(scheduler.schedule_next())
            await asyncio.sleep(0.05)
            assert not rearm.done()
            release.set()
            rearmed = await rearm
            scheduler.cancel()
            return rearmed

        rearmed = run_async(scenario())

        assert ledger.reset_all.call_count == 1
        assert rearmed.next_reset_at == boundary + timedelta(days=14)
        assert load_schedule(db_engine).next_reset_at == boundary + timedelta(days=14)
