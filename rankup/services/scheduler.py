"""
rankup.services.scheduler — Recurring Statistics Reset
=======================================================

The only component with a wall-clock timer.  One ``asyncio`` task per
process sleeps until the persisted boundary, runs
:meth:`ActivityLedger.reset_all`, moves the boundary forward by one
interval, persists it, and goes back to sleep.

Boundaries missed while the process was down are collapsed, not replayed:
:meth:`ResetScheduler.schedule_next` moves a stale boundary to the latest
one that has already passed and fires once, immediately, on its behalf.

A failed reset is retried for the same boundary after ``retry_delay``.
The reset and the boundary advance that follows it run shielded from
:meth:`ResetScheduler.cancel`, so a reset that has started always
persists its next boundary.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from sqlalchemy import Engine

from rankup.constants import (
    DEFAULT_RESET_INTERVAL_DAYS,
    DEFAULT_RESET_RETRY_MINUTES,
    as_utc,
    utcnow,
)
from rankup.database.engine import run_db
from rankup.engine.errors import StoreFailure
from rankup.services.ledger import ActivityLedger
from rankup.services.schedule_service import (
    ResetSchedule,
    catch_up,
    load_schedule,
    save_schedule,
)

logger = logging.getLogger(__name__)

ResetCallback = Callable[[int, datetime], Awaitable[None]]


class ResetScheduler:
    """Arms, fires, and re-arms the periodic ledger reset.

    Parameters
    ----------
    engine:
        Engine holding the ``settings`` table with the persisted schedule.
    ledger:
        Ledger whose counters are zeroed on every boundary.
    retry_delay:
        Back-off before retrying a boundary whose reset failed.
    on_reset:
        Optional ``async (member_count, next_boundary)`` notification hook,
        awaited after the new boundary has been persisted.
    clock, sleep:
        Injectable time sources (tests pass fakes).
    """

    def __init__(
        self,
        engine: Engine,
        ledger: ActivityLedger,
        *,
        retry_delay: timedelta = timedelta(minutes=DEFAULT_RESET_RETRY_MINUTES),
        default_interval_days: int = DEFAULT_RESET_INTERVAL_DAYS,
        on_reset: ResetCallback | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.engine = engine
        self.ledger = ledger
        self.retry_delay = retry_delay
        self.default_interval_days = default_interval_days
        self.on_reset = on_reset
        self._clock = clock
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Future[tuple[int, ResetSchedule]] | None = None
        self._schedule: ResetSchedule | None = None

    # -------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------
    @property
    def is_armed(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def schedule(self) -> ResetSchedule | None:
        return self._schedule

    @property
    def next_fire_at(self) -> datetime | None:
        if not self.is_armed or self._schedule is None:
            return None
        return self._schedule.next_reset_at

    # -------------------------------------------------------------------
    # Arming
    # -------------------------------------------------------------------
    async def schedule_next(self) -> ResetSchedule | None:
        """Load the persisted boundary, correct it if stale, and arm the timer.

        Stays idle (returns ``None``) until an operator has configured a
        boundary.  Any previously armed timer is cancelled first, and a
        reset it had already started is allowed to finish so the boundary
        read back here is the advanced one.
        """
        self.cancel()
        await self._settle_inflight()

        schedule = await run_db(load_schedule, self.engine)
        if schedule is None:
            logger.info("No reset boundary configured; reset scheduler idle")
            self._schedule = None
            return None

        corrected, skipped = catch_up(schedule, self._clock())
        if skipped:
            logger.warning(
                "Reset boundary %s was missed; folded %d boundar%s into %s, resetting now",
                schedule.next_reset_at.isoformat(), skipped,
                "y" if skipped == 1 else "ies", corrected.next_reset_at.isoformat(),
            )
            await self._persist(corrected)

        self._arm(corrected)
        return corrected

    async def configure(
        self,
        first_boundary: datetime,
        interval_days: int | None = None,
    ) -> ResetSchedule | None:
        """Operator change: persist a new boundary (and interval) and re-arm."""
        if interval_days is None:
            interval_days = (
                self._schedule.interval_days if self._schedule
                else self.default_interval_days
            )
        if interval_days <= 0:
            raise ValueError("interval_days must be positive")

        schedule = ResetSchedule(as_utc(first_boundary), interval_days)
        await run_db(save_schedule, self.engine, schedule)
        logger.info(
            "Reset schedule configured: next=%s interval=%dd",
            schedule.next_reset_at.isoformat(), interval_days,
        )
        return await self.schedule_next()

    def cancel(self) -> None:
        """Cancel the armed timer, if any.  Safe to call repeatedly.

        A reset already running in the worker thread is not interrupted: it
        completes and persists the next boundary in the background.  Callers
        that re-read the boundary go through :meth:`schedule_next`, which
        waits for it.
        """
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("Reset timer cancelled")
        self._task = None

    def _arm(self, schedule: ResetSchedule) -> None:
        self._schedule = schedule
        self._task = asyncio.create_task(self._run(schedule), name="rankup-reset-timer")
        logger.info(
            "Next statistics reset at %s (every %d days)",
            schedule.next_reset_at.isoformat(), schedule.interval_days,
        )

    # -------------------------------------------------------------------
    # Timer body
    # -------------------------------------------------------------------
    async def _persist(self, schedule: ResetSchedule) -> None:
        try:
            await run_db(save_schedule, self.engine, schedule)
        except StoreFailure:
            # Keep running on the in-memory boundary; a restart recomputes it.
            logger.exception(
                "Could not persist reset boundary %s",
                schedule.next_reset_at.isoformat(),
                extra={"next_reset_at": schedule.next_reset_at.isoformat()},
            )

    async def _reset_and_advance(self, schedule: ResetSchedule) -> tuple[int, ResetSchedule]:
        count = await run_db(self.ledger.reset_all)
        advanced, _ = catch_up(schedule.advanced(), self._clock())
        self._schedule = advanced
        await self._persist(advanced)
        return count, advanced

    async def _settle_inflight(self) -> None:
        inflight, self._inflight = self._inflight, None
        if inflight is None:
            return
        await asyncio.wait([inflight])
        if not inflight.cancelled() and inflight.exception() is not None:
            logger.warning(
                "Statistics reset interrupted by re-arm failed: %s", inflight.exception()
            )

    async def _run(self, schedule: ResetSchedule) -> None:
        while True:
            delay = (schedule.next_reset_at - self._clock()).total_seconds()
            if delay > 0:
                await self._sleep(delay)

            fired_at = schedule.next_reset_at
            self._inflight = asyncio.ensure_future(self._reset_and_advance(schedule))
            try:
                count, schedule = await asyncio.shield(self._inflight)
            except StoreFailure:
                logger.exception(
                    "Statistics reset failed; retrying in %s",
                    self.retry_delay,
                    extra={"boundary": schedule.next_reset_at.isoformat()},
                )
                self._inflight = None
                await self._sleep(self.retry_delay.total_seconds())
                continue
            self._inflight = None

            logger.info(
                "Statistics reset for boundary %s (%d members); next at %s",
                fired_at.isoformat(), count, schedule.next_reset_at.isoformat(),
            )

            if self.on_reset is not None:
                try:
                    await self.on_reset(count, schedule.next_reset_at)
                except Exception:
                    logger.exception("Reset notification failed")
