"""
rankup.bot.cogs.tasks — Reset Scheduler Lifecycle
==================================================

Arms the :class:`ResetScheduler` once the bot is ready and disarms it when
the cog unloads.

If no schedule is persisted yet and ``reset.first_boundary`` is set in
``config.yaml``, that boundary is stored first.  An existing schedule is
never overwritten from config; use ``/reset-schedule`` to change it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from rankup.database.engine import run_db
from rankup.services.schedule_service import (
    ResetSchedule,
    initialize_schedule,
    parse_reset_boundary,
)

if TYPE_CHECKING:
    from rankup.bot.core import RankupBot

logger = logging.getLogger(__name__)


class ResetTasks(commands.Cog):
    """Cog owning the statistics-reset timer."""

    def __init__(self, bot: RankupBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.arm_scheduler.start()

    async def cog_unload(self) -> None:
        self.arm_scheduler.cancel()
        self.bot.reset_scheduler.cancel()

    async def _bootstrap_boundary(self) -> None:
        cfg = self.bot.cfg
        if not cfg.reset_first_boundary:
            return
        try:
            boundary = parse_reset_boundary(cfg.reset_first_boundary, tz=cfg.reset_timezone)
        except ValueError:
            logger.exception("Invalid reset.first_boundary %r", cfg.reset_first_boundary)
            return
        written = await run_db(
            initialize_schedule,
            self.bot.engine,
            ResetSchedule(boundary, cfg.reset_interval_days),
        )
        if written:
            logger.info("Reset schedule initialised from config: first reset %s", boundary)

    @tasks.loop(count=1)
    async def arm_scheduler(self) -> None:
        """Persist the configured first boundary if needed, then arm the timer."""
        try:
            await self._bootstrap_boundary()
            await self.bot.reset_scheduler.schedule_next()
        except Exception:
            logger.exception("Could not arm the reset scheduler", extra={"task": "reset"})

    @arm_scheduler.before_loop
    async def _wait_ready(self) -> None:
        await self.bot.wait_until_ready()


async def setup(bot: RankupBot) -> None:
    await bot.add_cog(ResetTasks(bot))
