"""
rankup.bot.cogs.roles — Permission Role Sync
=============================================

When anyone (a moderator, another bot, the Coordinator itself) adds a
rank role to a member, make sure the member also holds that rank's
permission role.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

if TYPE_CHECKING:
    from rankup.bot.core import RankupBot

logger = logging.getLogger(__name__)


class RoleSync(commands.Cog, name="RoleSync"):
    """Keeps permission roles in step with rank roles."""

    def __init__(self, bot: RankupBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        if after.bot or after.guild.id != self.bot.cfg.guild_id:
            return
        added = {r.id for r in after.roles} - {r.id for r in before.roles}
        if not added:
            return
        try:
            result = await self.bot.coordinator.sync_permission_roles(after.id, added)
        except Exception:
            logger.exception(
                "Permission role sync failed for %s", after.id,
                extra={"member_id": after.id, "added": sorted(added)},
            )
            return
        if not result.ok:
            logger.warning(
                "Permission role sync for %s stopped at role %s",
                after.id, result.failed_role_id,
            )


async def setup(bot: RankupBot) -> None:
    await bot.add_cog(RoleSync(bot))
