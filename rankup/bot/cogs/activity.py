"""
rankup.bot.cogs.activity — Message & Voice Capture
===================================================

Feeds the Activity Ledger from gateway events.

Message gates (in order): bots, DMs, other guilds, slash-prefixed text,
ranking-role membership, and a per-member rate limit.  Voice state changes
are folded through :class:`VoiceSessionTracker`; every closed session that
earns at least one minute is credited.

A ledger failure drops the single event; the bot keeps serving everyone
else.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import discord
from discord.ext import commands, tasks

from rankup.database.engine import run_db
from rankup.engine.errors import StoreFailure

if TYPE_CHECKING:
    from rankup.bot.core import RankupBot

logger = logging.getLogger(__name__)


def counts_toward_rank(bot: RankupBot, member: discord.Member) -> bool:
    """Whether *member*'s activity is tracked at all."""
    if member.bot:
        return False
    ranking_roles = bot.cfg.ladder.ranking_role_ids
    if not bot.cfg.require_ranking_role or not ranking_roles:
        return True
    return any(role.id in ranking_roles for role in member.roles)


class Activity(commands.Cog, name="Activity"):
    """Counts messages and voice minutes into the ledger."""

    def __init__(self, bot: RankupBot) -> None:
        self.bot = bot
        # Per-member rate limit: member_id → monotonic timestamp of last credit
        self._last_credit: dict[int, float] = {}

    async def cog_load(self) -> None:
        self._prune_rate_limits.start()

    async def cog_unload(self) -> None:
        self._prune_rate_limits.cancel()
        self._last_credit.clear()

    @tasks.loop(minutes=5)
    async def _prune_rate_limits(self) -> None:
        """Drop rate-limit entries that can no longer block anything."""
        cutoff = time.monotonic() - max(60.0, 2 * self.bot.cfg.message_rate_limit_seconds)
        before = len(self._last_credit)
        self._last_credit = {k: v for k, v in self._last_credit.items() if v > cutoff}
        pruned = before - len(self._last_credit)
        if pruned:
            logger.debug("Pruned %d message rate-limit entries", pruned)

    # -------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------
    def _rate_limited(self, member_id: int) -> bool:
        now = time.monotonic()
        last = self._last_credit.get(member_id)
        if last is not None and now - last < self.bot.cfg.message_rate_limit_seconds:
            return True
        self._last_credit[member_id] = now
        return False

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        try:
            await self._handle_message(message)
        except Exception:
            logger.exception(
                "Error processing message %s from user %s",
                message.id, message.author.id,
                extra={"event_type": "message", "member_id": message.author.id,
                       "message_id": message.id},
            )

    async def _handle_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        if message.guild is None or message.guild.id != self.bot.cfg.guild_id:
            return
        if message.content.startswith("/"):
            return

        member = message.author
        if not isinstance(member, discord.Member) or not counts_toward_rank(self.bot, member):
            return
        if self._rate_limited(member.id):
            logger.debug("Rate limit active for %s", member.id)
            return

        try:
            await run_db(
                self.bot.ledger.add_messages, member.id, 1,
                at=message.created_at, join_date=member.joined_at,
            )
        except StoreFailure:
            logger.warning("Dropped message credit for %s (message %s)", member.id, message.id)

    # -------------------------------------------------------------------
    # Voice
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        logger.debug(
            "Gateway event: VOICE_STATE %s (%s → %s)",
            member.id,
            getattr(before.channel, "name", "None"),
            getattr(after.channel, "name", "None"),
        )
        try:
            await self._handle_voice_update(member, before, after)
        except Exception:
            logger.exception(
                "Error processing voice state update for user %s", member.id,
                extra={"event_type": "voice", "member_id": member.id},
            )

    async def _handle_voice_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        if member.guild.id != self.bot.cfg.guild_id:
            return
        tracker = self.bot.voice_tracker
        if member.id not in tracker and not counts_toward_rank(self.bot, member):
            return

        old_channel = before.channel.id if before.channel else None
        new_channel = after.channel.id if after.channel else None
        now = discord.utils.utcnow()

        opening = old_channel is None and new_channel is not None
        credit = tracker.transition(member.id, old_channel, new_channel, now)

        try:
            if opening:
                await run_db(self.bot.ledger.ensure_member, member.id, member.joined_at)
            if credit is not None and credit.minutes > 0:
                await run_db(
                    self.bot.ledger.add_voice_minutes, member.id, credit.minutes,
                    joined_at=credit.joined_at, left_at=credit.left_at,
                    join_date=member.joined_at,
                )
                logger.info("Credited %d voice minutes to %s", credit.minutes, member.id)
        except StoreFailure:
            logger.warning(
                "Dropped voice credit for %s (%s → %s)",
                member.id,
                credit.joined_at.isoformat() if credit else now.isoformat(),
                now.isoformat(),
            )


async def setup(bot: RankupBot) -> None:
    await bot.add_cog(Activity(bot))
