"""
rankup.bot.cogs.ranks — Member Rank Commands
=============================================

- /rank [member] — progress card (read-only)
- /rankup        — progress card with a "Rank Up" button

The command and the button both end in
:meth:`AdvancementCoordinator.attempt_advance`; neither re-implements any
eligibility check.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from rankup.engine.errors import AdvanceStatus, RankupError
from rankup.services.embeds import build_advance_embed, build_rank_embed, describe_advance

if TYPE_CHECKING:
    from rankup.bot.core import RankupBot

logger = logging.getLogger(__name__)


async def run_advance(bot: RankupBot, interaction: discord.Interaction) -> bool:
    """Attempt an advance for the interaction's user and report the outcome.

    The interaction must already be deferred.  Returns True on success.
    """
    user = interaction.user
    result = await bot.coordinator.attempt_advance(user.id)
    ladder = bot.cfg.ladder

    if result.status is AdvanceStatus.ROLE_SIDE_EFFECT_FAILURE and result.committed:
        await bot.post_mod_log(discord.Embed(
            title="⚠️ Rank roles out of sync",
            description=(
                f"<@{user.id}> advanced to rank {result.new_rank_index} but role "
                f"{result.failed_role_id} could not be updated."
            ),
            color=discord.Color.red(),
        ))

    await interaction.followup.send(describe_advance(result, ladder), ephemeral=True)
    if not result.ok:
        return False

    if interaction.channel is not None and hasattr(interaction.channel, "send"):
        try:
            await interaction.channel.send(  # type: ignore[union-attr]
                embed=build_advance_embed(user.id, user.display_avatar.url, result, ladder)
            )
        except discord.HTTPException:
            logger.warning("Could not post rank-up celebration for %s", user.id)
    return True


class RankUpView(discord.ui.View):
    """A single "Rank Up" button bound to the member who opened the panel."""

    def __init__(self, bot: RankupBot, owner_id: int) -> None:
        super().__init__(timeout=120.0)
        self.bot = bot
        self.owner_id = owner_id

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.owner_id:
            await interaction.response.send_message(
                "This button belongs to someone else. Use /rankup yourself.",
                ephemeral=True,
            )
            return False
        return True

    @discord.ui.button(label="Rank Up", style=discord.ButtonStyle.green, emoji="⬆️")
    async def rank_up(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        if await run_advance(self.bot, interaction):
            button.disabled = True
            self.stop()
            if interaction.message is not None:
                await interaction.message.edit(view=self)


class Ranks(commands.Cog, name="Ranks"):
    """Progress display and self-service advancement."""

    def __init__(self, bot: RankupBot) -> None:
        self.bot = bot

    async def _status_embed(self, member: discord.Member | discord.User) -> discord.Embed | None:
        try:
            status = await self.bot.coordinator.status(member.id)
        except RankupError:
            logger.exception("Could not build rank status for %s", member.id)
            return None
        return build_rank_embed(
            member.display_name,
            member.display_avatar.url,
            status,
            self.bot.cfg.ladder,
            self.bot.cfg.community_name,
        )

    # -------------------------------------------------------------------
    # /rank
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="rank",
        description="View your (or another member's) rank progress.",
    )
    @app_commands.describe(member="The member to look up (defaults to you)")
    async def rank(self, ctx: commands.Context, member: discord.Member | None = None) -> None:
        target = member or ctx.author
        embed = await self._status_embed(target)
        if embed is None:
            await ctx.send("⚠️ Rank data is unavailable right now.", ephemeral=True)
            return
        await ctx.send(embed=embed)

    # -------------------------------------------------------------------
    # /rankup
    # -------------------------------------------------------------------
    @app_commands.command(name="rankup", description="Check your progress and rank up.")
    async def rankup(self, interaction: discord.Interaction) -> None:
        embed = await self._status_embed(interaction.user)
        if embed is None:
            await interaction.response.send_message(
                "⚠️ Rank data is unavailable right now.", ephemeral=True
            )
            return
        await interaction.response.send_message(
            embed=embed,
            view=RankUpView(self.bot, interaction.user.id),
            ephemeral=True,
        )


async def setup(bot: RankupBot) -> None:
    await bot.add_cog(Ranks(bot))
