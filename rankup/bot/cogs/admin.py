"""
rankup.bot.cogs.admin — Admin Slash Commands
=============================================

Operator commands (all require the configured ``admin_role_id``, all
replies ephemeral, all mutations audited in ``admin_log``):

- /stat-add, /stat-remove    — adjust message or voice counters
- /derank, /derank-all       — move a member down one rank / strip all ranks
- /blacklist add|remove      — gate a member's advancement
- /blacklist-list            — show the blacklist
- /force-reset               — reset all statistics now (type "confirm")
- /reset-schedule            — show or set the next reset boundary
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord
from discord import app_commands
from discord.ext import commands

from rankup.constants import FORCE_RESET_CONFIRMATION, format_minutes
from rankup.database.engine import run_db
from rankup.database.models import AdminActionType
from rankup.engine.errors import StoreFailure
from rankup.services.admin_service import log_admin_action
from rankup.services.blacklist_service import (
    add_to_blacklist,
    get_blacklist,
    remove_from_blacklist,
)
from rankup.services.embeds import (
    build_blacklist_embed,
    build_mod_log_embed,
    build_reset_embed,
    describe_role_change,
)
from rankup.services.schedule_service import parse_reset_boundary

if TYPE_CHECKING:
    from rankup.bot.core import RankupBot

logger = logging.getLogger(__name__)

STAT_CHOICES = [
    app_commands.Choice(name="Messages", value="messages"),
    app_commands.Choice(name="Voice minutes", value="voice"),
]


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: RankupBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


class Admin(commands.Cog, name="Admin"):
    """Server administration commands for RankUp."""

    blacklist = app_commands.Group(name="blacklist", description="Manage the rank-up blacklist.")

    def __init__(self, bot: RankupBot) -> None:
        self.bot = bot

    async def _audit(
        self,
        interaction: discord.Interaction,
        action_type: AdminActionType,
        target_id: int | None,
        details: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> None:
        try:
            await run_db(
                log_admin_action,
                self.bot.engine,
                actor_id=interaction.user.id,
                action_type=action_type,
                target_id=target_id,
                details=details,
                reason=reason,
            )
        except StoreFailure:
            logger.warning("Admin action %s on %s was not audited", action_type, target_id)

    # -------------------------------------------------------------------
    # /stat-add, /stat-remove
    # -------------------------------------------------------------------
    @app_commands.command(name="stat-add", description="Add messages or voice minutes to a member.")
    @app_commands.describe(
        member="The member to credit",
        stat="Which counter to change",
        amount="How many messages / voice minutes to add",
    )
    @app_commands.choices(stat=STAT_CHOICES)
    @is_admin()
    async def stat_add(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        stat: str,
        amount: app_commands.Range[int, 1],
    ) -> None:
        ledger = self.bot.ledger
        try:
            if stat == "messages":
                snap = await run_db(ledger.add_messages, member.id, amount, join_date=member.joined_at)
            else:
                snap = await run_db(
                    ledger.add_voice_minutes, member.id, amount, join_date=member.joined_at
                )
        except StoreFailure:
            await interaction.response.send_message(
                "⚠️ Database error; nothing was changed.", ephemeral=True
            )
            return

        await self._audit(
            interaction, AdminActionType.STAT_ADD, member.id,
            {"stat": stat, "amount": amount,
             "message_count": snap.message_count, "voice_minutes": snap.voice_minutes},
        )
        await interaction.response.send_message(
            f"✅ **{member.display_name}** now has {snap.message_count} messages "
            f"and {format_minutes(snap.voice_minutes)} in voice.",
            ephemeral=True,
        )

    @app_commands.command(
        name="stat-remove", description="Remove messages or voice minutes from a member."
    )
    @app_commands.describe(
        member="The member to debit",
        stat="Which counter to change",
        amount="How many messages / voice minutes to remove",
    )
    @app_commands.choices(stat=STAT_CHOICES)
    @is_admin()
    async def stat_remove(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        stat: str,
        amount: app_commands.Range[int, 1],
    ) -> None:
        ledger = self.bot.ledger
        remove = ledger.remove_messages if stat == "messages" else ledger.remove_voice_minutes
        try:
            snap = await run_db(remove, member.id, amount)
        except StoreFailure:
            await interaction.response.send_message(
                "⚠️ Database error; nothing was changed.", ephemeral=True
            )
            return

        if snap is None:
            await interaction.response.send_message(
                f"❌ **{member.display_name}** has fewer than {amount} "
                f"{'messages' if stat == 'messages' else 'voice minutes'}.",
                ephemeral=True,
            )
            return

        await self._audit(
            interaction, AdminActionType.STAT_REMOVE, member.id,
            {"stat": stat, "amount": amount,
             "message_count": snap.message_count, "voice_minutes": snap.voice_minutes},
        )
        await interaction.response.send_message(
            f"✅ **{member.display_name}** now has {snap.message_count} messages "
            f"and {format_minutes(snap.voice_minutes)} in voice.",
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /derank, /derank-all
    # -------------------------------------------------------------------
    @app_commands.command(name="derank", description="Move a member down one rank.")
    @app_commands.describe(member="The member to derank")
    @is_admin()
    async def derank(self, interaction: discord.Interaction, member: discord.Member) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.bot.coordinator.derank(member.id, interaction.user.id)
        if result.ok:
            await self._audit(
                interaction, AdminActionType.DERANK, member.id,
                {"old_rank_index": result.old_rank_index, "new_rank_index": result.new_rank_index},
            )
        await interaction.followup.send(
            describe_role_change(result, self.bot.cfg.ladder, member.mention), ephemeral=True
        )

    @app_commands.command(
        name="derank-all", description="Remove every rank and permission role from a member."
    )
    @app_commands.describe(member="The member to strip")
    @is_admin()
    async def derank_all(self, interaction: discord.Interaction, member: discord.Member) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.bot.coordinator.derank_all(member.id, interaction.user.id)
        if result.ok:
            await self._audit(
                interaction, AdminActionType.DERANK_ALL, member.id,
                {"old_rank_index": result.old_rank_index, "revoked": list(result.revoked)},
            )
        await interaction.followup.send(
            describe_role_change(result, self.bot.cfg.ladder, member.mention), ephemeral=True
        )

    # -------------------------------------------------------------------
    # /blacklist add|remove, /blacklist-list
    # -------------------------------------------------------------------
    @blacklist.command(name="add", description="Block a member from ranking up.")
    @app_commands.describe(member="The member to blacklist", reason="Why")
    @is_admin()
    async def blacklist_add(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        reason: str = "No reason given",
    ) -> None:
        try:
            _, created = await run_db(
                add_to_blacklist, self.bot.engine, member.id,
                reason=reason, issued_by=interaction.user.id,
            )
        except StoreFailure:
            await interaction.response.send_message(
                "⚠️ Database error; blacklist unchanged.", ephemeral=True
            )
            return

        await self._audit(
            interaction, AdminActionType.BLACKLIST_ADD, member.id,
            {"created": created}, reason=reason,
        )
        verb = "blacklisted" if created else "blacklist entry updated for"
        await interaction.response.send_message(
            f"⛔ {verb} **{member.display_name}**.", ephemeral=True
        )
        await self.bot.post_mod_log(
            build_mod_log_embed("Blacklist add", member.id, interaction.user.id, reason)
        )

    @blacklist.command(name="remove", description="Allow a blacklisted member to rank up again.")
    @app_commands.describe(member="The member to remove from the blacklist")
    @is_admin()
    async def blacklist_remove(
        self, interaction: discord.Interaction, member: discord.Member
    ) -> None:
        try:
            removed = await run_db(remove_from_blacklist, self.bot.engine, member.id)
        except StoreFailure:
            await interaction.response.send_message(
                "⚠️ Database error; blacklist unchanged.", ephemeral=True
            )
            return

        if not removed:
            await interaction.response.send_message(
                f"**{member.display_name}** is not blacklisted.", ephemeral=True
            )
            return

        await self._audit(interaction, AdminActionType.BLACKLIST_REMOVE, member.id)
        await interaction.response.send_message(
            f"✅ **{member.display_name}** removed from the blacklist.", ephemeral=True
        )
        await self.bot.post_mod_log(
            build_mod_log_embed("Blacklist remove", member.id, interaction.user.id)
        )

    @app_commands.command(name="blacklist-list", description="Show every blacklisted member.")
    @is_admin()
    async def blacklist_list(self, interaction: discord.Interaction) -> None:
        try:
            entries = await run_db(get_blacklist, self.bot.engine)
        except StoreFailure:
            await interaction.response.send_message(
                "⚠️ Database error; could not read the blacklist.", ephemeral=True
            )
            return
        await interaction.response.send_message(
            embed=build_blacklist_embed(entries), ephemeral=True
        )

    # -------------------------------------------------------------------
    # /force-reset
    # -------------------------------------------------------------------
    @app_commands.command(
        name="force-reset", description="Reset every member's statistics right now."
    )
    @app_commands.describe(confirmation=f'Type "{FORCE_RESET_CONFIRMATION}" to proceed')
    @is_admin()
    async def force_reset(self, interaction: discord.Interaction, confirmation: str) -> None:
        if confirmation.strip().lower() != FORCE_RESET_CONFIRMATION:
            await interaction.response.send_message(
                f'❌ Type "{FORCE_RESET_CONFIRMATION}" to reset all statistics.',
                ephemeral=True,
            )
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            count = await run_db(self.bot.ledger.reset_all)
        except StoreFailure:
            await interaction.followup.send(
                "⚠️ Reset failed and was rolled back; no statistics changed.", ephemeral=True
            )
            return

        await self._audit(interaction, AdminActionType.FORCE_RESET, None, {"members": count})
        next_at = self.bot.reset_scheduler.next_fire_at
        await interaction.followup.send(
            embed=build_reset_embed(count, next_at), ephemeral=True
        )

    # -------------------------------------------------------------------
    # /reset-schedule
    # -------------------------------------------------------------------
    @app_commands.command(
        name="reset-schedule", description="Show or change the statistics reset schedule."
    )
    @app_commands.describe(
        date="Next reset as DD-MM (midnight) or ISO-8601; omit to just show",
        interval_days="Days between resets",
    )
    @is_admin()
    async def reset_schedule(
        self,
        interaction: discord.Interaction,
        date: str | None = None,
        interval_days: app_commands.Range[int, 1, 365] | None = None,
    ) -> None:
        scheduler = self.bot.reset_scheduler

        if date is None and interval_days is None:
            schedule = scheduler.schedule
            if schedule is None:
                text = "No reset is scheduled. Set one with `/reset-schedule date:DD-MM`."
            else:
                text = (
                    f"Next reset: {discord.utils.format_dt(schedule.next_reset_at, 'F')} "
                    f"({discord.utils.format_dt(schedule.next_reset_at, 'R')}), "
                    f"every {schedule.interval_days} days."
                )
            await interaction.response.send_message(text, ephemeral=True)
            return

        if date is not None:
            try:
                boundary = parse_reset_boundary(date, tz=self.bot.cfg.reset_timezone)
            except ValueError as exc:
                await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
                return
        elif scheduler.schedule is not None:
            boundary = scheduler.schedule.next_reset_at
        else:
            await interaction.response.send_message(
                "❌ No reset is scheduled yet; provide a date.", ephemeral=True
            )
            return

        try:
            schedule = await scheduler.configure(boundary, interval_days)
        except StoreFailure:
            await interaction.response.send_message(
                "⚠️ Database error; schedule unchanged.", ephemeral=True
            )
            return

        assert schedule is not None
        await self._audit(
            interaction, AdminActionType.SCHEDULE_UPDATE, None,
            {"next_reset_at": schedule.next_reset_at, "interval_days": schedule.interval_days},
        )
        await interaction.response.send_message(
            f"✅ Next reset {discord.utils.format_dt(schedule.next_reset_at, 'F')}, "
            f"then every {schedule.interval_days} days.",
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # Error handler for missing admin role
    # -------------------------------------------------------------------
    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            await interaction.response.send_message(
                "🔒 You need the Admin role to use this command.",
                ephemeral=True,
            )
        else:
            raise error


async def setup(bot: RankupBot) -> None:
    await bot.add_cog(Admin(bot))
