"""
rankup.services.embeds — Discord embed builders
================================================

All embed construction lives here so the cogs only supply data.  The
core returns structured results; this module turns them into text.
"""

from __future__ import annotations

from datetime import datetime

import discord

from rankup.constants import format_duration, format_minutes
from rankup.engine.errors import AdvanceStatus
from rankup.engine.ranks import Eligibility, RankLadder
from rankup.engine.records import BlacklistRecord
from rankup.services.advancement import AdvanceResult, RankStatus, RoleChangeResult

_BAR_WIDTH = 10


def progress_bar(percent: float, width: int = _BAR_WIDTH) -> str:
    """``"▰▰▰▱▱▱▱▱▱▱ 30%"``"""
    percent = max(0.0, min(100.0, percent))
    filled = round(percent / 100 * width)
    return f"{'▰' * filled}{'▱' * (width - filled)} {percent:.0f}%"


def _timestamp(value: datetime) -> str:
    return discord.utils.format_dt(value, style="F")


def _requirements_text(elig: Eligibility) -> str:
    nxt = elig.next_rank
    assert nxt is not None
    joiner = "and" if nxt.mode == "and" else "or"
    parts = []
    if nxt.required_messages:
        parts.append(f"**{nxt.required_messages}** messages")
    if nxt.required_voice_hours:
        parts.append(f"**{nxt.required_voice_hours:g}h** in voice")
    return f" {joiner} ".join(parts) or "No activity required"


# ---------------------------------------------------------------------------
# /rank and /rankup panel
# ---------------------------------------------------------------------------
def build_rank_embed(
    display_name: str,
    avatar_url: str,
    status: RankStatus,
    ladder: RankLadder,
    community_name: str,
) -> discord.Embed:
    """Progress card: current rank, counters, and what the next rank needs."""
    rank_name = (
        ladder[status.rank_index].name if status.rank_index is not None else "Unranked"
    )
    embed = discord.Embed(
        title=f"\U0001f4c8 {display_name}'s Rank",
        color=discord.Color.blurple(),
    )
    embed.set_thumbnail(url=avatar_url)
    embed.add_field(name="Rank", value=rank_name, inline=True)

    snap = status.snapshot
    if snap is not None:
        embed.add_field(name="\U0001f4ac Messages", value=str(snap.message_count), inline=True)
        embed.add_field(
            name="\U0001f3a4 Voice", value=format_minutes(snap.voice_minutes), inline=True
        )

    elig = status.eligibility
    if elig is not None and elig.has_next:
        assert elig.next_rank is not None
        embed.add_field(
            name=f"Next: {elig.next_rank.name}",
            value=_requirements_text(elig),
            inline=False,
        )
        embed.add_field(
            name="Messages", value=progress_bar(elig.messages_progress), inline=True
        )
        embed.add_field(
            name="Voice", value=progress_bar(elig.voice_progress), inline=True
        )
        if elig.on_cooldown:
            embed.add_field(
                name="⏳ Cooldown",
                value=format_duration(elig.cooldown_remaining),
                inline=False,
            )
        elif elig.can_advance and not status.blacklisted:
            embed.add_field(
                name="✅ Ready",
                value="You can rank up now!",
                inline=False,
            )
    elif elig is not None:
        embed.add_field(name="\U0001f451 Top rank", value="Nothing left to climb.", inline=False)

    if status.blacklisted:
        embed.add_field(
            name="⛔ Blacklisted",
            value="Activity is still counted, but rank advancement is blocked.",
            inline=False,
        )

    embed.set_footer(text=community_name)
    return embed


# ---------------------------------------------------------------------------
# Advance / derank outcomes
# ---------------------------------------------------------------------------
def describe_advance(result: AdvanceResult, ladder: RankLadder) -> str:
    """Short user-facing text for any :class:`AdvanceResult`."""
    match result.status:
        case AdvanceStatus.SUCCESS:
            assert result.new_rank_index is not None
            return f"\U0001f389 You ranked up to **{ladder[result.new_rank_index].name}**!"
        case AdvanceStatus.BLACKLISTED:
            return "⛔ You are blacklisted from ranking up."
        case AdvanceStatus.NOT_REGISTERED:
            return "\U0001f50d No activity recorded for you yet. Chat or join voice first!"
        case AdvanceStatus.ALREADY_MAX_RANK:
            return "\U0001f451 You already hold the highest rank."
        case AdvanceStatus.ON_COOLDOWN:
            return (
                "⏳ You ranked up recently. Try again in "
                f"**{format_duration(result.cooldown_remaining)}**."
            )
        case AdvanceStatus.REQUIREMENTS_NOT_MET:
            elig = result.eligibility
            if elig is None or elig.next_rank is None:
                return "You do not meet the requirements yet."
            missing = []
            if elig.remaining_messages and not elig.messages_ok:
                missing.append(f"{elig.remaining_messages} more messages")
            if elig.remaining_voice_hours and not elig.voice_ok:
                missing.append(f"{elig.remaining_voice_hours:.1f} more voice hours")
            joiner = " and " if elig.next_rank.mode == "and" else " or "
            return (
                f"Not yet! **{elig.next_rank.name}** needs "
                f"{joiner.join(missing) or 'more activity'}."
            )
        case AdvanceStatus.ROLE_SIDE_EFFECT_FAILURE if result.committed:
            return (
                "⚠️ Your rank was recorded but some roles could not be "
                "updated. A moderator has been notified."
            )
        case AdvanceStatus.ROLE_SIDE_EFFECT_FAILURE:
            return "⚠️ Discord rejected the role change. Please try again shortly."
        case _:
            return "⚠️ Something went wrong. Please try again later."


def build_advance_embed(
    user_id: int,
    avatar_url: str,
    result: AdvanceResult,
    ladder: RankLadder,
) -> discord.Embed:
    """Public celebration for a successful rank up."""
    assert result.new_rank_index is not None
    old = ladder[result.old_rank_index].name if result.old_rank_index is not None else "Unranked"
    embed = discord.Embed(
        title="⬆️ Rank Up!",
        description=f"<@{user_id}> advanced from **{old}** to **{ladder[result.new_rank_index].name}**!",
        color=discord.Color.gold(),
    )
    embed.set_thumbnail(url=avatar_url)
    return embed


def describe_role_change(result: RoleChangeResult, ladder: RankLadder, target: str) -> str:
    """Operator-facing text for a derank or derank-all."""
    match result.status:
        case AdvanceStatus.SUCCESS if result.new_rank_index is None:
            return f"✅ Removed all rank roles from {target}."
        case AdvanceStatus.SUCCESS:
            return f"✅ {target} is now **{ladder[result.new_rank_index].name}**."
        case AdvanceStatus.NO_RANK:
            return f"{target} holds no rank role."
        case AdvanceStatus.ALREADY_MIN_RANK:
            return f"{target} is already at the lowest rank."
        case _:
            return f"⚠️ Role update for {target} failed; check bot permissions."


# ---------------------------------------------------------------------------
# Resets & moderation
# ---------------------------------------------------------------------------
def build_reset_embed(member_count: int, next_reset_at: datetime | None) -> discord.Embed:
    """Announcement posted after a scheduled (or forced) statistics reset."""
    embed = discord.Embed(
        title="\U0001f504 Statistics Reset",
        description=(
            f"Message and voice statistics were reset for **{member_count}** members."
        ),
        color=discord.Color.orange(),
    )
    if next_reset_at is not None:
        embed.add_field(name="Next reset", value=_timestamp(next_reset_at), inline=False)
    return embed


def build_blacklist_embed(entries: list[BlacklistRecord]) -> discord.Embed:
    """Paged-by-truncation listing for ``/blacklist-list``."""
    embed = discord.Embed(title="⛔ Blacklist", color=discord.Color.dark_red())
    if not entries:
        embed.description = "Nobody is blacklisted."
        return embed

    lines = []
    for entry in entries[:20]:
        by = f" by <@{entry.issued_by}>" if entry.issued_by else ""
        lines.append(f"<@{entry.member_id}>{by}: {entry.reason or 'no reason'}")
    if len(entries) > 20:
        lines.append(f"*...and {len(entries) - 20} more*")
    embed.description = "\n".join(lines)
    return embed


def build_mod_log_embed(
    action: str,
    target_id: int,
    actor_id: int,
    reason: str | None = None,
) -> discord.Embed:
    """Mod-log notice for blacklist changes."""
    embed = discord.Embed(
        title=f"\U0001f6e1️ {action}",
        description=f"<@{target_id}> by <@{actor_id}>",
        color=discord.Color.dark_grey(),
    )
    if reason:
        embed.add_field(name="Reason", value=reason, inline=False)
    return embed
