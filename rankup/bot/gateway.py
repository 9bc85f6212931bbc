"""
rankup.bot.gateway — discord.py implementation of RoleGateway
==============================================================

Adapts guild members to the three role operations the Advancement
Coordinator needs.  Role ids are wrapped in ``discord.Object`` so grants
work even when the role is not in the local cache.

Writes never consult the cached ``member.roles``: the role endpoints are
idempotent on Discord's side, and the cache can lag behind a role change
made moments earlier by this bot or by a moderator.
"""

from __future__ import annotations

import logging

import discord

logger = logging.getLogger(__name__)


class MemberNotFound(LookupError):
    """The member is not (or no longer) in the primary guild."""


class DiscordRoleGateway:
    """Role reads and writes against the primary guild."""

    def __init__(self, client: discord.Client, guild_id: int) -> None:
        self.client = client
        self.guild_id = guild_id

    async def _member(self, member_id: int) -> discord.Member:
        guild = self.client.get_guild(self.guild_id)
        if guild is None:
            raise MemberNotFound(f"Guild {self.guild_id} is not available")
        member = guild.get_member(member_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(member_id)
        except discord.NotFound:
            raise MemberNotFound(f"Member {member_id} is not in guild {self.guild_id}") from None

    async def fetch_role_ids(self, member_id: int) -> set[int]:
        member = await self._member(member_id)
        return {role.id for role in member.roles}

    async def grant_role(self, member_id: int, role_id: int, reason: str) -> None:
        member = await self._member(member_id)
        await member.add_roles(discord.Object(id=role_id), reason=reason)
        logger.debug("Granted role %s to %s (%s)", role_id, member_id, reason)

    async def revoke_role(self, member_id: int, role_id: int, reason: str) -> None:
        member = await self._member(member_id)
        await member.remove_roles(discord.Object(id=role_id), reason=reason)
        logger.debug("Revoked role %s from %s (%s)", role_id, member_id, reason)
