"""
rankup.bot.core — Bot Instance & Cog Loader
============================================

Defines :class:`RankupBot`, a ``commands.Bot`` subclass that owns every
long-lived component and hands them to the cogs:

1. ``bot.cfg`` / ``bot.engine``: static config and the DB engine.
2. ``bot.ledger``: the Activity Ledger.
3. ``bot.voice_tracker``: open voice sessions (cleared on shutdown).
4. ``bot.coordinator``: the Advancement Coordinator, wired to Discord
   through :class:`DiscordRoleGateway`.
5. ``bot.reset_scheduler``: the periodic statistics reset.

Slash commands are synced on startup (guild-scoped when ``DEV_GUILD_ID``
is set, global otherwise).
"""

from __future__ import annotations

import logging
import os
from datetime import datetime

import discord
from discord.ext import commands
from sqlalchemy import Engine

from rankup.bot.gateway import DiscordRoleGateway
from rankup.config import RankupConfig
from rankup.engine.voice import VoiceSessionTracker
from rankup.services.advancement import AdvancementCoordinator
from rankup.services.embeds import build_reset_embed
from rankup.services.ledger import ActivityLedger
from rankup.services.scheduler import ResetScheduler

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "rankup.bot.cogs.activity",
    "rankup.bot.cogs.ranks",
    "rankup.bot.cogs.roles",
    "rankup.bot.cogs.admin",
    "rankup.bot.cogs.tasks",
]


class RankupBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`RankupConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    """

    def __init__(self, cfg: RankupConfig, engine: Engine) -> None:
        # Privileged intents (must enable in Developer Portal):
        #   MESSAGE_CONTENT — slash-prefixed messages are not counted
        #   GUILD_MEMBERS   — role updates and member lookups
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} rank bot",
        )

        self.cfg = cfg
        self.engine = engine

        self.ledger = ActivityLedger(engine)
        self.voice_tracker = VoiceSessionTracker(cfg.min_voice_session)
        self.gateway = DiscordRoleGateway(self, cfg.guild_id)
        self.coordinator = AdvancementCoordinator(
            engine,
            self.ledger,
            cfg.ladder,
            self.gateway,
            cooldown=cfg.cooldown,
        )
        self.reset_scheduler = ResetScheduler(
            engine,
            self.ledger,
            retry_delay=cfg.reset_retry_delay,
            default_interval_days=cfg.reset_interval_days,
            on_reset=self.announce_reset,
        )

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all Cog extensions.  One broken Cog doesn't stop the rest."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

        if self.get_guild(self.cfg.guild_id) is None:
            logger.warning(
                "Primary guild %d not found; role changes will fail", self.cfg.guild_id
            )

    async def close(self) -> None:
        """Graceful shutdown: stop the reset timer and drop open voice sessions."""
        logger.info("Bot shutting down…")
        self.reset_scheduler.cancel()
        dropped = self.voice_tracker.clear()
        if dropped:
            logger.info("Discarded %d open voice sessions", dropped)
        await super().close()

    # -----------------------------------------------------------------------
    # Channel resolution
    # -----------------------------------------------------------------------
    def _sendable(self, channel: discord.abc.GuildChannel | None) -> bool:
        if not isinstance(channel, discord.TextChannel):
            return False
        me = channel.guild.me
        return me is not None and channel.permissions_for(me).send_messages

    def announce_channel(self) -> discord.TextChannel | None:
        """Configured announce channel, else the first text channel we can post in."""
        guild = self.get_guild(self.cfg.guild_id)
        if guild is None:
            return None
        if self.cfg.announce_channel_id:
            channel = guild.get_channel(self.cfg.announce_channel_id)
            if self._sendable(channel):
                return channel  # type: ignore[return-value]
            logger.warning(
                "Announce channel %d missing or not writable; using fallback",
                self.cfg.announce_channel_id,
            )
        for channel in guild.text_channels:
            if self._sendable(channel):
                return channel
        return None

    def mod_log_channel(self) -> discord.TextChannel | None:
        if not self.cfg.mod_log_channel_id:
            return None
        channel = self.get_channel(self.cfg.mod_log_channel_id)
        return channel if isinstance(channel, discord.TextChannel) else None

    # -----------------------------------------------------------------------
    # Notifications
    # -----------------------------------------------------------------------
    async def announce_reset(self, member_count: int, next_reset_at: datetime | None) -> None:
        """Post the reset notice.  Used as the scheduler's ``on_reset`` hook."""
        channel = self.announce_channel()
        if channel is None:
            logger.warning("No channel available for the reset announcement")
            return
        await channel.send(embed=build_reset_embed(member_count, next_reset_at))

    async def post_mod_log(self, embed: discord.Embed) -> None:
        channel = self.mod_log_channel()
        if channel is None:
            return
        try:
            await channel.send(embed=embed)
        except discord.HTTPException:
            logger.exception("Failed to post to mod-log channel %s", channel.id)
