"""
rankup.config — YAML Configuration Loader
==========================================

Reads ``config.yaml``: Discord identity, the rank ladder with its
permission tiers, and the policy knobs (cooldown, voice minimum, reset
cadence).  Secrets (token, database URL) come from ``.env``.

Configuration is static for the process lifetime.  Only the reset
boundary can be changed at runtime, via ``/reset-schedule``.

Usage::

    from rankup.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.ladder[0].name)        # "Newcomer"
    print(cfg.cooldown)              # 2 days, 0:00:00
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from rankup.constants import (
    DEFAULT_COOLDOWN_HOURS,
    DEFAULT_MESSAGE_RATE_LIMIT_SECONDS,
    DEFAULT_MIN_VOICE_SESSION_SECONDS,
    DEFAULT_RESET_INTERVAL_DAYS,
    DEFAULT_RESET_RETRY_MINUTES,
)
from rankup.engine.ranks import PermissionTier, RankDefinition, RankLadder, ThresholdMode


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RankupConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    bot_prefix: str
    guild_id: int
    admin_role_id: int  # Discord role required for admin commands

    # Ladder
    ladder: RankLadder

    # Policy
    cooldown_hours: float = DEFAULT_COOLDOWN_HOURS
    min_voice_session_seconds: int = DEFAULT_MIN_VOICE_SESSION_SECONDS
    message_rate_limit_seconds: float = DEFAULT_MESSAGE_RATE_LIMIT_SECONDS
    require_ranking_role: bool = True

    # Reset cadence
    reset_interval_days: int = DEFAULT_RESET_INTERVAL_DAYS
    reset_retry_minutes: int = DEFAULT_RESET_RETRY_MINUTES
    reset_first_boundary: str | None = None  # "DD-MM" or ISO-8601
    reset_timezone: str = "UTC"

    # Optional channels
    announce_channel_id: int | None = None  # Reset notices and rank-up celebrations
    mod_log_channel_id: int | None = None   # Blacklist changes

    @property
    def cooldown(self) -> timedelta:
        return timedelta(hours=self.cooldown_hours)

    @property
    def min_voice_session(self) -> timedelta:
        return timedelta(seconds=self.min_voice_session_seconds)

    @property
    def reset_retry_delay(self) -> timedelta:
        return timedelta(minutes=self.reset_retry_minutes)


# ---------------------------------------------------------------------------
# Ladder parsing
# ---------------------------------------------------------------------------
def _optional_int(value) -> int | None:
    return int(value) if value else None


def _parse_mode(raw: str | None) -> ThresholdMode:
    value = (raw or "and").strip().lower()
    try:
        return ThresholdMode(value)
    except ValueError:
        raise ValueError(f"Unknown threshold mode {raw!r}; expected 'and' or 'or'") from None


def build_ladder(raw_ranks: list[dict], raw_permissions: list[dict] | None) -> RankLadder:
    """Turn the ``ranks`` / ``permissions`` YAML lists into a validated ladder.

    Raises
    ------
    KeyError
        If an entry lacks ``name``/``role_id`` (ranks) or ``id``/``name``/``role_id``
        (permissions).
    ValueError
        If the ladder is inconsistent (see :class:`RankLadder`).
    """
    permissions = tuple(
        PermissionTier(id=str(p["id"]), name=p["name"], role_id=int(p["role_id"]))
        for p in raw_permissions or []
    )
    ranks = tuple(
        RankDefinition(
            rank_index=index,
            name=r["name"],
            role_id=int(r["role_id"]),
            required_messages=int(r.get("required_messages", 0)),
            required_voice_hours=float(r.get("required_voice_hours", 0)),
            mode=_parse_mode(r.get("mode")),
            permission_id=str(r["permission_id"]) if r.get("permission_id") else None,
        )
        for index, r in enumerate(raw_ranks or [])
    )
    return RankLadder(ranks=ranks, permissions=permissions)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> RankupConfig:
    """Read *path* and return a :class:`RankupConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If the ladder or a policy value is invalid.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    reset: dict = raw.get("reset") or {}
    timezone = str(reset.get("timezone", "UTC"))
    try:
        ZoneInfo(timezone)
    except ZoneInfoNotFoundError:
        raise ValueError(f"Unknown reset timezone {timezone!r}") from None

    interval_days = int(reset.get("interval_days", DEFAULT_RESET_INTERVAL_DAYS))
    if interval_days <= 0:
        raise ValueError("reset.interval_days must be positive")

    first_boundary = reset.get("first_boundary")

    return RankupConfig(
        community_name=raw["community_name"],
        bot_prefix=raw.get("bot_prefix", "!"),
        guild_id=int(raw["guild_id"]),
        admin_role_id=int(raw["admin_role_id"]),
        ladder=build_ladder(raw["ranks"], raw.get("permissions")),
        cooldown_hours=float(raw.get("cooldown_hours", DEFAULT_COOLDOWN_HOURS)),
        min_voice_session_seconds=int(
            raw.get("min_voice_session_seconds", DEFAULT_MIN_VOICE_SESSION_SECONDS)
        ),
        message_rate_limit_seconds=float(
            raw.get("message_rate_limit_seconds", DEFAULT_MESSAGE_RATE_LIMIT_SECONDS)
        ),
        require_ranking_role=bool(raw.get("require_ranking_role", True)),
        reset_interval_days=interval_days,
        reset_retry_minutes=int(reset.get("retry_minutes", DEFAULT_RESET_RETRY_MINUTES)),
        reset_first_boundary=str(first_boundary) if first_boundary else None,
        reset_timezone=timezone,
        announce_channel_id=_optional_int(raw.get("announce_channel_id")),
        mod_log_channel_id=_optional_int(raw.get("mod_log_channel_id")),
    )
