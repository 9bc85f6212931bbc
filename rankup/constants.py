"""
rankup.constants — Shared Defaults & Helpers
=============================================

Single source of truth for policy defaults and the small time helpers used
by the engine, services, and cogs.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

# ---------------------------------------------------------------------------
# Policy defaults (overridable from config.yaml)
# ---------------------------------------------------------------------------
DEFAULT_COOLDOWN_HOURS = 48
DEFAULT_MIN_VOICE_SESSION_SECONDS = 60
DEFAULT_MESSAGE_RATE_LIMIT_SECONDS = 1.0
DEFAULT_RESET_INTERVAL_DAYS = 14
DEFAULT_RESET_RETRY_MINUTES = 60

# Gateway calls (grant/revoke) are retried this many times before giving up
ROLE_CALL_ATTEMPTS = 3
ROLE_CALL_RETRY_SECONDS = 1.0

# Word the operator must type to confirm /force-reset
FORCE_RESET_CONFIRMATION = "confirm"


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    """Timezone-aware ``datetime.now`` in UTC."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read-back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_duration(delta: timedelta) -> str:
    """Render a duration as ``"1d 2h 3m 4s"``, omitting zero parts."""
    seconds = max(0, int(delta.total_seconds()))
    days, rem = divmod(seconds, 86_400)
    hours, rem = divmod(rem, 3_600)
    minutes, secs = divmod(rem, 60)

    parts: list[str] = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_minutes(minutes: int) -> str:
    """Render a voice-minute total as ``"1d 2h 3m"``."""
    days, rem = divmod(max(0, minutes), 1_440)
    hours, mins = divmod(rem, 60)

    parts: list[str] = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if mins or not parts:
        parts.append(f"{mins}m")
    return " ".join(parts)
