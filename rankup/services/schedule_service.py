"""
rankup.services.schedule_service — Persisted Reset Schedule
============================================================

The reset boundary and interval live in the ``settings`` key-value table so
a restarted process resumes the same cadence.  This module only stores and
computes; :mod:`rankup.services.scheduler` owns the timer.

Keys:
    reset.next_reset_at   — ISO-8601 UTC instant of the next boundary
    reset.interval_days   — whole days between boundaries
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rankup.constants import DEFAULT_RESET_INTERVAL_DAYS, as_utc, utcnow
from rankup.database.engine import get_session
from rankup.database.models import Setting
from rankup.engine.errors import StoreFailure

logger = logging.getLogger(__name__)

NEXT_RESET_KEY = "reset.next_reset_at"
INTERVAL_KEY = "reset.interval_days"

_DAY_MONTH_RE = re.compile(r"^(\d{1,2})-(\d{1,2})$")


@dataclass(frozen=True, slots=True)
class ResetSchedule:
    """Process-wide reset cadence."""

    next_reset_at: datetime
    interval_days: int = DEFAULT_RESET_INTERVAL_DAYS

    @property
    def interval(self) -> timedelta:
        return timedelta(days=self.interval_days)

    def advanced(self, steps: int = 1) -> ResetSchedule:
        return ResetSchedule(self.next_reset_at + steps * self.interval, self.interval_days)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------
def catch_up(schedule: ResetSchedule, now: datetime) -> tuple[ResetSchedule, int]:
    """Collapse missed boundaries onto the most recent one.

    A stale boundary is moved forward by whole intervals to the latest
    boundary that is not in the future, so it fires once (immediately) on
    behalf of every cycle missed while the process was down.  The boundary
    after that is in the future.

    Returns ``(corrected, skipped)`` where *skipped* is how many earlier
    boundaries were folded into the corrected one.  A future boundary is
    returned unchanged with ``skipped == 0``.
    """
    if schedule.interval_days <= 0:
        raise ValueError("interval_days must be positive")
    if schedule.next_reset_at > now:
        return schedule, 0
    behind = now - schedule.next_reset_at
    skipped = behind // schedule.interval
    return schedule.advanced(skipped), skipped


def parse_reset_boundary(
    text: str,
    *,
    now: datetime | None = None,
    tz: str = "UTC",
) -> datetime:
    """Parse an operator-supplied first boundary.

    ``DD-MM`` means 00:00 of that day in *tz*, this year, or next year if
    that instant has already passed.  Anything else is read as ISO-8601
    (naive values are interpreted in *tz*).  Returns an aware UTC datetime.

    Raises
    ------
    ValueError
        On malformed input or impossible dates (e.g. ``31-02``).
    """
    zone = ZoneInfo(tz)
    now = as_utc(now) or utcnow()
    text = text.strip()

    match = _DAY_MONTH_RE.match(text)
    if match:
        day, month = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12:
            raise ValueError("Month must be between 1 and 12")
        if not 1 <= day <= 31:
            raise ValueError("Day must be between 1 and 31")
        year = now.astimezone(zone).year
        try:
            boundary = datetime(year, month, day, tzinfo=zone)
            if boundary <= now:
                boundary = datetime(year + 1, month, day, tzinfo=zone)
        except ValueError as exc:
            raise ValueError(f"Invalid date {text!r}: {exc}") from exc
        return as_utc(boundary)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(
            f"Unrecognised reset date {text!r}; use DD-MM or ISO-8601"
        ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return as_utc(parsed)


# ---------------------------------------------------------------------------
# Settings plumbing
# ---------------------------------------------------------------------------
def _get_raw_setting(session: Session, key: str) -> str | None:
    row = session.get(Setting, key)
    return row.value_json if row else None


def _upsert_setting(
    session: Session,
    key: str,
    value_json: str,
    category: str = "reset",
    description: str | None = None,
) -> None:
    row = session.get(Setting, key)
    if row:
        row.value_json = value_json
        if description:
            row.description = description
    else:
        session.add(Setting(
            key=key,
            value_json=value_json,
            category=category,
            description=description,
        ))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_schedule(engine: Engine) -> ResetSchedule | None:
    """Return the persisted schedule, or ``None`` if none was ever configured."""
    try:
        with Session(engine) as session:
            raw_next = _get_raw_setting(session, NEXT_RESET_KEY)
            raw_interval = _get_raw_setting(session, INTERVAL_KEY)
    except SQLAlchemyError as exc:
        logger.exception("Failed to load reset schedule")
        raise StoreFailure("load_schedule") from exc

    if not raw_next:
        return None
    try:
        next_reset_at = as_utc(datetime.fromisoformat(json.loads(raw_next)))
        interval = int(json.loads(raw_interval)) if raw_interval else DEFAULT_RESET_INTERVAL_DAYS
    except (json.JSONDecodeError, TypeError, ValueError):
        logger.error("Corrupt reset schedule in settings: %r / %r", raw_next, raw_interval)
        return None
    return ResetSchedule(next_reset_at=next_reset_at, interval_days=interval)


def save_schedule(engine: Engine, schedule: ResetSchedule) -> None:
    """Persist *schedule* (both keys in one transaction)."""
    try:
        with get_session(engine) as session:
            _upsert_setting(
                session, NEXT_RESET_KEY,
                json.dumps(as_utc(schedule.next_reset_at).isoformat()),
                description="Next statistics reset boundary (UTC)",
            )
            _upsert_setting(
                session, INTERVAL_KEY,
                json.dumps(schedule.interval_days),
                description="Days between statistics resets",
            )
    except SQLAlchemyError as exc:
        logger.exception("Failed to save reset schedule %s", schedule)
        raise StoreFailure("save_schedule") from exc
    logger.info(
        "Reset schedule saved: next=%s interval=%dd",
        schedule.next_reset_at.isoformat(), schedule.interval_days,
    )


def initialize_schedule(engine: Engine, schedule: ResetSchedule) -> bool:
    """Persist *schedule* only if nothing is stored yet.  Returns True if written."""
    if load_schedule(engine) is not None:
        return False
    save_schedule(engine, schedule)
    return True
