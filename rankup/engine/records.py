"""
rankup.engine.records — Detached Ledger Views
==============================================

The ledger hands out plain frozen dataclasses instead of ORM rows so the
evaluator and the cogs never touch a live session.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

__all__ = ["MemberSnapshot", "BlacklistRecord"]


@dataclass(frozen=True, slots=True)
class MemberSnapshot:
    """Point-in-time copy of a member's activity counters."""

    member_id: int
    message_count: int = 0
    voice_minutes: int = 0
    join_date: datetime | None = None
    last_message_at: datetime | None = None
    last_advance_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def voice_hours(self) -> float:
        return self.voice_minutes / 60


@dataclass(frozen=True, slots=True)
class BlacklistRecord:
    """A member excluded from rank advancement."""

    member_id: int
    reason: str
    issued_by: int | None
    created_at: datetime | None = None
    updated_at: datetime | None = None
