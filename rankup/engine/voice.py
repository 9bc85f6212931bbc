"""
rankup.engine.voice — Voice Session State Machine
==================================================

Tracks who is sitting in voice and since when.  Per member the state is
either NONE (not tracked) or OPEN (joined at some instant):

    NONE --join--> OPEN --leave--> NONE   (credits the elapsed minutes)
    OPEN --move--> OPEN                   (credits the old channel, restarts)

State is memory-resident.  Sessions still open when the process stops are
dropped; :meth:`VoiceSessionTracker.clear` is called on shutdown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from rankup.constants import DEFAULT_MIN_VOICE_SESSION_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VoiceCredit:
    """A closed session and the whole minutes it earns."""

    member_id: int
    joined_at: datetime
    left_at: datetime
    minutes: int


def credited_minutes(
    joined_at: datetime,
    left_at: datetime,
    min_session: timedelta = timedelta(seconds=DEFAULT_MIN_VOICE_SESSION_SECONDS),
) -> int:
    """Whole minutes earned by a session, zero below *min_session*."""
    duration = left_at - joined_at
    if duration < min_session:
        return 0
    return max(0, int(duration.total_seconds() // 60))


class VoiceSessionTracker:
    """In-memory table of open voice sessions (member → join instant)."""

    def __init__(
        self,
        min_session: timedelta = timedelta(seconds=DEFAULT_MIN_VOICE_SESSION_SECONDS),
    ) -> None:
        self.min_session = min_session
        self._sessions: dict[int, datetime] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, member_id: int) -> bool:
        return member_id in self._sessions

    def joined_at(self, member_id: int) -> datetime | None:
        return self._sessions.get(member_id)

    def join(self, member_id: int, at: datetime) -> None:
        """Open a session.  A duplicate join keeps the original instant."""
        self._sessions.setdefault(member_id, at)

    def leave(self, member_id: int, at: datetime) -> VoiceCredit | None:
        """Close the member's session; ``None`` if none was open."""
        joined = self._sessions.pop(member_id, None)
        if joined is None:
            logger.debug("Voice leave for %s without an open session", member_id)
            return None
        return VoiceCredit(
            member_id=member_id,
            joined_at=joined,
            left_at=at,
            minutes=credited_minutes(joined, at, self.min_session),
        )

    def move(self, member_id: int, at: datetime) -> VoiceCredit | None:
        """Leave-then-join at the same instant."""
        credit = self.leave(member_id, at)
        self._sessions[member_id] = at
        return credit

    def transition(
        self,
        member_id: int,
        old_channel_id: int | None,
        new_channel_id: int | None,
        at: datetime,
    ) -> VoiceCredit | None:
        """Apply a raw voice-state change and return any credit earned."""
        if old_channel_id is None and new_channel_id is not None:
            self.join(member_id, at)
            return None
        if old_channel_id is not None and new_channel_id is None:
            return self.leave(member_id, at)
        if old_channel_id is not None and old_channel_id != new_channel_id:
            return self.move(member_id, at)
        # Same channel (mute/deafen/stream toggles) or nothing at all
        return None

    def clear(self) -> int:
        """Drop every open session; returns how many were discarded."""
        dropped = len(self._sessions)
        self._sessions.clear()
        return dropped
