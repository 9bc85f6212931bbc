"""
rankup.engine.ranks — Rank Ladder & Eligibility Evaluator
==========================================================

Pure policy code.  No Discord I/O, no DB I/O.

The ladder is an ordered tuple of :class:`RankDefinition` (index 0 is the
entry rank).  :func:`evaluate` turns a :class:`MemberSnapshot` plus the
member's current ladder position into an :class:`Eligibility` describing
whether the next rung may be claimed, what is still missing, and how long
the advancement cooldown has left.

The *current* rank is never stored here; callers derive it from the roles
the member actually holds (see :meth:`RankLadder.resolve_index`).
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from rankup.constants import DEFAULT_COOLDOWN_HOURS, as_utc, utcnow
from rankup.engine.records import MemberSnapshot

__all__ = [
    "Eligibility",
    "PermissionTier",
    "RankDefinition",
    "RankLadder",
    "ThresholdMode",
    "evaluate",
]


class ThresholdMode(enum.StrEnum):
    """How the message and voice thresholds combine."""
    AND = "and"
    OR = "or"


@dataclass(frozen=True, slots=True)
class PermissionTier:
    """A permission role that travels with one or more ranks."""

    id: str
    name: str
    role_id: int


@dataclass(frozen=True, slots=True)
class RankDefinition:
    """One rung of the ladder."""

    rank_index: int
    name: str
    role_id: int
    required_messages: int = 0
    required_voice_hours: float = 0
    mode: ThresholdMode = ThresholdMode.AND
    permission_id: str | None = None


@dataclass(frozen=True)
class RankLadder:
    """Validated, totally ordered list of ranks plus their permission tiers."""

    ranks: tuple[RankDefinition, ...]
    permissions: tuple[PermissionTier, ...] = ()
    _by_permission_id: dict[str, PermissionTier] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if not self.ranks:
            raise ValueError("Rank ladder must contain at least one rank")

        by_perm = {p.id: p for p in self.permissions}
        if len(by_perm) != len(self.permissions):
            raise ValueError("Permission tier ids must be unique")

        seen_roles: set[int] = set()
        for position, rank in enumerate(self.ranks):
            if rank.rank_index != position:
                raise ValueError(
                    f"Rank {rank.name!r} has index {rank.rank_index}, expected {position}"
                )
            if rank.role_id in seen_roles:
                raise ValueError(f"Duplicate rank role id {rank.role_id}")
            seen_roles.add(rank.role_id)
            if rank.required_messages < 0 or rank.required_voice_hours < 0:
                raise ValueError(f"Rank {rank.name!r} has a negative threshold")
            if rank.permission_id is not None and rank.permission_id not in by_perm:
                raise ValueError(
                    f"Rank {rank.name!r} references unknown permission "
                    f"{rank.permission_id!r}"
                )

        object.__setattr__(self, "_by_permission_id", by_perm)

    def __len__(self) -> int:
        return len(self.ranks)

    def __getitem__(self, index: int) -> RankDefinition:
        return self.ranks[index]

    @property
    def last_index(self) -> int:
        return len(self.ranks) - 1

    def is_last(self, index: int) -> bool:
        return index >= self.last_index

    @property
    def rank_role_ids(self) -> set[int]:
        return {r.role_id for r in self.ranks}

    @property
    def permission_role_ids(self) -> set[int]:
        return {p.role_id for p in self.permissions}

    @property
    def ranking_role_ids(self) -> set[int]:
        """Roles that mark a member as part of the ranking system."""
        return self.permission_role_ids

    def permission_for(self, index: int) -> PermissionTier | None:
        perm_id = self.ranks[index].permission_id
        if perm_id is None:
            return None
        return self._by_permission_id[perm_id]

    def permission_role_for(self, index: int) -> int | None:
        tier = self.permission_for(index)
        return tier.role_id if tier else None

    def index_for_role(self, role_id: int) -> int | None:
        for rank in self.ranks:
            if rank.role_id == role_id:
                return rank.rank_index
        return None

    def resolve_index(self, role_ids: Iterable[int]) -> int | None:
        """Highest ladder index whose role is held, or ``None`` if none is."""
        held = set(role_ids)
        current: int | None = None
        for rank in self.ranks:
            if rank.role_id in held:
                current = rank.rank_index
        return current


# ---------------------------------------------------------------------------
# Eligibility — output of the evaluator
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Eligibility:
    """Everything the command surface needs to show or gate an advance."""

    current_rank: RankDefinition
    next_rank: RankDefinition | None = None
    messages_ok: bool = False
    voice_ok: bool = False
    meets_thresholds: bool = False
    on_cooldown: bool = False
    cooldown_remaining: timedelta = timedelta(0)
    messages_progress: float = 100.0
    voice_progress: float = 100.0
    remaining_messages: int = 0
    remaining_voice_hours: float = 0.0

    @property
    def has_next(self) -> bool:
        return self.next_rank is not None

    @property
    def can_advance(self) -> bool:
        return self.has_next and self.meets_thresholds and not self.on_cooldown

    @property
    def progress(self) -> float:
        """Overall progress: the weaker of the two bars."""
        return min(self.messages_progress, self.voice_progress)


def _progress(current: float, required: float) -> float:
    if required <= 0:
        return 100.0
    return min(100.0, current / required * 100)


def cooldown_state(
    last_advance_at: datetime | None,
    now: datetime,
    cooldown: timedelta,
) -> tuple[bool, timedelta]:
    """Return ``(on_cooldown, remaining)`` for an advancement cooldown."""
    last = as_utc(last_advance_at)
    if last is None:
        return False, timedelta(0)
    elapsed = now - last
    if elapsed < cooldown:
        return True, cooldown - elapsed
    return False, timedelta(0)


def evaluate(
    record: MemberSnapshot,
    ladder: RankLadder,
    current_rank_index: int,
    *,
    now: datetime | None = None,
    cooldown: timedelta = timedelta(hours=DEFAULT_COOLDOWN_HOURS),
) -> Eligibility:
    """Decide whether *record* may climb from *current_rank_index*.

    This is a PURE function: identical inputs always give identical output.

    Parameters
    ----------
    record:
        Ledger snapshot for the member.
    ladder:
        The configured rank ladder.
    current_rank_index:
        Position the member holds today (derived from their roles).
    now:
        Reference instant for the cooldown; defaults to the current time.
    cooldown:
        Minimum time between two successful advances.
    """
    current = ladder[current_rank_index]
    if ladder.is_last(current_rank_index):
        return Eligibility(current_rank=current)

    nxt = ladder[current_rank_index + 1]
    now = as_utc(now) or utcnow()

    messages = record.message_count
    voice_hours = record.voice_hours

    if nxt.mode is ThresholdMode.AND:
        # A zero threshold is satisfied automatically
        messages_ok = nxt.required_messages == 0 or messages >= nxt.required_messages
        voice_ok = nxt.required_voice_hours == 0 or voice_hours >= nxt.required_voice_hours
        meets = messages_ok and voice_ok
    else:
        messages_ok = messages >= nxt.required_messages
        voice_ok = voice_hours >= nxt.required_voice_hours
        meets = messages_ok or voice_ok

    on_cooldown, remaining = cooldown_state(record.last_advance_at, now, cooldown)

    return Eligibility(
        current_rank=current,
        next_rank=nxt,
        messages_ok=messages_ok,
        voice_ok=voice_ok,
        meets_thresholds=meets,
        on_cooldown=on_cooldown,
        cooldown_remaining=remaining,
        messages_progress=_progress(messages, nxt.required_messages),
        voice_progress=_progress(voice_hours, nxt.required_voice_hours),
        remaining_messages=max(0, nxt.required_messages - messages),
        remaining_voice_hours=max(0.0, nxt.required_voice_hours - voice_hours),
    )

