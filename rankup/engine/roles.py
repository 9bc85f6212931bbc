"""
rankup.engine.roles — Grant/Revoke Plans for Rank Moves
========================================================

Given the ladder and the roles a member currently holds, compute which
roles to add and which to remove.  Plans are data; the Advancement
Coordinator executes them against the chat platform.

Every plan lists grants before revokes so an interrupted execution never
leaves a member with no rank role at all.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from rankup.engine.ranks import RankLadder


@dataclass(frozen=True)
class RolePlan:
    """Ordered role changes for one member."""

    grant: tuple[int, ...] = ()
    revoke: tuple[int, ...] = ()
    reason: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.grant and not self.revoke


def _ordered(ids: Iterable[int]) -> tuple[int, ...]:
    out: list[int] = []
    for role_id in ids:
        if role_id not in out:
            out.append(role_id)
    return tuple(out)


def plan_move(
    ladder: RankLadder,
    held: Iterable[int],
    target_index: int,
    *,
    reason: str,
) -> RolePlan:
    """Plan the role changes that leave the member at exactly *target_index*.

    Grants the target rank role and its permission role (when not already
    held), then revokes every other rank role and every permission role that
    does not belong to the target rank.
    """
    held_set = set(held)
    target = ladder[target_index]
    target_perm = ladder.permission_role_for(target_index)

    grant = [target.role_id]
    if target_perm is not None:
        grant.append(target_perm)

    revoke = [
        r.role_id for r in ladder.ranks
        if r.role_id != target.role_id and r.role_id in held_set
    ]
    revoke += [
        p.role_id for p in ladder.permissions
        if p.role_id != target_perm and p.role_id in held_set
    ]

    return RolePlan(
        grant=_ordered(g for g in grant if g not in held_set),
        revoke=_ordered(revoke),
        reason=reason,
    )


def plan_advance(ladder: RankLadder, held: Iterable[int], current_index: int) -> RolePlan:
    """One rung up from *current_index*."""
    return plan_move(ladder, held, current_index + 1, reason="Rank up")


def plan_derank(ladder: RankLadder, held: Iterable[int], current_index: int) -> RolePlan:
    """One rung down from *current_index*."""
    return plan_move(ladder, held, current_index - 1, reason="Rank down")


def plan_strip(ladder: RankLadder, held: Iterable[int]) -> RolePlan:
    """Remove every rank and permission role the member holds."""
    held_set = set(held)
    revoke = [r.role_id for r in ladder.ranks if r.role_id in held_set]
    revoke += [p.role_id for p in ladder.permissions if p.role_id in held_set]
    return RolePlan(revoke=_ordered(revoke), reason="Full rank removal")


def plan_permission_sync(
    ladder: RankLadder,
    held: Iterable[int],
    added: Iterable[int],
) -> RolePlan:
    """Grant the permission role of any rank role that was just added."""
    held_set = set(held)
    grant: list[int] = []
    for role_id in added:
        index = ladder.index_for_role(role_id)
        if index is None:
            continue
        perm_role = ladder.permission_role_for(index)
        if perm_role is not None and perm_role not in held_set:
            grant.append(perm_role)
    return RolePlan(grant=_ordered(grant), reason="Permission role for rank")
