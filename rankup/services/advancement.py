"""
rankup.services.advancement — Advancement Coordinator
======================================================

The single entry point for every rank move.  The ``/rankup`` command and
the "Rank Up" button both call :meth:`AdvancementCoordinator.attempt_advance`;
operator deranks and the permission-role sync go through the same lock and
the same role gateway.

Ordering of one advance (per member, under :class:`MemberLocks`):

  1. blacklist gate
  2. ledger snapshot (absent → NOT_REGISTERED)
  3. current rank from the roles the member holds; no rank role → grant
     the entry role and treat the member as rank 0
  4. evaluate: max rank / cooldown / thresholds
  5. grant the next rank role, then its permission role
  6. ``record_advance``: the commit point (stamps the cooldown)
  7. revoke stale rank and permission roles

A failure in 5 records nothing and can simply be retried.  A failure in 7
happens after the commit point; it is logged at ERROR with the full plan
and reported with ``committed=True``.

The chat platform is reached only through the :class:`RoleGateway`
protocol so this module never imports discord.py.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy import Engine

from rankup.constants import (
    DEFAULT_COOLDOWN_HOURS,
    ROLE_CALL_ATTEMPTS,
    ROLE_CALL_RETRY_SECONDS,
    utcnow,
)
from rankup.database.engine import run_db
from rankup.engine.errors import AdvanceStatus, RoleSideEffectFailure, StoreFailure
from rankup.engine.locks import MemberLocks
from rankup.engine.ranks import Eligibility, RankLadder, evaluate
from rankup.engine.records import MemberSnapshot
from rankup.engine.roles import (
    RolePlan,
    plan_advance,
    plan_derank,
    plan_move,
    plan_permission_sync,
    plan_strip,
)
from rankup.services.blacklist_service import is_blacklisted
from rankup.services.ledger import ActivityLedger

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Outbound port
# ---------------------------------------------------------------------------
class RoleGateway(Protocol):
    """Role operations the coordinator needs from the chat platform.

    Grants and revokes must be idempotent.  Any exception is treated as a
    retryable failure.
    """

    async def fetch_role_ids(self, member_id: int) -> set[int]:
        ...

    async def grant_role(self, member_id: int, role_id: int, reason: str) -> None:
        ...

    async def revoke_role(self, member_id: int, role_id: int, reason: str) -> None:
        ...


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class AdvanceResult:
    """Outcome of :meth:`AdvancementCoordinator.attempt_advance`."""

    status: AdvanceStatus
    member_id: int
    old_rank_index: int | None = None
    new_rank_index: int | None = None
    eligibility: Eligibility | None = None
    committed: bool = False
    failed_role_id: int | None = None

    @property
    def ok(self) -> bool:
        return self.status is AdvanceStatus.SUCCESS

    @property
    def cooldown_remaining(self) -> timedelta:
        if self.eligibility is None:
            return timedelta(0)
        return self.eligibility.cooldown_remaining


@dataclass(frozen=True)
class RoleChangeResult:
    """Outcome of an operator derank or a permission-role sync."""

    status: AdvanceStatus
    member_id: int
    old_rank_index: int | None = None
    new_rank_index: int | None = None
    granted: tuple[int, ...] = ()
    revoked: tuple[int, ...] = ()
    failed_role_id: int | None = None

    @property
    def ok(self) -> bool:
        return self.status is AdvanceStatus.SUCCESS


@dataclass(frozen=True)
class RankStatus:
    """Read-only view used by ``/rank`` and the ``/rankup`` panel."""

    member_id: int
    snapshot: MemberSnapshot | None
    rank_index: int | None
    eligibility: Eligibility | None
    blacklisted: bool = False

    @property
    def registered(self) -> bool:
        return self.snapshot is not None


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------
class AdvancementCoordinator:
    """Serialised compare-and-act rank moves.

    Parameters
    ----------
    engine:
        Engine for the blacklist lookup.
    ledger:
        Activity ledger (snapshots and the ``last_advance_at`` commit point).
    ladder:
        Configured rank ladder.
    gateway:
        Role operations on the chat platform.
    cooldown:
        Minimum time between two advances of the same member.
    """

    def __init__(
        self,
        engine: Engine,
        ledger: ActivityLedger,
        ladder: RankLadder,
        gateway: RoleGateway,
        *,
        cooldown: timedelta = timedelta(hours=DEFAULT_COOLDOWN_HOURS),
        clock: Callable[[], datetime] = utcnow,
        locks: MemberLocks | None = None,
        role_attempts: int = ROLE_CALL_ATTEMPTS,
        role_retry_delay: float = ROLE_CALL_RETRY_SECONDS,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.engine = engine
        self.ledger = ledger
        self.ladder = ladder
        self.gateway = gateway
        self.cooldown = cooldown
        self._clock = clock
        self.locks = locks or MemberLocks()
        self.role_attempts = max(1, role_attempts)
        self.role_retry_delay = role_retry_delay
        self._sleep = sleep

    # -------------------------------------------------------------------
    # Gateway plumbing
    # -------------------------------------------------------------------
    async def _with_retries(
        self,
        call: Callable[[], Awaitable[object]],
        *,
        member_id: int,
        role_id: int | None,
        action: str,
    ) -> object:
        for attempt in range(1, self.role_attempts + 1):
            try:
                return await call()
            except Exception as exc:
                logger.warning(
                    "Role %s failed for member %s (role %s), attempt %d/%d: %s",
                    action, member_id, role_id, attempt, self.role_attempts, exc,
                )
                if attempt == self.role_attempts:
                    raise RoleSideEffectFailure(member_id, role_id, action) from exc
                await self._sleep(self.role_retry_delay)
        raise AssertionError("unreachable")

    async def _held_roles(self, member_id: int) -> set[int]:
        roles = await self._with_retries(
            lambda: self.gateway.fetch_role_ids(member_id),
            member_id=member_id, role_id=None, action="fetch",
        )
        return set(roles)  # type: ignore[arg-type]

    async def _grant(self, member_id: int, role_id: int, reason: str) -> None:
        await self._with_retries(
            lambda: self.gateway.grant_role(member_id, role_id, reason),
            member_id=member_id, role_id=role_id, action="grant",
        )

    async def _revoke(self, member_id: int, role_id: int, reason: str) -> None:
        await self._with_retries(
            lambda: self.gateway.revoke_role(member_id, role_id, reason),
            member_id=member_id, role_id=role_id, action="revoke",
        )

    async def _apply(self, member_id: int, plan: RolePlan) -> None:
        """Execute *plan*, grants first.  Stops at the first failure."""
        for role_id in plan.grant:
            await self._grant(member_id, role_id, plan.reason)
        for role_id in plan.revoke:
            await self._revoke(member_id, role_id, plan.reason)

    # -------------------------------------------------------------------
    # attempt_advance
    # -------------------------------------------------------------------
    async def attempt_advance(self, member_id: int) -> AdvanceResult:
        """Try to move *member_id* one rung up the ladder."""
        async with self.locks.hold(member_id):
            try:
                return await self._advance_locked(member_id)
            except StoreFailure as exc:
                logger.error(
                    "Advance aborted for member %s: %s", member_id, exc,
                    extra={"member_id": member_id, "operation": exc.operation},
                )
                return AdvanceResult(AdvanceStatus.STORE_FAILURE, member_id)
            except RoleSideEffectFailure as exc:
                return AdvanceResult(
                    AdvanceStatus.ROLE_SIDE_EFFECT_FAILURE, member_id,
                    failed_role_id=exc.role_id,
                )

    async def _advance_locked(self, member_id: int) -> AdvanceResult:
        if await run_db(is_blacklisted, self.engine, member_id):
            return AdvanceResult(AdvanceStatus.BLACKLISTED, member_id)

        snapshot = await run_db(self.ledger.get_snapshot, member_id)
        if snapshot is None:
            return AdvanceResult(AdvanceStatus.NOT_REGISTERED, member_id)

        held = await self._held_roles(member_id)
        current = self.ladder.resolve_index(held)
        if current is None:
            entry = plan_move(self.ladder, held, 0, reason="Entry rank")
            for role_id in entry.grant:
                await self._grant(member_id, role_id, entry.reason)
            held.update(entry.grant)
            current = 0
            logger.info("Member %s had no rank role; granted entry rank", member_id)

        if self.ladder.is_last(current):
            return AdvanceResult(
                AdvanceStatus.ALREADY_MAX_RANK, member_id,
                old_rank_index=current, new_rank_index=current,
            )

        now = self._clock()
        eligibility = evaluate(snapshot, self.ladder, current, now=now, cooldown=self.cooldown)
        if eligibility.on_cooldown:
            return AdvanceResult(
                AdvanceStatus.ON_COOLDOWN, member_id,
                old_rank_index=current, eligibility=eligibility,
            )
        if not eligibility.meets_thresholds:
            return AdvanceResult(
                AdvanceStatus.REQUIREMENTS_NOT_MET, member_id,
                old_rank_index=current, eligibility=eligibility,
            )

        target = current + 1
        plan = plan_advance(self.ladder, held, current)

        try:
            for role_id in plan.grant:
                await self._grant(member_id, role_id, plan.reason)
        except RoleSideEffectFailure as exc:
            logger.error(
                "Rank up of member %s aborted before commit; grant of role %s failed",
                member_id, exc.role_id,
                extra={"member_id": member_id, "plan": plan},
            )
            return AdvanceResult(
                AdvanceStatus.ROLE_SIDE_EFFECT_FAILURE, member_id,
                old_rank_index=current, new_rank_index=target,
                eligibility=eligibility, failed_role_id=exc.role_id,
            )

        try:
            await run_db(
                self.ledger.record_advance, member_id, now,
                old_rank_index=current, new_rank_index=target,
            )
        except StoreFailure:
            await self._undo_grants(member_id, plan)
            raise

        try:
            for role_id in plan.revoke:
                await self._revoke(member_id, role_id, plan.reason)
        except RoleSideEffectFailure as exc:
            logger.error(
                "Member %s advanced to rank %d but revoking role %s failed; "
                "roles and ledger disagree until repaired (plan grant=%s revoke=%s)",
                member_id, target, exc.role_id, plan.grant, plan.revoke,
                extra={
                    "member_id": member_id,
                    "advanced_at": now.isoformat(),
                    "plan": plan,
                },
            )
            return AdvanceResult(
                AdvanceStatus.ROLE_SIDE_EFFECT_FAILURE, member_id,
                old_rank_index=current, new_rank_index=target,
                eligibility=eligibility, committed=True,
                failed_role_id=exc.role_id,
            )

        logger.info(
            "Member %s advanced: %s → %s",
            member_id, self.ladder[current].name, self.ladder[target].name,
        )
        return AdvanceResult(
            AdvanceStatus.SUCCESS, member_id,
            old_rank_index=current, new_rank_index=target,
            eligibility=eligibility, committed=True,
        )

    async def _undo_grants(self, member_id: int, plan: RolePlan) -> None:
        """Best-effort rollback of grants when the commit point fails."""
        for role_id in plan.grant:
            try:
                await self._revoke(member_id, role_id, "Rank up rolled back")
            except RoleSideEffectFailure:
                logger.error(
                    "Could not roll back role %s for member %s after a ledger failure",
                    role_id, member_id,
                    extra={"member_id": member_id, "plan": plan},
                )

    # -------------------------------------------------------------------
    # Read-only status
    # -------------------------------------------------------------------
    async def status(self, member_id: int) -> RankStatus:
        """Snapshot plus eligibility for display.  Never touches roles.

        Raises
        ------
        StoreFailure
            If the ledger or blacklist could not be read.
        RoleSideEffectFailure
            If the member's roles could not be fetched.
        """
        blacklisted = await run_db(is_blacklisted, self.engine, member_id)
        snapshot = await run_db(self.ledger.get_snapshot, member_id)
        held = await self._held_roles(member_id)
        rank_index = self.ladder.resolve_index(held)

        eligibility = None
        if snapshot is not None:
            eligibility = evaluate(
                snapshot, self.ladder, rank_index or 0,
                now=self._clock(), cooldown=self.cooldown,
            )
        return RankStatus(
            member_id=member_id,
            snapshot=snapshot,
            rank_index=rank_index,
            eligibility=eligibility,
            blacklisted=blacklisted,
        )

    # -------------------------------------------------------------------
    # Operator moves
    # -------------------------------------------------------------------
    async def derank(self, member_id: int, actor_id: int) -> RoleChangeResult:
        """Move *member_id* one rung down.  The cooldown is left untouched."""
        async with self.locks.hold(member_id):
            try:
                held = await self._held_roles(member_id)
            except RoleSideEffectFailure:
                return RoleChangeResult(AdvanceStatus.ROLE_SIDE_EFFECT_FAILURE, member_id)

            current = self.ladder.resolve_index(held)
            if current is None:
                return RoleChangeResult(AdvanceStatus.NO_RANK, member_id)
            if current == 0:
                return RoleChangeResult(
                    AdvanceStatus.ALREADY_MIN_RANK, member_id,
                    old_rank_index=0, new_rank_index=0,
                )

            plan = plan_derank(self.ladder, held, current)
            return await self._operator_move(member_id, actor_id, plan, current, current - 1)

    async def derank_all(self, member_id: int, actor_id: int) -> RoleChangeResult:
        """Strip every rank and permission role from *member_id*."""
        async with self.locks.hold(member_id):
            try:
                held = await self._held_roles(member_id)
            except RoleSideEffectFailure:
                return RoleChangeResult(AdvanceStatus.ROLE_SIDE_EFFECT_FAILURE, member_id)

            plan = plan_strip(self.ladder, held)
            if plan.is_empty:
                return RoleChangeResult(AdvanceStatus.NO_RANK, member_id)
            current = self.ladder.resolve_index(held)
            return await self._operator_move(member_id, actor_id, plan, current, None)

    async def _operator_move(
        self,
        member_id: int,
        actor_id: int,
        plan: RolePlan,
        old_index: int | None,
        new_index: int | None,
    ) -> RoleChangeResult:
        try:
            await self._apply(member_id, plan)
        except RoleSideEffectFailure as exc:
            logger.error(
                "%s of member %s by %s stopped at role %s",
                plan.reason, member_id, actor_id, exc.role_id,
                extra={"member_id": member_id, "actor_id": actor_id, "plan": plan},
            )
            return RoleChangeResult(
                AdvanceStatus.ROLE_SIDE_EFFECT_FAILURE, member_id,
                old_rank_index=old_index, new_rank_index=new_index,
                failed_role_id=exc.role_id,
            )

        try:
            await run_db(
                self.ledger.record_rank_change, member_id,
                old_rank_index=old_index, new_rank_index=new_index, actor_id=actor_id,
            )
        except StoreFailure:
            # Roles are authoritative; a missing audit row is not fatal.
            logger.exception("Rank change audit row lost for member %s", member_id)

        logger.info(
            "%s: member %s by %s (%s → %s)",
            plan.reason, member_id, actor_id, old_index, new_index,
        )
        return RoleChangeResult(
            AdvanceStatus.SUCCESS, member_id,
            old_rank_index=old_index, new_rank_index=new_index,
            granted=plan.grant, revoked=plan.revoke,
        )

    async def sync_permission_roles(
        self, member_id: int, added_role_ids: set[int]
    ) -> RoleChangeResult:
        """Grant the permission role that belongs to any newly added rank role."""
        if not added_role_ids & self.ladder.rank_role_ids:
            return RoleChangeResult(AdvanceStatus.SUCCESS, member_id)

        async with self.locks.hold(member_id):
            try:
                held = await self._held_roles(member_id)
                plan = plan_permission_sync(self.ladder, held, added_role_ids)
                await self._apply(member_id, plan)
            except RoleSideEffectFailure as exc:
                return RoleChangeResult(
                    AdvanceStatus.ROLE_SIDE_EFFECT_FAILURE, member_id,
                    failed_role_id=exc.role_id,
                )

        if plan.grant:
            logger.info("Granted permission roles %s to member %s", plan.grant, member_id)
        return RoleChangeResult(AdvanceStatus.SUCCESS, member_id, granted=plan.grant)
