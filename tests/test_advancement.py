"""
tests/test_advancement.py — Advancement Coordinator Tests
==========================================================
Drives :class:`AdvancementCoordinator` against the SQLite ledger and an
in-memory fake role gateway: every result status, the grant → commit →
revoke ordering, bounded retries, and the double-click race.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import ENTRY_ROLE, MEMBER_PERM, REGULAR_ROLE, TRUSTED_PERM, VETERAN_ROLE

from rankup.database.models import BlacklistEntry
from rankup.engine.errors import AdvanceStatus, StoreFailure
from rankup.services.advancement import AdvancementCoordinator
from rankup.services.blacklist_service import add_to_blacklist

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)
MEMBER = 500


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    return asyncio.run(coro)


class FakeGateway:
    """Role store in a dict; selected roles can be made to fail."""

    def __init__(self, roles: dict[int, set[int]] | None = None) -> None:
        self.roles = roles or {}
        self.fail_grant: set[int] = set()
        self.fail_revoke: set[int] = set()
        self.flaky: dict[int, int] = {}   # role_id → failures left before success
        self.calls: list[tuple[str, int, int]] = []

    async def fetch_role_ids(self, member_id: int) -> set[int]:
        await asyncio.sleep(0)
        return set(self.roles.get(member_id, set()))

    def _maybe_fail(self, action: str, role_id: int, failing: set[int]) -> None:
        if role_id in failing:
            raise RuntimeError(f"403 Missing Permissions ({action} {role_id})")
        if self.flaky.get(role_id):
            self.flaky[role_id] -= 1
            raise RuntimeError("503 Service Unavailable")

    async def grant_role(self, member_id: int, role_id: int, reason: str) -> None:
        await asyncio.sleep(0)
        self.calls.append(("grant", member_id, role_id))
        self._maybe_fail("grant", role_id, self.fail_grant)
        self.roles.setdefault(member_id, set()).add(role_id)

    async def revoke_role(self, member_id: int, role_id: int, reason: str) -> None:
        await asyncio.sleep(0)
        self.calls.append(("revoke", member_id, role_id))
        self._maybe_fail("revoke", role_id, self.fail_revoke)
        self.roles.setdefault(member_id, set()).discard(role_id)

    def count(self, action: str, role_id: int) -> int:
        return sum(1 for a, _, r in self.calls if a == action and r == role_id)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway({MEMBER: {ENTRY_ROLE, MEMBER_PERM}})


@pytest.fixture
def coordinator(db_engine, ledger, ladder, gateway) -> AdvancementCoordinator:
    return AdvancementCoordinator(
        db_engine, ledger, ladder, gateway,
        cooldown=timedelta(hours=48),
        clock=lambda: NOW,
        sleep=AsyncMock(),
    )


def _qualify(ledger, member_id: int = MEMBER, last_advance_at=None) -> None:
    ledger.add_messages(member_id, 150)
    ledger.add_voice_minutes(member_id, 300)
    if last_advance_at is not None:
        ledger.record_advance(member_id, last_advance_at, old_rank_index=None, new_rank_index=0)


class TestGates:

    def test_not_registered(self, coordinator):
        result = run_async(coordinator.attempt_advance(MEMBER))
        assert result.status is AdvanceStatus.NOT_REGISTERED

    def test_blacklisted_even_when_qualified(self, coordinator, ledger, db_engine, gateway):
        _qualify(ledger)
        add_to_blacklist(db_engine, MEMBER, reason="alt account", issued_by=1)
        result = run_async(coordinator.attempt_advance(MEMBER))
        assert result.status is AdvanceStatus.BLACKLISTED
        assert gateway.calls == []

    def test_requirements_not_met(self, coordinator, ledger):
        ledger.add_messages(MEMBER, 150)
        result = run_async(coordinator.attempt_advance(MEMBER))
        assert result.status is AdvanceStatus.REQUIREMENTS_NOT_MET
        assert result.eligibility.remaining_voice_hours == pytest.approx(5.0)

    def test_on_cooldown_reports_remaining(self, coordinator, ledger):
        _qualify(ledger, last_advance_at=NOW - timedelta(hours=10))
        result = run_async(coordinator.attempt_advance(MEMBER))
        assert result.status is AdvanceStatus.ON_COOLDOWN
        assert result.cooldown_remaining == timedelta(hours=38)

    def test_already_max_rank(self, coordinator, ledger, gateway):
        gateway.roles[MEMBER] = {VETERAN_ROLE, TRUSTED_PERM}
        _qualify(ledger)
        result = run_async(coordinator.attempt_advance(MEMBER))
        assert result.status is AdvanceStatus.ALREADY_MAX_RANK
        assert result.old_rank_index == 2

    def test_missing_rank_role_grants_entry_rank(self, coordinator, ledger, gateway):
        gateway.roles[MEMBER] = set()
        ledger.add_messages(MEMBER, 1)
        result = run_async(coordinator.attempt_advance(MEMBER))
        assert result.status is AdvanceStatus.REQUIREMENTS_NOT_MET
        assert result.old_rank_index == 0
        assert gateway.roles[MEMBER] == {ENTRY_ROLE, MEMBER_PERM}

    def test_blacklist_store_failure_fails_closed(self, coordinator, ledger, db_engine):
        _qualify(ledger)
        BlacklistEntry.__table__.drop(db_engine)
        result = run_async(coordinator.attempt_advance(MEMBER))
        assert result.status is AdvanceStatus.STORE_FAILURE


class TestSuccess:

    def test_advance_swaps_roles_and_stamps_cooldown(self, coordinator, ledger, gateway):
        _qualify(ledger)
        result = run_async(coordinator.attempt_advance(MEMBER))

        assert result.status is AdvanceStatus.SUCCESS
        assert (result.old_rank_index, result.new_rank_index) == (0, 1)
        assert result.committed is True
        assert gateway.roles[MEMBER] == {REGULAR_ROLE, MEMBER_PERM}
        assert ledger.get_snapshot(MEMBER).last_advance_at == NOW

    def test_grants_happen_before_revokes(self, coordinator, ledger, gateway):
        _qualify(ledger)
        run_async(coordinator.attempt_advance(MEMBER))
        actions = [a for a, _, _ in gateway.calls]
        assert actions == ["grant", "revoke"]

    def test_transient_failure_is_retried(self, coordinator, ledger, gateway):
        _qualify(ledger)
        gateway.flaky[REGULAR_ROLE] = 2
        result = run_async(coordinator.attempt_advance(MEMBER))
        assert result.status is AdvanceStatus.SUCCESS
        assert gateway.count("grant", REGULAR_ROLE) == 3

    def test_double_click_advances_once(self, coordinator, ledger, gateway):
        _qualify(ledger)

        async def both():
            return await asyncio.gather(
                coordinator.attempt_advance(MEMBER),
                coordinator.attempt_advance(MEMBER),
            )

        first, second = run_async(both())
        statuses = sorted([first.status, second.status])
        assert statuses == sorted([AdvanceStatus.SUCCESS, AdvanceStatus.ON_COOLDOWN])
        assert gateway.count("grant", REGULAR_ROLE) == 1
        assert gateway.count("grant", VETERAN_ROLE) == 0
        assert len(coordinator.locks) == 0


class TestSideEffectFailures:

    def test_grant_failure_records_nothing(self, coordinator, ledger, gateway):
        _qualify(ledger)
        gateway.fail_grant.add(REGULAR_ROLE)
        result = run_async(coordinator.attempt_advance(MEMBER))

        assert result.status is AdvanceStatus.ROLE_SIDE_EFFECT_FAILURE
        assert result.committed is False
        assert result.failed_role_id == REGULAR_ROLE
        assert gateway.count("grant", REGULAR_ROLE) == coordinator.role_attempts
        assert ledger.get_snapshot(MEMBER).last_advance_at is None
        assert gateway.roles[MEMBER] == {ENTRY_ROLE, MEMBER_PERM}

    def test_grant_failure_is_retryable(self, coordinator, ledger, gateway):
        _qualify(ledger)
        gateway.fail_grant.add(REGULAR_ROLE)
        run_async(coordinator.attempt_advance(MEMBER))
        gateway.fail_grant.clear()
        result = run_async(coordinator.attempt_advance(MEMBER))
        assert result.status is AdvanceStatus.SUCCESS

    def test_revoke_failure_after_commit(self, coordinator, ledger, gateway):
        _qualify(ledger)
        gateway.fail_revoke.add(ENTRY_ROLE)
        result = run_async(coordinator.attempt_advance(MEMBER))

        assert result.status is AdvanceStatus.ROLE_SIDE_EFFECT_FAILURE
        assert result.committed is True
        assert result.new_rank_index == 1
        assert ledger.get_snapshot(MEMBER).last_advance_at == NOW
        assert REGULAR_ROLE in gateway.roles[MEMBER]

    def test_ledger_failure_rolls_back_grants(self, coordinator, ledger, gateway):
        _qualify(ledger)
        coordinator.ledger = MagicMock(wraps=ledger)
        coordinator.ledger.record_advance.side_effect = StoreFailure("record_advance", MEMBER)

        result = run_async(coordinator.attempt_advance(MEMBER))

        assert result.status is AdvanceStatus.STORE_FAILURE
        assert gateway.roles[MEMBER] == {ENTRY_ROLE, MEMBER_PERM}


class TestStatus:

    def test_status_is_read_only(self, coordinator, ledger, gateway):
        _qualify(ledger)
        status = run_async(coordinator.status(MEMBER))
        assert status.registered is True
        assert status.rank_index == 0
        assert status.eligibility.can_advance is True
        assert status.blacklisted is False
        assert gateway.calls == []

    def test_status_of_unknown_member(self, coordinator, gateway):
        gateway.roles[MEMBER] = set()
        status = run_async(coordinator.status(MEMBER))
        assert status.registered is False
        assert status.rank_index is None
        assert status.eligibility is None


class TestOperatorMoves:

    def test_derank_one_step(self, coordinator, ledger, gateway, db_engine):
        gateway.roles[MEMBER] = {VETERAN_ROLE, TRUSTED_PERM}
        result = run_async(coordinator.derank(MEMBER, actor_id=9))
        assert result.status is AdvanceStatus.SUCCESS
        assert (result.old_rank_index, result.new_rank_index) == (2, 1)
        assert gateway.roles[MEMBER] == {REGULAR_ROLE, MEMBER_PERM}

    def test_derank_at_entry_rank(self, coordinator):
        result = run_async(coordinator.derank(MEMBER, actor_id=9))
        assert result.status is AdvanceStatus.ALREADY_MIN_RANK

    def test_derank_without_rank(self, coordinator, gateway):
        gateway.roles[MEMBER] = {MEMBER_PERM}
        result = run_async(coordinator.derank(MEMBER, actor_id=9))
        assert result.status is AdvanceStatus.NO_RANK

    def test_derank_all_strips_everything(self, coordinator, gateway):
        gateway.roles[MEMBER] = {REGULAR_ROLE, MEMBER_PERM, 42}
        result = run_async(coordinator.derank_all(MEMBER, actor_id=9))
        assert result.status is AdvanceStatus.SUCCESS
        assert result.new_rank_index is None
        assert gateway.roles[MEMBER] == {42}

    def test_derank_all_with_nothing_to_strip(self, coordinator, gateway):
        gateway.roles[MEMBER] = {42}
        result = run_async(coordinator.derank_all(MEMBER, actor_id=9))
        assert result.status is AdvanceStatus.NO_RANK

    def test_permission_sync_grants_tier(self, coordinator, gateway):
        gateway.roles[MEMBER] = {VETERAN_ROLE}
        result = run_async(coordinator.sync_permission_roles(MEMBER, {VETERAN_ROLE}))
        assert result.granted == (TRUSTED_PERM,)
        assert TRUSTED_PERM in gateway.roles[MEMBER]

    def test_permission_sync_ignores_unrelated_roles(self, coordinator, gateway):
        result = run_async(coordinator.sync_permission_roles(MEMBER, {42}))
        assert result.ok
        assert gateway.calls == []
