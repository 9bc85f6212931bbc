"""
tests/test_rank_policy.py — Rank Ladder & Evaluator Unit Tests
===============================================================
Pure-function tests: threshold modes, cooldown boundary, progress bars,
idempotence, current-rank resolution, and ladder validation.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from conftest import (
    ENTRY_ROLE,
    MEMBER_PERM,
    REGULAR_ROLE,
    TRUSTED_PERM,
    VETERAN_ROLE,
    make_ladder,
)

from rankup.engine.ranks import (
    PermissionTier,
    RankDefinition,
    RankLadder,
    ThresholdMode,
    cooldown_state,
    evaluate,
)
from rankup.engine.records import MemberSnapshot

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)
COOLDOWN = timedelta(hours=48)


def _snap(messages: int = 0, voice_minutes: int = 0, last_advance_at=None) -> MemberSnapshot:
    return MemberSnapshot(
        member_id=1,
        message_count=messages,
        voice_minutes=voice_minutes,
        last_advance_at=last_advance_at,
    )


class TestThresholdModes:

    def test_and_mode_requires_both(self):
        ladder = make_ladder(ThresholdMode.AND)
        elig = evaluate(_snap(150, 0), ladder, 0, now=NOW)
        assert elig.messages_ok is True
        assert elig.voice_ok is False
        assert elig.meets_thresholds is False

    def test_and_mode_met(self):
        ladder = make_ladder(ThresholdMode.AND)
        elig = evaluate(_snap(150, 300), ladder, 0, now=NOW)
        assert elig.meets_thresholds is True
        assert elig.can_advance is True

    def test_or_mode_needs_either(self):
        ladder = make_ladder(ThresholdMode.OR)
        elig = evaluate(_snap(150, 0), ladder, 0, now=NOW)
        assert elig.meets_thresholds is True

    def test_or_mode_neither(self):
        ladder = make_ladder(ThresholdMode.OR)
        elig = evaluate(_snap(99, 299), ladder, 0, now=NOW)
        assert elig.meets_thresholds is False

    def test_and_mode_zero_threshold_is_satisfied(self):
        ladder = RankLadder(ranks=(
            RankDefinition(0, "A", 1),
            RankDefinition(1, "B", 2, required_messages=10, required_voice_hours=0),
        ))
        elig = evaluate(_snap(10, 0), ladder, 0, now=NOW)
        assert elig.voice_ok is True
        assert elig.meets_thresholds is True

    def test_remaining_amounts(self):
        elig = evaluate(_snap(40, 120), make_ladder(), 0, now=NOW)
        assert elig.remaining_messages == 60
        assert elig.remaining_voice_hours == pytest.approx(3.0)


class TestCooldown:

    def test_just_past_cooldown(self):
        last = NOW - COOLDOWN - timedelta(seconds=1)
        elig = evaluate(_snap(150, 300, last), make_ladder(), 0, now=NOW, cooldown=COOLDOWN)
        assert elig.on_cooldown is False
        assert elig.can_advance is True

    def test_just_inside_cooldown(self):
        last = NOW - COOLDOWN + timedelta(seconds=1)
        elig = evaluate(_snap(150, 300, last), make_ladder(), 0, now=NOW, cooldown=COOLDOWN)
        assert elig.on_cooldown is True
        assert elig.cooldown_remaining == timedelta(seconds=1)
        assert elig.can_advance is False

    def test_never_advanced(self):
        assert cooldown_state(None, NOW, COOLDOWN) == (False, timedelta(0))

    def test_naive_anchor_is_treated_as_utc(self):
        naive = (NOW - timedelta(hours=1)).replace(tzinfo=None)
        on_cooldown, remaining = cooldown_state(naive, NOW, COOLDOWN)
        assert on_cooldown is True
        assert remaining == timedelta(hours=47)


class TestProgressAndLastRank:

    def test_progress_is_capped_at_100(self):
        elig = evaluate(_snap(250, 30), make_ladder(), 0, now=NOW)
        assert elig.messages_progress == 100.0
        assert elig.voice_progress == pytest.approx(10.0)
        assert elig.progress == pytest.approx(10.0)

    def test_zero_requirement_counts_as_complete(self):
        ladder = RankLadder(ranks=(
            RankDefinition(0, "A", 1),
            RankDefinition(1, "B", 2, required_messages=0, required_voice_hours=2),
        ))
        elig = evaluate(_snap(0, 60), ladder, 0, now=NOW)
        assert elig.messages_progress == 100.0
        assert elig.voice_progress == pytest.approx(50.0)

    def test_last_rank_has_no_next(self):
        ladder = make_ladder()
        elig = evaluate(_snap(10_000, 10_000), ladder, ladder.last_index, now=NOW)
        assert elig.has_next is False
        assert elig.can_advance is False
        assert elig.current_rank.name == "Veteran"

    def test_evaluate_is_idempotent(self):
        ladder = make_ladder()
        snap = _snap(120, 200, NOW - timedelta(hours=3))
        results = {evaluate(snap, ladder, 0, now=NOW, cooldown=COOLDOWN) for _ in range(5)}
        assert len(results) == 1


class TestLadder:

    def test_resolve_index_picks_highest_held(self, ladder):
        assert ladder.resolve_index({ENTRY_ROLE, VETERAN_ROLE, 99}) == 2
        assert ladder.resolve_index({REGULAR_ROLE}) == 1
        assert ladder.resolve_index({MEMBER_PERM}) is None

    def test_permission_lookup(self, ladder):
        assert ladder.permission_role_for(0) == MEMBER_PERM
        assert ladder.permission_role_for(2) == TRUSTED_PERM
        assert ladder.ranking_role_ids == {MEMBER_PERM, TRUSTED_PERM}

    def test_empty_ladder_rejected(self):
        with pytest.raises(ValueError, match="at least one"):
            RankLadder(ranks=())

    def test_duplicate_role_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            RankLadder(ranks=(RankDefinition(0, "A", 1), RankDefinition(1, "B", 1)))

    def test_index_must_match_position(self):
        with pytest.raises(ValueError, match="expected 1"):
            RankLadder(ranks=(RankDefinition(0, "A", 1), RankDefinition(2, "B", 2)))

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValueError, match="negative"):
            RankLadder(ranks=(RankDefinition(0, "A", 1, required_messages=-1),))

    def test_unknown_permission_rejected(self):
        with pytest.raises(ValueError, match="unknown permission"):
            RankLadder(
                ranks=(RankDefinition(0, "A", 1, permission_id="ghost"),),
                permissions=(PermissionTier("member", "Member", 5),),
            )
