"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import Engine, create_engine

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively; render it as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import Session

from rankup.database.models import Base
from rankup.engine.ranks import PermissionTier, RankDefinition, RankLadder, ThresholdMode
from rankup.services.ledger import ActivityLedger

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


# Role ids used by the shared ladder fixture
ENTRY_ROLE = 1001
REGULAR_ROLE = 1002
VETERAN_ROLE = 1003
MEMBER_PERM = 2001
TRUSTED_PERM = 2002


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all RankUp tables.

    Uses StaticPool so worker threads (``run_db`` / thread pools) share the
    same in-memory database.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def ledger(db_engine: Engine) -> ActivityLedger:
    return ActivityLedger(db_engine)


def make_ladder(mode: ThresholdMode = ThresholdMode.AND) -> RankLadder:
    """Three-rung ladder: Newcomer → Regular (100 msgs / 5h) → Veteran."""
    return RankLadder(
        ranks=(
            RankDefinition(0, "Newcomer", ENTRY_ROLE, permission_id="member"),
            RankDefinition(
                1, "Regular", REGULAR_ROLE,
                required_messages=100, required_voice_hours=5,
                mode=mode, permission_id="member",
            ),
            RankDefinition(
                2, "Veteran", VETERAN_ROLE,
                required_messages=500, required_voice_hours=20,
                mode=ThresholdMode.OR, permission_id="trusted",
            ),
        ),
        permissions=(
            PermissionTier("member", "Member", MEMBER_PERM),
            PermissionTier("trusted", "Trusted", TRUSTED_PERM),
        ),
    )


@pytest.fixture
def ladder() -> RankLadder:
    return make_ladder()
