"""
rankup.engine.errors — Result Taxonomy & Exceptions
====================================================

Structured outcomes returned by the Advancement Coordinator, and the two
infrastructure exceptions raised across component boundaries.  Nothing in
here knows how a result is rendered; the cogs own all user-facing text.
"""

from __future__ import annotations

import enum


class AdvanceStatus(enum.StrEnum):
    """Outcome of a rank move attempt."""
    SUCCESS = "SUCCESS"
    NOT_REGISTERED = "NOT_REGISTERED"
    BLACKLISTED = "BLACKLISTED"
    ON_COOLDOWN = "ON_COOLDOWN"
    REQUIREMENTS_NOT_MET = "REQUIREMENTS_NOT_MET"
    ALREADY_MAX_RANK = "ALREADY_MAX_RANK"
    ALREADY_MIN_RANK = "ALREADY_MIN_RANK"
    NO_RANK = "NO_RANK"
    STORE_FAILURE = "STORE_FAILURE"
    ROLE_SIDE_EFFECT_FAILURE = "ROLE_SIDE_EFFECT_FAILURE"


class RankupError(Exception):
    """Base class for RankUp infrastructure faults."""


class StoreFailure(RankupError):
    """A ledger / blacklist / schedule operation failed at the database.

    Raised instead of the underlying SQLAlchemy error so callers only need
    to handle one type.  No partial state is committed when this is raised.
    """

    def __init__(self, operation: str, member_id: int | None = None) -> None:
        self.operation = operation
        self.member_id = member_id
        target = f" (member {member_id})" if member_id is not None else ""
        super().__init__(f"Store operation '{operation}' failed{target}")


class RoleSideEffectFailure(RankupError):
    """A grant/revoke call to the chat platform failed after all retries."""

    def __init__(self, member_id: int, role_id: int | None, action: str) -> None:
        self.member_id = member_id
        self.role_id = role_id
        self.action = action
        target = f"role {role_id}" if role_id is not None else "roles"
        super().__init__(f"Failed to {action} {target} for member {member_id}")
