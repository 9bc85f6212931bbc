"""
rankup.services.admin_service — Operator Audit Trail
=====================================================

Every admin command that changes state writes one ``admin_log`` row:
who did it, to whom, and a small JSON ``details`` payload (amounts,
before/after counters, rank indexes).  The log is append-only.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from rankup.constants import utcnow
from rankup.database.engine import get_session
from rankup.database.models import AdminActionType, AdminLog
from rankup.engine.errors import StoreFailure

logger = logging.getLogger(__name__)


def _jsonable(details: dict[str, Any] | None) -> dict[str, Any] | None:
    if details is None:
        return None
    return {
        k: v.isoformat() if isinstance(v, datetime) else v
        for k, v in details.items()
    }


def log_admin_action(
    engine: Engine,
    *,
    actor_id: int,
    action_type: AdminActionType,
    target_id: int | None = None,
    details: dict[str, Any] | None = None,
    reason: str | None = None,
) -> None:
    """Append one audit row in its own transaction."""
    try:
        with get_session(engine) as session:
            session.add(AdminLog(
                actor_id=actor_id,
                action_type=str(action_type),
                target_id=target_id,
                details=_jsonable(details),
                reason=reason,
                timestamp=utcnow(),
            ))
    except SQLAlchemyError as exc:
        logger.exception(
            "Admin log write failed: %s by %s on %s", action_type, actor_id, target_id
        )
        raise StoreFailure("log_admin_action", target_id) from exc

    logger.info("Admin action %s by %s on %s", action_type, actor_id, target_id)
