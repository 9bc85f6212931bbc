"""
rankup.services.blacklist_service — Advancement Blacklist
==========================================================

A blacklisted member keeps being counted by the ledger but can never
advance.  The blacklist is a gate on the Advancement Coordinator only.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rankup.constants import as_utc, utcnow
from rankup.database.engine import get_session
from rankup.database.models import BlacklistEntry
from rankup.engine.errors import StoreFailure
from rankup.engine.records import BlacklistRecord

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def _store_operation(func: Callable[P, T]) -> Callable[P, T]:
    """Convert SQLAlchemy faults raised by *func* into StoreFailure."""
    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as exc:
            member_id = args[1] if len(args) > 1 else None
            logger.exception("Blacklist %s failed for member %s", func.__name__, member_id)
            raise StoreFailure(func.__name__, member_id) from exc  # type: ignore[arg-type]
    return wrapper


def _to_record(entry: BlacklistEntry) -> BlacklistRecord:
    return BlacklistRecord(
        member_id=entry.member_id,
        reason=entry.reason,
        issued_by=entry.issued_by,
        created_at=as_utc(entry.created_at),
        updated_at=as_utc(entry.updated_at),
    )


@_store_operation
def add_to_blacklist(
    engine: Engine,
    member_id: int,
    *,
    reason: str,
    issued_by: int | None,
) -> tuple[BlacklistRecord, bool]:
    """Blacklist *member_id*.  Re-adding updates reason and issuer.

    Returns ``(record, created)``.
    """
    now = utcnow()
    with Session(engine) as session:
        entry = session.get(BlacklistEntry, member_id)
        created = entry is None
        if entry is None:
            entry = BlacklistEntry(
                member_id=member_id,
                reason=reason,
                issued_by=issued_by,
                created_at=now,
                updated_at=now,
            )
            session.add(entry)
        else:
            entry.reason = reason
            entry.issued_by = issued_by
            entry.updated_at = now
        session.flush()
        record = _to_record(entry)
        session.commit()

    logger.info("Member %s blacklisted by %s: %s", member_id, issued_by, reason)
    return record, created


@_store_operation
def remove_from_blacklist(engine: Engine, member_id: int) -> bool:
    """Lift the blacklist.  Returns ``False`` if the member was not listed."""
    with get_session(engine) as session:
        result = session.execute(
            delete(BlacklistEntry).where(BlacklistEntry.member_id == member_id)
        )
        removed = bool(result.rowcount)

    if removed:
        logger.info("Member %s removed from blacklist", member_id)
    return removed


@_store_operation
def is_blacklisted(engine: Engine, member_id: int) -> bool:
    with Session(engine) as session:
        return session.get(BlacklistEntry, member_id) is not None


@_store_operation
def get_blacklist_entry(engine: Engine, member_id: int) -> BlacklistRecord | None:
    with Session(engine) as session:
        entry = session.get(BlacklistEntry, member_id)
        return _to_record(entry) if entry is not None else None


@_store_operation
def get_blacklist(engine: Engine) -> list[BlacklistRecord]:
    """All entries, most recent first."""
    with Session(engine) as session:
        rows = session.scalars(
            select(BlacklistEntry).order_by(BlacklistEntry.created_at.desc())
        ).all()
        return [_to_record(r) for r in rows]
