"""
rankup.services.ledger — Activity Ledger
=========================================

Durable per-member counters (messages, voice minutes) plus the bookkeeping
instants the rank evaluator needs.

Guarantees:
  * A member row is created at most once (SAVEPOINT + IntegrityError).
  * Counter updates are SQL-side ``col = col + delta`` statements, never a
    read-modify-write from Python memory.
  * Mutations are serialised per process by a ledger-owned lock.
  * Every operation is one transaction.  On failure it rolls back fully and
    raises :class:`~rankup.engine.errors.StoreFailure`.

All methods are synchronous; call them from async code through
:func:`rankup.database.engine.run_db`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import Engine, delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from rankup.constants import as_utc, utcnow
from rankup.database.models import Member, MessageHistory, RankChange, VoiceSession
from rankup.engine.errors import StoreFailure
from rankup.engine.records import MemberSnapshot

logger = logging.getLogger(__name__)


def to_snapshot(member: Member) -> MemberSnapshot:
    """Copy an ORM row into a detached :class:`MemberSnapshot`."""
    return MemberSnapshot(
        member_id=member.id,
        message_count=member.message_count or 0,
        voice_minutes=member.voice_minutes or 0,
        join_date=as_utc(member.join_date),
        last_message_at=as_utc(member.last_message_at),
        last_advance_at=as_utc(member.last_advance_at),
        created_at=as_utc(member.created_at),
        updated_at=as_utc(member.updated_at),
    )


# ---------------------------------------------------------------------------
# Reset steps — kept separate so the whole reset stays one transaction
# ---------------------------------------------------------------------------
def _zero_counters(session: Session, now: datetime) -> int:
    result = session.execute(
        update(Member)
        .values(message_count=0, voice_minutes=0, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def _clear_history(session: Session) -> None:
    session.execute(delete(MessageHistory).execution_options(synchronize_session=False))
    session.execute(delete(VoiceSession).execution_options(synchronize_session=False))


class ActivityLedger:
    """Aggregate-counter store for member activity.

    Parameters
    ----------
    engine:
        SQLAlchemy engine bound to the RankUp schema.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._write_lock = threading.RLock()

    # -------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------
    @contextmanager
    def _transaction(
        self, operation: str, member_id: int | None = None
    ) -> Iterator[Session]:
        """One serialised unit of work; converts DB faults to StoreFailure."""
        with self._write_lock:
            session = Session(self.engine)
            try:
                yield session
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception(
                    "Ledger %s failed for member %s",
                    operation, member_id,
                    extra={"operation": operation, "member_id": member_id},
                )
                raise StoreFailure(operation, member_id) from exc
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    @staticmethod
    def _ensure(
        session: Session,
        member_id: int,
        join_date: datetime | None,
        now: datetime,
    ) -> None:
        """Insert the member row if missing.  ``join_date`` is never rewritten."""
        if session.get(Member, member_id) is not None:
            return
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(Member(
                    id=member_id,
                    message_count=0,
                    voice_minutes=0,
                    join_date=join_date or now,
                    created_at=now,
                    updated_at=now,
                ))
                session.flush()
        except IntegrityError:
            # Created concurrently by another writer; theirs wins.
            logger.debug("Member %s already created concurrently", member_id)

    @staticmethod
    def _reload(session: Session, member_id: int) -> MemberSnapshot:
        session.flush()
        member = session.get(Member, member_id, populate_existing=True)
        if member is None:
            raise StoreFailure("reload", member_id)
        return to_snapshot(member)

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    def ensure_member(
        self, member_id: int, join_date: datetime | None = None
    ) -> MemberSnapshot:
        """Create the member if absent and return the (possibly existing) record."""
        now = utcnow()
        with self._transaction("ensure_member", member_id) as session:
            self._ensure(session, member_id, join_date, now)
            return self._reload(session, member_id)

    def add_messages(
        self,
        member_id: int,
        delta: int = 1,
        *,
        at: datetime | None = None,
        join_date: datetime | None = None,
    ) -> MemberSnapshot:
        """Atomically add *delta* to the member's message count."""
        now = at or utcnow()
        with self._transaction("add_messages", member_id) as session:
            self._ensure(session, member_id, join_date, now)
            session.execute(
                update(Member)
                .where(Member.id == member_id)
                .values(
                    message_count=Member.message_count + delta,
                    last_message_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            session.add(MessageHistory(member_id=member_id, count=delta, timestamp=now))
            return self._reload(session, member_id)

    def add_voice_minutes(
        self,
        member_id: int,
        delta: int,
        *,
        joined_at: datetime | None = None,
        left_at: datetime | None = None,
        join_date: datetime | None = None,
    ) -> MemberSnapshot:
        """Atomically add *delta* voice minutes.

        When the session interval is supplied a ``voice_sessions`` row is
        written in the same transaction.
        """
        now = utcnow()
        with self._transaction("add_voice_minutes", member_id) as session:
            self._ensure(session, member_id, join_date, now)
            session.execute(
                update(Member)
                .where(Member.id == member_id)
                .values(voice_minutes=Member.voice_minutes + delta, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if joined_at is not None or left_at is not None:
                session.add(VoiceSession(
                    member_id=member_id,
                    join_time=joined_at,
                    leave_time=left_at,
                    duration=delta,
                ))
            return self._reload(session, member_id)

    def _subtract(
        self, operation: str, column: str, member_id: int, amount: int
    ) -> MemberSnapshot | None:
        """Guarded atomic subtraction — never lets a counter go negative."""
        now = utcnow()
        col = getattr(Member, column)
        with self._transaction(operation, member_id) as session:
            result = session.execute(
                update(Member)
                .where(Member.id == member_id, col >= amount)
                .values({column: col - amount, "updated_at": now})
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                return None
            return self._reload(session, member_id)

    def remove_messages(self, member_id: int, amount: int) -> MemberSnapshot | None:
        """Subtract *amount* messages; ``None`` if unknown or insufficient."""
        return self._subtract("remove_messages", "message_count", member_id, amount)

    def remove_voice_minutes(self, member_id: int, amount: int) -> MemberSnapshot | None:
        """Subtract *amount* voice minutes; ``None`` if unknown or insufficient."""
        return self._subtract("remove_voice_minutes", "voice_minutes", member_id, amount)

    def get_snapshot(self, member_id: int) -> MemberSnapshot | None:
        """Read-only view of the member, or ``None`` if never seen."""
        try:
            with Session(self.engine) as session:
                member = session.get(Member, member_id)
                return to_snapshot(member) if member is not None else None
        except SQLAlchemyError as exc:
            logger.exception("Ledger read failed for member %s", member_id)
            raise StoreFailure("get_snapshot", member_id) from exc

    def record_advance(
        self,
        member_id: int,
        at: datetime,
        *,
        old_rank_index: int | None,
        new_rank_index: int,
        actor_id: int | None = None,
    ) -> MemberSnapshot:
        """Stamp ``last_advance_at`` (drives the cooldown) and audit the move."""
        with self._transaction("record_advance", member_id) as session:
            self._ensure(session, member_id, None, at)
            session.execute(
                update(Member)
                .where(Member.id == member_id)
                .values(last_advance_at=at, updated_at=at)
                .execution_options(synchronize_session=False)
            )
            session.add(RankChange(
                member_id=member_id,
                old_rank_index=old_rank_index,
                new_rank_index=new_rank_index,
                actor_id=actor_id,
                changed_at=at,
            ))
            return self._reload(session, member_id)

    def record_rank_change(
        self,
        member_id: int,
        *,
        old_rank_index: int | None,
        new_rank_index: int | None,
        actor_id: int | None,
    ) -> None:
        """Audit a rank move that does not touch the cooldown (operator deranks)."""
        with self._transaction("record_rank_change", member_id) as session:
            session.add(RankChange(
                member_id=member_id,
                old_rank_index=old_rank_index,
                new_rank_index=new_rank_index,
                actor_id=actor_id,
                changed_at=utcnow(),
            ))

    def reset_all(self) -> int:
        """Zero every member's counters and wipe history rows, all-or-nothing.

        Returns the number of members whose counters were reset.
        """
        now = utcnow()
        with self._transaction("reset_all") as session:
            count = _zero_counters(session, now)
            _clear_history(session)
        logger.info("Ledger reset: counters zeroed for %d members", count)
        return count
