"""
rankup.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- members          — Activity ledger, one row per tracked member (snowflake PK)
- message_history  — Append-only message credits (cleared on reset)
- voice_sessions   — Closed voice sessions credited to a member (cleared on reset)
- blacklist        — Members excluded from rank advancement
- rank_changes     — Audit mirror of rank moves (roles stay the source of truth)
- settings         — Key-value store (reset schedule lives here)
- admin_log        — Append-only audit trail of operator actions
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all RankUp ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class AdminActionType(enum.StrEnum):
    """Categories of operator mutations recorded in admin_log."""
    STAT_ADD = "STAT_ADD"
    STAT_REMOVE = "STAT_REMOVE"
    BLACKLIST_ADD = "BLACKLIST_ADD"
    BLACKLIST_REMOVE = "BLACKLIST_REMOVE"
    DERANK = "DERANK"
    DERANK_ALL = "DERANK_ALL"
    FORCE_RESET = "FORCE_RESET"
    SCHEDULE_UPDATE = "SCHEDULE_UPDATE"


# ---------------------------------------------------------------------------
# Members — the activity ledger
# ---------------------------------------------------------------------------
class Member(Base):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    voice_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    join_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_advance_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    messages: Mapped[list[MessageHistory]] = relationship(
        back_populates="member", cascade="all, delete-orphan"
    )
    voice_sessions: Mapped[list[VoiceSession]] = relationship(
        back_populates="member", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return (
            f"<Member id={self.id} msgs={self.message_count} "
            f"voice={self.voice_minutes}m>"
        )


# ---------------------------------------------------------------------------
# MessageHistory — one row per credited message batch
# ---------------------------------------------------------------------------
class MessageHistory(Base):
    __tablename__ = "message_history"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    member: Mapped[Member] = relationship(back_populates="messages")

    __table_args__ = (
        Index("ix_message_history_member_id", "member_id"),
    )


# ---------------------------------------------------------------------------
# VoiceSession — closed sessions merged into members.voice_minutes
# ---------------------------------------------------------------------------
class VoiceSession(Base):
    __tablename__ = "voice_sessions"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    join_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    leave_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # minutes

    member: Mapped[Member] = relationship(back_populates="voice_sessions")

    __table_args__ = (
        Index("ix_voice_sessions_member_id", "member_id"),
    )


# ---------------------------------------------------------------------------
# Blacklist — gate on advancement, not on counting
# ---------------------------------------------------------------------------
class BlacklistEntry(Base):
    __tablename__ = "blacklist"

    member_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    issued_by: Mapped[int | None] = mapped_column(BigInteger, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_blacklist_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<BlacklistEntry member={self.member_id} by={self.issued_by}>"


# ---------------------------------------------------------------------------
# RankChange — audit mirror of every rank move
# ---------------------------------------------------------------------------
class RankChange(Base):
    __tablename__ = "rank_changes"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    old_rank_index: Mapped[int | None] = mapped_column(Integer)
    new_rank_index: Mapped[int | None] = mapped_column(Integer)
    actor_id: Mapped[int | None] = mapped_column(BigInteger, default=None)  # None = self-service
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_rank_changes_member_changed", "member_id", "changed_at"),
    )


# ---------------------------------------------------------------------------
# Settings — key-value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value store for runtime state that must survive restarts.

    Values are stored as JSON strings.  The reset scheduler keeps its
    boundary and interval here.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only operator audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(String(30), nullable=False)
    target_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    details: Mapped[dict | None] = mapped_column(JSONB, default=None)
    reason: Mapped[str | None] = mapped_column(Text, default=None)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_timestamp", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog {self.action_type} by={self.actor_id} target={self.target_id}>"
