"""Initial RankUp schema

Revision ID: 5c2e8a41b9d0
Revises:
Create Date: 2026-10-18 09:12:04.118532

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c2e8a41b9d0'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the ledger, history, blacklist, audit, and settings tables."""

    # --- members (activity ledger) ---
    op.create_table(
        "members",
        sa.Column("id", sa.BigInteger, primary_key=True),
        sa.Column("message_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("voice_minutes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("join_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_advance_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- message_history ---
    op.create_table(
        "message_history",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "member_id", sa.BigInteger,
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("count", sa.Integer, nullable=False, server_default="1"),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_message_history_member_id", "message_history", ["member_id"])

    # --- voice_sessions ---
    op.create_table(
        "voice_sessions",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "member_id", sa.BigInteger,
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("join_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("leave_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("ix_voice_sessions_member_id", "voice_sessions", ["member_id"])

    # --- blacklist ---
    op.create_table(
        "blacklist",
        sa.Column("member_id", sa.BigInteger, primary_key=True),
        sa.Column("reason", sa.Text, nullable=False, server_default=""),
        sa.Column("issued_by", sa.BigInteger, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_blacklist_created_at", "blacklist", ["created_at"])

    # --- rank_changes ---
    op.create_table(
        "rank_changes",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("member_id", sa.BigInteger, nullable=False),
        sa.Column("old_rank_index", sa.Integer, nullable=True),
        sa.Column("new_rank_index", sa.Integer, nullable=True),
        sa.Column("actor_id", sa.BigInteger, nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_rank_changes_member_changed", "rank_changes", ["member_id", "changed_at"]
    )

    # --- settings ---
    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text, nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_settings_category", "settings", ["category"])

    # --- admin_log ---
    op.create_table(
        "admin_log",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.BigInteger, nullable=False),
        sa.Column("action_type", sa.String(30), nullable=False),
        sa.Column("target_id", sa.BigInteger, nullable=True),
        sa.Column("details", postgresql.JSONB, nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_timestamp", "admin_log", ["timestamp"])


def downgrade() -> None:
    """Drop every RankUp table."""
    op.drop_index("ix_admin_log_timestamp", table_name="admin_log")
    op.drop_table("admin_log")
    op.drop_index("ix_settings_category", table_name="settings")
    op.drop_table("settings")
    op.drop_index("ix_rank_changes_member_changed", table_name="rank_changes")
    op.drop_table("rank_changes")
    op.drop_index("ix_blacklist_created_at", table_name="blacklist")
    op.drop_table("blacklist")
    op.drop_index("ix_voice_sessions_member_id", table_name="voice_sessions")
    op.drop_table("voice_sessions")
    op.drop_index("ix_message_history_member_id", table_name="message_history")
    op.drop_table("message_history")
    op.drop_table("members")
