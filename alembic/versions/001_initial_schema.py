"""Initial schema: profiles, swipes, matches, conversations, messages, featured.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. profiles ─────────────────────────────────────────────────
    op.create_table(
        "profiles",
        sa.Column("uid", sa.String(128), primary_key=True),
        sa.Column("display_name", sa.String(120), nullable=False, server_default=""),
        sa.Column(
            "data",
            postgresql.JSONB,
            nullable=False,
            comment="camelCase profile document",
        ),
        sa.Column("schema_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_profiles_created_at", "profiles", ["created_at"])

    # ── 2. swipes (append-only ledger) ──────────────────────────────
    op.create_table(
        "swipes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("subject_id", sa.String(128), nullable=False),
        sa.Column("target_id", sa.String(128), nullable=False),
        sa.Column(
            "action",
            sa.String(16),
            nullable=False,
            comment="like / pass / superlike",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_swipes_subject_target", "swipes", ["subject_id", "target_id"]
    )

    # ── 3. matches ──────────────────────────────────────────────────
    op.create_table(
        "matches",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id_1",
            sa.String(128),
            nullable=False,
            comment="Lexicographically smaller uid",
        ),
        sa.Column("user_id_2", sa.String(128), nullable=False),
        sa.Column("pair_key", sa.String(64), nullable=False),
        sa.Column(
            "matched_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("has_messaged", sa.Boolean, server_default="false", nullable=False),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        sa.Column("unmatched_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "uq_active_match_pair",
        "matches",
        ["pair_key"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )
    op.create_index("ix_matches_user_1", "matches", ["user_id_1"])
    op.create_index("ix_matches_user_2", "matches", ["user_id_2"])

    # ── 4. conversations + participants ─────────────────────────────
    op.create_table(
        "conversations",
        sa.Column(
            "id",
            sa.String(64),
            primary_key=True,
            comment="dm_<pairkey> or random for groups",
        ),
        sa.Column("is_group_chat", sa.Boolean, server_default="false", nullable=False),
        sa.Column("group_name", sa.String(120), nullable=True),
        sa.Column("last_message", sa.Text, nullable=True),
        sa.Column(
            "last_message_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_table(
        "conversation_participants",
        sa.Column(
            "conversation_id",
            sa.String(64),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("unread_count", sa.Integer, server_default="0", nullable=False),
    )
    op.create_index("ix_participants_user", "conversation_participants", ["user_id"])

    # ── 5. messages ─────────────────────────────────────────────────
    op.create_table(
        "messages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "conversation_id",
            sa.String(64),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sender_id", sa.String(128), nullable=False),
        sa.Column(
            "recipient_id",
            sa.String(128),
            nullable=False,
            comment="Empty for group messages",
        ),
        sa.Column("content", sa.Text, nullable=False, server_default=""),
        sa.Column("media_url", sa.Text, nullable=True),
        sa.Column(
            "sent_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_messages_conversation_sent", "messages", ["conversation_id", "sent_at"]
    )

    # ── 6. featured_placements ──────────────────────────────────────
    op.create_table(
        "featured_placements",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("product_id", sa.String(120), nullable=True),
        sa.Column("category", sa.String(60), server_default="Featured", nullable=False),
        sa.Column("highlight_text", sa.Text, nullable=True),
        sa.Column("priority", sa.Integer, server_default="1", nullable=False),
        sa.Column("transaction_id", sa.String(120), nullable=True),
        sa.Column(
            "featured_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status",
            sa.String(16),
            server_default="active",
            nullable=False,
            comment="active / expired",
        ),
    )
    op.create_index(
        "ix_featured_status_expiry", "featured_placements", ["status", "expires_at"]
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_index("ix_featured_status_expiry", table_name="featured_placements")
    op.drop_table("featured_placements")

    op.drop_index("ix_messages_conversation_sent", table_name="messages")
    op.drop_table("messages")

    op.drop_index("ix_participants_user", table_name="conversation_participants")
    op.drop_table("conversation_participants")
    op.drop_table("conversations")

    op.drop_index("ix_matches_user_2", table_name="matches")
    op.drop_index("ix_matches_user_1", table_name="matches")
    op.drop_index("uq_active_match_pair", table_name="matches")
    op.drop_table("matches")

    op.drop_index("ix_swipes_subject_target", table_name="swipes")
    op.drop_table("swipes")

    op.drop_index("ix_profiles_created_at", table_name="profiles")
    op.drop_table("profiles")
