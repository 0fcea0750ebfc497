"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates:
- users
- items (pgvector embedding + HNSW cosine index)
- matches (unique lost/found pair, kept after either item is migrated)
- claims (unique item/claimant pair, item_id SET NULL on item delete, original_item_id kept)
- claimed_items (one snapshot per approved claim)
- notifications
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

item_kind = postgresql.ENUM("lost", "found", name="item_kind", create_type=False)
item_status = postgresql.ENUM("active", "resolved", "expired", name="item_status", create_type=False)
found_mode = postgresql.ENUM("left_at_location", "keeping", name="found_mode", create_type=False)
match_status = postgresql.ENUM(
    "pending", "confirmed", "rejected", name="match_status", create_type=False
)
claim_status = postgresql.ENUM(
    "pending", "approved", "rejected", name="claim_status", create_type=False
)
notification_kind = postgresql.ENUM(
    "match_found",
    "claim_submitted",
    "claim_approved",
    "claim_rejected",
    "ucard_found",
    "item_resolved",
    name="notification_kind",
    create_type=False,
)

_ENUMS = (item_kind, item_status, found_mode, match_status, claim_status, notification_kind)


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name, sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
    )


def upgrade() -> None:
    """Create extension, enums and all tables."""
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")
    bind = op.get_bind()
    for enum in _ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "items",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", item_kind, nullable=False),
        sa.Column("status", item_status, server_default="active", nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("date_occurred", sa.Date(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("found_mode", found_mode, nullable=True),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("is_anonymous", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("ai_metadata", postgresql.JSONB(), nullable=True),
        sa.Column("embedding", Vector(768), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("items_kind_status_idx", "items", ["kind", "status"])
    op.create_index("items_user_idx", "items", ["user_id"])
    op.create_index(
        "items_embedding_hnsw_idx",
        "items",
        ["embedding"],
        postgresql_using="hnsw",
        postgresql_with={"m": 16, "ef_construction": 64},
        postgresql_ops={"embedding": "vector_cosine_ops"},
    )

    op.create_table(
        "matches",
        _uuid_pk(),
        sa.Column("lost_item_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("found_item_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("similarity_score", sa.Float(), nullable=False),
        sa.Column("status", match_status, server_default="pending", nullable=False),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("lost_item_id", "found_item_id", name="uq_matches_pair"),
    )
    op.create_index("matches_found_item_idx", "matches", ["found_item_id"])
    op.create_index("matches_score_idx", "matches", ["similarity_score"])

    op.create_table(
        "claims",
        _uuid_pk(),
        sa.Column("item_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("original_item_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("claimant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("verification_question", sa.Text(), nullable=True),
        sa.Column("verification_answer_hash", sa.Text(), nullable=True),
        sa.Column("similarity_score", sa.Float(), nullable=True),
        sa.Column("status", claim_status, server_default="pending", nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["claimant_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("item_id", "claimant_id", name="uq_claims_item_claimant"),
    )
    op.create_index("claims_claimant_created_idx", "claims", ["claimant_id", "created_at"])
    op.create_index("claims_deleted_at_idx", "claims", ["deleted_at"])
    op.create_index("claims_original_item_idx", "claims", ["original_item_id"])

    op.create_table(
        "claimed_items",
        _uuid_pk(),
        sa.Column("claim_id", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("original_item_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("kind", item_kind, nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("date_occurred", sa.Date(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("found_mode", found_mode, nullable=True),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("is_anonymous", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("ai_metadata", postgresql.JSONB(), nullable=True),
        sa.Column("item_created_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["claim_id"], ["claims.id"], ondelete="CASCADE"),
    )
    op.create_index("claimed_items_original_item_idx", "claimed_items", ["original_item_id"])

    op.create_table(
        "notifications",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", notification_kind, nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("data", postgresql.JSONB(), nullable=True),
        sa.Column("read", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("notifications_user_read_idx", "notifications", ["user_id", "read"])


def downgrade() -> None:
    """Drop all tables and enums."""
    op.drop_table("notifications")
    op.drop_table("claimed_items")
    op.drop_table("claims")
    op.drop_table("matches")
    op.drop_table("items")
    op.drop_table("users")
    bind = op.get_bind()
    for enum in reversed(_ENUMS):
        enum.drop(bind, checkfirst=True)
