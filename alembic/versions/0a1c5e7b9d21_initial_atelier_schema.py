"""Initial Atelier schema

Revision ID: 0a1c5e7b9d21
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a1c5e7b9d21"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

STRIKE_REASONS = (
    "BlockedContent", "RealisticMinorContent", "CSAMContent", "TOSViolation",
    "Harassment", "ProhibitedContent", "ManualModAction",
)
STRIKE_STATUSES = ("Active", "Expired", "Voided")
INGESTION_STATUSES = ("Pending", "Scanned", "Blocked", "Error")
AVAILABILITIES = ("Public", "Unsearchable", "Private")
ARTICLE_STATUSES = ("Draft", "Published", "Unpublished")
CRUCIBLE_STATUSES = ("Pending", "Active", "Completed", "Cancelled")


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def upgrade() -> None:
    """Create users, moderation, articles, crucible and ledger tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(100)),
        sa.Column("email", sa.String(255)),
        sa.Column("image", sa.String(255)),
        sa.Column("muted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("mute_expires_at", sa.DateTime(timezone=True)),
        sa.Column("meta", postgresql.JSONB()),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
        _created_at(),
    )
    op.create_index("ix_users_username", "users", ["username"])
    op.create_index("ix_users_muted_expiry", "users", ["muted", "mute_expires_at"])

    op.create_table(
        "user_strikes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reason", sa.Enum(*STRIKE_REASONS, name="strike_reason"), nullable=False),
        sa.Column("status", sa.Enum(*STRIKE_STATUSES, name="strike_status"), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("internal_notes", sa.Text()),
        sa.Column("entity_type", sa.String(50)),
        sa.Column("entity_id", sa.Integer()),
        sa.Column("report_id", sa.Integer()),
        _created_at(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("voided_at", sa.DateTime(timezone=True)),
        sa.Column("voided_by", sa.Integer()),
        sa.Column("void_reason", sa.Text()),
        sa.Column("issued_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
    )
    op.create_index("ix_user_strikes_user_status", "user_strikes", ["user_id", "status"])
    op.create_index("ix_user_strikes_status_expiry", "user_strikes", ["status", "expires_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("key", sa.String(255), nullable=False, unique=True),
        sa.Column("details", postgresql.JSONB()),
        _created_at(),
        sa.Column("viewed_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", "created_at"])

    op.create_table(
        "key_values",
        sa.Column("key", sa.String(200), primary_key=True),
        sa.Column("value", postgresql.JSONB()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "images",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("url", sa.String(255), nullable=False),
        sa.Column("width", sa.Integer()),
        sa.Column("height", sa.Integer()),
        sa.Column("hash", sa.String(100)),
        sa.Column("nsfw_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ingestion", sa.Enum(*INGESTION_STATUSES, name="image_ingestion_status"), nullable=False),
        sa.Column("needs_review", sa.String(50)),
        sa.Column("scanned_at", sa.DateTime(timezone=True)),
        _created_at(),
    )

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
    )

    op.create_table(
        "articles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("cover_id", sa.Integer(), sa.ForeignKey("images.id", ondelete="SET NULL")),
        sa.Column("nsfw_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("availability", sa.Enum(*AVAILABILITIES, name="availability"), nullable=False),
        sa.Column("status", sa.Enum(*ARTICLE_STATUSES, name="article_status"), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True)),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_articles_updated_at", "articles", ["updated_at"])

    op.create_table(
        "tags_on_articles",
        sa.Column("article_id", sa.Integer(), sa.ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "article_stats",
        sa.Column("article_id", sa.Integer(), sa.ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("comment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reaction_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("collected_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tipped_amount", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "crucibles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.Enum(*CRUCIBLE_STATUSES, name="crucible_status"), nullable=False),
        sa.Column("entry_fee", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("prize_positions", postgresql.JSONB()),
        sa.Column("start_at", sa.DateTime(timezone=True)),
        sa.Column("end_at", sa.DateTime(timezone=True)),
        _created_at(),
    )
    op.create_index("ix_crucibles_status_end", "crucibles", ["status", "end_at"])

    op.create_table(
        "crucible_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("crucible_id", sa.Integer(), sa.ForeignKey("crucibles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("image_id", sa.Integer(), sa.ForeignKey("images.id", ondelete="CASCADE"), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False, server_default="1500"),
        sa.Column("vote_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("position", sa.Integer()),
        _created_at(),
        sa.UniqueConstraint("crucible_id", "image_id", name="uq_crucible_entries_image"),
    )
    op.create_index("ix_crucible_entries_crucible", "crucible_entries", ["crucible_id"])

    op.create_table(
        "buzz_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("from_account_id", sa.Integer(), nullable=False),
        sa.Column("to_account_id", sa.Integer(), nullable=False),
        sa.Column("account_type", sa.String(20), nullable=False, server_default="yellow"),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("details", postgresql.JSONB()),
        sa.Column("external_transaction_id", sa.String(200), nullable=False, unique=True),
        _created_at(),
    )


def downgrade() -> None:
    """Drop every Atelier table and enum type."""
    for table in (
        "buzz_transactions",
        "crucible_entries",
        "crucibles",
        "article_stats",
        "tags_on_articles",
        "articles",
        "tags",
        "images",
        "key_values",
        "notifications",
        "user_strikes",
        "users",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_name in (
        "crucible_status",
        "article_status",
        "availability",
        "image_ingestion_status",
        "strike_status",
        "strike_reason",
    ):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
