"""Crucible entry rules and entry fee transaction ids

Revision ID: 4e7d2b9c1a83
Revises: 0a1c5e7b9d21
Create Date: 2026-10-20 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "4e7d2b9c1a83"
down_revision = "0a1c5e7b9d21"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("crucibles", sa.Column("description", sa.Text(), nullable=True))
    # Bitmask of allowed image NSFW levels
    op.add_column(
        "crucibles",
        sa.Column("nsfw_level", sa.Integer(), nullable=False, server_default="1"),
    )
    op.add_column(
        "crucibles",
        sa.Column("entry_limit", sa.Integer(), nullable=False, server_default="1"),
    )
    op.add_column("crucibles", sa.Column("max_total_entries", sa.Integer(), nullable=True))
    op.add_column(
        "crucible_entries",
        sa.Column("buzz_transaction_id", sa.String(200), nullable=True),
    )
    op.create_index(
        "ix_crucible_entries_crucible_user", "crucible_entries", ["crucible_id", "user_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_crucible_entries_crucible_user", table_name="crucible_entries")
    op.drop_column("crucible_entries", "buzz_transaction_id")
    op.drop_column("crucibles", "max_total_entries")
    op.drop_column("crucibles", "entry_limit")
    op.drop_column("crucibles", "nsfw_level")
    op.drop_column("crucibles", "description")
