"""Create raw_signals table.

Revision ID: 001_create_raw_signals
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

revision: str = "001_create_raw_signals"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "raw_signals",
        sa.Column(
            "id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("natural_id", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("body", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("url", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("author", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("author_kind", sa.Text(), nullable=False, server_default=sa.text("'human'")),
        sa.Column("weight", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tags", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column(
            "observed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("source", "natural_id", name="uq_raw_signals_source_natural_id"),
        sa.CheckConstraint("author_kind IN ('human','agent')", name="ck_raw_signal_author_kind"),
        sa.CheckConstraint("weight >= 0", name="ck_raw_signal_weight"),
    )
    op.create_index("idx_raw_signals_source", "raw_signals", ["source"])
    op.create_index("idx_raw_signals_observed_at", "raw_signals", ["observed_at"])


def downgrade() -> None:
    op.drop_index("idx_raw_signals_observed_at", table_name="raw_signals")
    op.drop_index("idx_raw_signals_source", table_name="raw_signals")
    op.drop_table("raw_signals")
