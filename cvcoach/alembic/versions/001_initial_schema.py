"""initial_schema

Revision ID: 001_initial_schema
Revises: 
Create Date: 2026-10-19 09:00:00.000000 UTC

Creates the two CVCoach tables:
  - review_results  (archived ReviewResult, JSONB insights/sections/metrics)
  - user_profiles   (identity -> delivery email)

Conversation sessions live in Redis and have no table.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- review_results table ---
    op.create_table(
        "review_results",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("identity", sa.String(length=64), nullable=False, comment="Normalized sender identity (digits only)"),
        sa.Column("review_type", sa.String(length=16), nullable=False, comment="'basic' or 'advanced'"),
        sa.Column("cv_file_name", sa.String(length=255), nullable=False),
        sa.Column("improvement_score", sa.Integer(), nullable=False),
        sa.Column("insights", postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment="Ordered insight strings"),
        sa.Column("detected_sections", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("metrics", postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment="CvMetrics serialized as JSONB"),
        sa.Column("provider", sa.String(length=16), nullable=False, comment="'local' or 'mistral'"),
        sa.Column("report_ref", sa.String(length=512), nullable=True),
        sa.Column("email_sent", sa.Boolean(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=False, comment="ReviewResult.timestamp"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_review_results_identity"), "review_results", ["identity"], unique=False)
    op.create_index(op.f("ix_review_results_created_at"), "review_results", ["created_at"], unique=False)

    # --- user_profiles table ---
    op.create_table(
        "user_profiles",
        sa.Column("identity", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("identity"),
    )


def downgrade() -> None:
    op.drop_table("user_profiles")
    op.drop_index(op.f("ix_review_results_created_at"), table_name="review_results")
    op.drop_index(op.f("ix_review_results_identity"), table_name="review_results")
    op.drop_table("review_results")
