"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

All 3 tables as defined in casebook/models/database_models.py:
drafts, case_studies, review_comments.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── drafts ────────────────────────────────────────────────────────────
    op.create_table(
        "drafts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, index=True),
        sa.Column("row_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── case_studies ──────────────────────────────────────────────────────
    op.create_table(
        "case_studies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("folder_name", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("status", sa.String(32), nullable=False, index=True),
        sa.Column("version", sa.String(16), nullable=False),
        sa.Column("original_draft_id", sa.String(36), nullable=True, index=True),
        sa.Column("row_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── review_comments ───────────────────────────────────────────────────
    op.create_table(
        "review_comments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("target_id", sa.String(255), nullable=False, index=True),
        sa.Column("comment", sa.Text, nullable=False),
        sa.Column("author", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("review_comments")
    op.drop_table("case_studies")
    op.drop_table("drafts")
