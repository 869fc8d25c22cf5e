"""Initial aggregation schema

Revision ID: 001_initial
Revises:
Create Date: 2024-03-01

Creates the canonical article table and the per-provider daily quota
counters.
"""

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial"
down_revision: str | None = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "articles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("fingerprint", sa.String(96), nullable=True),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("body", sa.Text, nullable=True),
        sa.Column("url", sa.Text, nullable=False),
        sa.Column("image_url", sa.Text, nullable=True),
        sa.Column("source_name", sa.String(255), nullable=True),
        sa.Column("source_domain", sa.String(255), nullable=True),
        sa.Column("author", sa.String(255), nullable=True),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("country", sa.String(8), nullable=True),
        sa.Column("tags", sa.JSON, nullable=False),
        sa.Column("is_domestic", sa.Boolean, nullable=False),
        sa.Column("relevance_score", sa.Float, nullable=True),
        sa.Column("sentiment_score", sa.Float, nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("provider", "external_id", name="uq_articles_provider_external_id"),
    )
    op.create_index("ix_articles_fingerprint", "articles", ["fingerprint"])
    op.create_index("ix_articles_category_published", "articles", ["category", "published_at"])

    op.create_table(
        "quota_counters",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("day", sa.String(10), nullable=False),
        sa.Column("used_today", sa.Integer, nullable=False),
        sa.Column("hour_bucket", sa.String(13), nullable=True),
        sa.Column("used_this_hour", sa.Integer, nullable=False),
        sa.Column("last_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("provider", "day", name="uq_quota_counters_provider_day"),
    )


def downgrade() -> None:
    op.drop_table("quota_counters")
    op.drop_index("ix_articles_category_published", table_name="articles")
    op.drop_index("ix_articles_fingerprint", table_name="articles")
    op.drop_table("articles")
