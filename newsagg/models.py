# newsagg/models.py
"""
Database models for the aggregation core.

Tables:
- Article: canonical articles, unique by (provider, external_id)
- QuotaCounter: per-provider usage for one quota day
"""

from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from newsagg.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Article
# -----------------------------------------------------------------------------

class Article(Base):
    """Canonical article. Updated in place when a later fetch is richer, never deleted here."""
    __tablename__ = "articles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider = Column(String(32), nullable=False)
    external_id = Column(String(255), nullable=False)
    fingerprint = Column(String(96), nullable=True, index=True)

    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    body = Column(Text, nullable=True)
    url = Column(Text, nullable=False)
    image_url = Column(Text, nullable=True)
    source_name = Column(String(255), nullable=True)
    source_domain = Column(String(255), nullable=True)
    author = Column(String(255), nullable=True)
    category = Column(String(32), nullable=False, default="general")
    country = Column(String(8), nullable=True)
    tags = Column(JSON, nullable=False, default=list)

    is_domestic = Column(Boolean, default=False, nullable=False)
    relevance_score = Column(Float, nullable=True)
    sentiment_score = Column(Float, nullable=True)

    published_at = Column(DateTime(timezone=True), nullable=False)
    fetched_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("provider", "external_id", name="uq_articles_provider_external_id"),
        Index("ix_articles_category_published", "category", "published_at"),
    )


# -----------------------------------------------------------------------------
# Quota
# -----------------------------------------------------------------------------

class QuotaCounter(Base):
    """Committed usage for one provider on one quota day."""
    __tablename__ = "quota_counters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(32), nullable=False)
    day = Column(String(10), nullable=False)  # YYYY-MM-DD in the provider's reset calendar
    used_today = Column(Integer, nullable=False, default=0)
    hour_bucket = Column(String(13), nullable=True)  # YYYY-MM-DDTHH
    used_this_hour = Column(Integer, nullable=False, default=0)
    last_reset_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("provider", "day", name="uq_quota_counters_provider_day"),
    )
