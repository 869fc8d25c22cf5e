# newsagg/services/article_store.py
"""
Durable article store.

Upserts by (provider, external_id). A later sighting only overwrites fields
it makes richer: empty fields get filled, body and description are replaced
by longer text. Rows are never deleted here.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timezone

from sqlalchemy import func, or_
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from newsagg import models
from newsagg.schemas.article import CanonicalArticle
from newsagg.services.resilience import with_sync_retry

logger = logging.getLogger(__name__)

# Filled only when currently empty
_FILL_FIELDS = ("image_url", "source_name", "source_domain", "author", "country", "relevance_score", "sentiment_score")
# Replaced when the incoming text is longer
_LONGER_FIELDS = ("body", "description")


@dataclass
class UpsertResult:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0


class ArticleStore:
    """SQLAlchemy-backed canonical article repository."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    @with_sync_retry(max_attempts=3, retry_exceptions=(OperationalError,))
    def upsert_many(self, articles: list[CanonicalArticle]) -> UpsertResult:
        result = UpsertResult()
        if not articles:
            return result

        with self._session_factory() as db:
            added: dict[tuple[str, str], models.Article] = {}
            for article in articles:
                row = added.get(article.key) or (
                    db.query(models.Article)
                    .filter(
                        models.Article.provider == article.provider,
                        models.Article.external_id == article.external_id,
                    )
                    .first()
                )
                if row is None:
                    row = self._to_row(article)
                    db.add(row)
                    added[article.key] = row
                    result.inserted += 1
                    continue

                if self._merge(row, article):
                    result.updated += 1
                else:
                    result.unchanged += 1
            db.commit()

        logger.info(
            f"Article upsert: {result.inserted} inserted, {result.updated} updated, {result.unchanged} unchanged",
            extra={"event": "article_upsert", "items_processed": len(articles)},
        )
        return result

    @staticmethod
    def _to_row(article: CanonicalArticle) -> models.Article:
        return models.Article(
            provider=article.provider,
            external_id=article.external_id,
            fingerprint=article.fingerprint,
            title=article.title,
            description=article.description,
            body=article.body,
            url=article.url,
            image_url=article.image_url,
            source_name=article.source_name,
            source_domain=article.source_domain,
            author=article.author,
            category=article.category,
            country=article.country,
            tags=list(article.tags),
            is_domestic=article.is_domestic,
            relevance_score=article.relevance_score,
            sentiment_score=article.sentiment_score,
            published_at=article.published_at,
            fetched_at=article.fetched_at,
        )

    @staticmethod
    def _merge(row: models.Article, article: CanonicalArticle) -> bool:
        """Apply richer fields from article onto row. Returns True if content changed."""
        changed = False
        for name in _FILL_FIELDS:
            incoming = getattr(article, name)
            if incoming not in (None, "") and getattr(row, name) in (None, ""):
                setattr(row, name, incoming)
                changed = True
        for name in _LONGER_FIELDS:
            incoming = getattr(article, name) or ""
            if len(incoming) > len(getattr(row, name) or ""):
                setattr(row, name, incoming)
                changed = True
        if article.tags and set(article.tags) - set(row.tags or []):
            row.tags = sorted(set(row.tags or []) | set(article.tags))
            changed = True

        # Bookkeeping, not content
        row.fingerprint = article.fingerprint or row.fingerprint
        row.is_domestic = article.is_domestic
        row.fetched_at = article.fetched_at
        return changed

    def search(
        self,
        category: str | None = None,
        query: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[CanonicalArticle]:
        """Persisted articles, newest first."""
        with self._session_factory() as db:
            q = db.query(models.Article)
            if category:
                q = q.filter(models.Article.category == category)
            if query:
                pattern = f"%{query.strip().lower()}%"
                q = q.filter(
                    or_(
                        func.lower(models.Article.title).like(pattern),
                        func.lower(models.Article.description).like(pattern),
                    )
                )
            rows = (
                q.order_by(models.Article.published_at.desc(), models.Article.id)
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [self._from_row(row) for row in rows]

    @staticmethod
    def _from_row(row: models.Article) -> CanonicalArticle:
        return CanonicalArticle(
            provider=row.provider,
            external_id=row.external_id,
            title=row.title,
            url=row.url,
            description=row.description,
            body=row.body,
            image_url=row.image_url,
            source_name=row.source_name,
            source_domain=row.source_domain,
            author=row.author,
            category=row.category,
            country=row.country,
            published_at=_aware(row.published_at),
            fetched_at=_aware(row.fetched_at),
            is_domestic=row.is_domestic,
            relevance_score=row.relevance_score,
            sentiment_score=row.sentiment_score,
            tags=list(row.tags or []),
            fingerprint=row.fingerprint,
        )

    def stats(self) -> dict:
        with self._session_factory() as db:
            by_provider = dict(
                db.query(models.Article.provider, func.count(models.Article.id))
                .group_by(models.Article.provider)
                .all()
            )
            domestic = db.query(func.count(models.Article.id)).filter(models.Article.is_domestic.is_(True)).scalar()
            total = db.query(func.count(models.Article.id)).scalar()
        return {
            "total": total or 0,
            "domestic": domestic or 0,
            "global": (total or 0) - (domestic or 0),
            "by_provider": by_provider,
        }

    def ping(self) -> bool:
        try:
            with self._session_factory() as db:
                db.query(func.count(models.Article.id)).scalar()
            return True
        except Exception as e:
            logger.warning(f"Article store ping failed: {e}")
            return False


def _aware(value):
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
