# newsagg/services/feed_service.py
"""
Feed service shared by HTTP routes and scheduled jobs.

Foreground reads go through the adaptive cache; admin and background
refreshes bypass it and write the fresh page back. Both paths call the same
orchestrator, so there is a single aggregation code path.
"""

import asyncio
import logging
from dataclasses import dataclass

from newsagg.schemas.article import ArticleBatch, BatchStatus, CanonicalArticle, RequestClass
from newsagg.services.adaptive_cache import AdaptiveCache, CacheSignature
from newsagg.services.article_store import ArticleStore
from newsagg.services.errors import CacheWaitTimeout, ExhaustedError
from newsagg.services.orchestrator import AggregateRequest, AggregationOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class FeedPage:
    articles: list[CanonicalArticle]
    status: BatchStatus
    source: str  # live | cache | store
    category: str
    query: str | None
    page: int
    limit: int
    providers: list[str]


class FeedService:
    def __init__(
        self,
        orchestrator: AggregationOrchestrator,
        cache: AdaptiveCache,
        store: ArticleStore | None = None,
    ):
        self.orchestrator = orchestrator
        self.cache = cache
        self.store = store

    async def get_feed(
        self,
        category: str,
        query: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> FeedPage:
        """
        Serve a feed page from cache, live aggregation, or the article store.

        Raises:
            ExhaustedError: live aggregation was starved and nothing is persisted
        """
        category = category.lower()
        signature = CacheSignature(category=category, query=query, page=page, limit=limit)

        async def compute() -> ArticleBatch:
            batch = await self.orchestrator.aggregate(
                AggregateRequest(
                    category=category,
                    query=query,
                    target_count=page * limit,
                    request_class=RequestClass.FOREGROUND,
                )
            )
            if batch.status == BatchStatus.EXHAUSTED:
                raise ExhaustedError(batch)
            return _page_of(batch, page, limit)

        try:
            result = await self.cache.lookup_or_compute(signature, compute)
        except (ExhaustedError, CacheWaitTimeout) as e:
            logger.warning(
                f"Live feed unavailable for {signature.key(self.cache.prefix)}, falling back to store: {e}",
                extra={"event": "feed_fallback", "category": category},
            )
            persisted = await self._from_store(category, query, page, limit)
            if persisted:
                return FeedPage(
                    articles=persisted,
                    status=BatchStatus.OK,
                    source="store",
                    category=category,
                    query=query,
                    page=page,
                    limit=limit,
                    providers=sorted({a.provider for a in persisted}),
                )
            if isinstance(e, ExhaustedError):
                raise
            raise ExhaustedError(
                ArticleBatch(status=BatchStatus.EXHAUSTED, category=category, query=query)
            ) from e

        batch = result.batch
        return FeedPage(
            articles=batch.articles,
            status=batch.status,
            source="cache" if result.hit else "live",
            category=category,
            query=query,
            page=page,
            limit=limit,
            providers=batch.contributing_providers,
        )

    async def _from_store(self, category: str, query: str | None, page: int, limit: int) -> list[CanonicalArticle]:
        if self.store is None:
            return []
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None,
                lambda: self.store.search(category=category, query=query, limit=limit, offset=(page - 1) * limit),
            )
        except Exception as e:
            logger.error(f"Article store read failed: {e}", exc_info=True)
            return []

    async def refresh(
        self,
        category: str,
        query: str | None = None,
        target_count: int = 30,
        request_class: RequestClass = RequestClass.MANUAL,
        limit: int = 20,
    ) -> ArticleBatch:
        """Aggregate bypassing the cache, then write page 1 back into it."""
        category = category.lower()
        batch = await self.orchestrator.aggregate(
            AggregateRequest(
                category=category,
                query=query,
                target_count=target_count,
                request_class=request_class,
            )
        )
        if batch.status != BatchStatus.EXHAUSTED:
            signature = CacheSignature(category=category, query=query, page=1, limit=limit)
            await self.cache.put(signature, _page_of(batch, 1, limit))
        return batch


def _page_of(batch: ArticleBatch, page: int, limit: int) -> ArticleBatch:
    start = (page - 1) * limit
    articles = batch.articles[start:start + limit]
    status = batch.status if articles else BatchStatus.EMPTY
    return batch.model_copy(update={"articles": articles, "status": status})
