# newsagg/runtime.py
"""
Process-wide wiring of the aggregation core.

Built once in the FastAPI lifespan from an immutable AppConfig and torn down
in order at shutdown: scheduler, in-flight runs, quota flush, HTTP clients,
cache store.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from newsagg.config import AppConfig
from newsagg.services.adaptive_cache import AdaptiveCache
from newsagg.services.api_fetchers import ProviderAdapter, build_adapters
from newsagg.services.article_store import ArticleStore
from newsagg.services.cache_stores import CacheStore, MemoryCacheStore, RedisCacheStore
from newsagg.services.deduper import Deduper
from newsagg.services.feed_service import FeedService
from newsagg.services.orchestrator import AggregationOrchestrator
from newsagg.services.quota_ledger import QuotaLedger, SqlQuotaStore
from newsagg.services.scheduler import AggregationScheduler

logger = logging.getLogger(__name__)


@dataclass
class NewsRuntime:
    config: AppConfig
    ledger: QuotaLedger
    adapters: dict[str, ProviderAdapter]
    deduper: Deduper
    article_store: ArticleStore
    orchestrator: AggregationOrchestrator
    cache_store: CacheStore
    cache: AdaptiveCache
    feed: FeedService
    scheduler: AggregationScheduler | None = None

    @classmethod
    def build(
        cls,
        config: AppConfig,
        session_factory: Callable[[], Session],
        cache_store: CacheStore | None = None,
        adapters: dict[str, ProviderAdapter] | None = None,
    ) -> "NewsRuntime":
        ledger = QuotaLedger(config.registry, config.quota, store=SqlQuotaStore(session_factory))
        adapters = adapters if adapters is not None else build_adapters(config.registry, ledger)
        deduper = Deduper(config.dedup, priority_of=config.registry.priority_of)
        article_store = ArticleStore(session_factory)
        orchestrator = AggregationOrchestrator(
            registry=config.registry,
            ledger=ledger,
            adapters=adapters,
            deduper=deduper,
            store=article_store,
            policy=config.aggregation,
        )

        if cache_store is None:
            if config.redis_url:
                cache_store = RedisCacheStore(config.redis_url)
            else:
                cache_store = MemoryCacheStore(maxsize=config.cache_max_entries)
        cache = AdaptiveCache(
            cache_store,
            config.ttl,
            prefix=config.cache_key_prefix,
            wait_timeout=config.cache_wait_timeout,
        )
        feed = FeedService(orchestrator, cache, article_store)

        scheduler = None
        if config.scheduler_enabled:
            scheduler = AggregationScheduler(
                feed,
                ledger,
                categories=config.refresh_categories,
                refresh_interval_minutes=config.refresh_interval_minutes,
                timezone_name=config.content_timezone,
                target_count=config.aggregation.default_target_count,
            )

        return cls(
            config=config,
            ledger=ledger,
            adapters=adapters,
            deduper=deduper,
            article_store=article_store,
            orchestrator=orchestrator,
            cache_store=cache_store,
            cache=cache,
            feed=feed,
            scheduler=scheduler,
        )

    async def start(self) -> None:
        await self.ledger.load_all()
        enabled = [p.name for p in self.config.registry.by_priority()]
        logger.info(f"Aggregation core ready, providers: {enabled or 'none configured'}")
        if self.scheduler is not None:
            self.scheduler.start()

    async def shutdown(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown()

        grace = self.config.shutdown_grace_seconds
        drained = await self.orchestrator.drain(grace)
        await self.cache.drain(1.0)
        if not drained:
            logger.warning("Shutdown grace period elapsed with aggregation runs still active")

        pending = await self.ledger.flush()
        if pending:
            logger.error(f"{pending} quota counters unsaved at shutdown")

        for adapter in self.adapters.values():
            try:
                await adapter.close()
            except Exception as e:
                logger.warning(f"Error closing {adapter.name} client: {e}")

        try:
            await self.cache_store.close()
        except Exception as e:
            logger.warning(f"Error closing cache store: {e}")
        logger.info("Aggregation core stopped")


def get_runtime(request: Request) -> NewsRuntime:
    """FastAPI dependency returning the runtime built in the lifespan."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return runtime
