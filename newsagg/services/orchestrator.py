# newsagg/services/orchestrator.py
"""
Aggregation orchestrator.

Walks providers in priority order, in waves of at most `fan_out` concurrent
calls, until enough distinct articles are collected:

- Skip: degraded providers, providers at the critical quota threshold, and
  (for background work) providers at the warning threshold
- Call: each adapter reserves quota per attempt; denials and failures are
  recorded in provenance and never abort the run
- Merge: classify domestic/global, dedupe, upsert into the article store
- Result: OK / EMPTY (providers answered, nothing matched) / EXHAUSTED
  (no provider produced a successful response)
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass

from newsagg.logging_config import log_stage, trace_id_var
from newsagg.schemas.article import (
    ArticleBatch,
    BatchStatus,
    CanonicalArticle,
    ProviderOutcome,
    RequestClass,
)
from newsagg.services.api_fetchers.base import FetchParams, ProviderAdapter
from newsagg.services.article_store import ArticleStore
from newsagg.services.classifier import ContentSplit, DomesticClassifier
from newsagg.services.deduper import Deduper
from newsagg.services.errors import ProviderPermanent, ProviderTransient, QuotaDenied
from newsagg.services.quota_ledger import QuotaLedger
from newsagg.services.source_registry import ProviderConfig, SourceRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationPolicy:
    fan_out: int = 2
    default_target_count: int = 30


@dataclass(frozen=True)
class AggregateRequest:
    category: str = "general"
    query: str | None = None
    target_count: int = 30
    request_class: RequestClass = RequestClass.FOREGROUND


class AggregationOrchestrator:
    """Budgeted fan-out across rate-limited providers."""

    def __init__(
        self,
        registry: SourceRegistry,
        ledger: QuotaLedger,
        adapters: dict[str, ProviderAdapter],
        deduper: Deduper,
        store: ArticleStore | None = None,
        classifier: DomesticClassifier | None = None,
        policy: AggregationPolicy | None = None,
    ):
        self.registry = registry
        self.ledger = ledger
        self.adapters = adapters
        self.deduper = deduper
        self.store = store
        self.classifier = classifier or DomesticClassifier()
        self.policy = policy or AggregationPolicy()
        self.split = ContentSplit()
        self._semaphore = asyncio.Semaphore(self.policy.fan_out)
        self._runs: set[asyncio.Task] = set()
        self._closing = False

    # -- eligibility ---------------------------------------------------------

    def _skip_reason(self, provider: ProviderConfig, request_class: RequestClass) -> ProviderOutcome | None:
        adapter = self.adapters.get(provider.name)
        if adapter is None:
            return ProviderOutcome(status="disabled", detail="no adapter")
        if adapter.is_degraded:
            return ProviderOutcome(
                status="degraded",
                detail=f"cooling down {adapter.breaker.remaining_cooldown():.0f}s: {adapter.breaker.last_reason}",
            )
        ratio = self.ledger.usage_ratio(provider.name)
        if ratio >= self.ledger.policy.critical_threshold:
            return ProviderOutcome(status="critical", detail=f"usage {ratio:.0%}")
        if request_class == RequestClass.BACKGROUND and ratio >= self.ledger.policy.warning_threshold:
            return ProviderOutcome(status="warning", detail=f"usage {ratio:.0%}, reserved for on-demand requests")
        return None

    # -- run -----------------------------------------------------------------

    async def aggregate(self, request: AggregateRequest) -> ArticleBatch:
        """Aggregate a content slice. Tracked so shutdown can drain it."""
        if self._closing:
            raise RuntimeError("Orchestrator is shutting down")
        task = asyncio.create_task(self._aggregate(request))
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return await asyncio.shield(task)

    async def _aggregate(self, request: AggregateRequest) -> ArticleBatch:
        trace_id_var.set(uuid.uuid4().hex[:16])
        start_time = time.time()
        provenance: dict[str, ProviderOutcome] = {}
        working: list[CanonicalArticle] = []
        survivors: list[CanonicalArticle] = []
        removed = 0
        ambiguous = 0
        any_success = False

        eligible: list[ProviderConfig] = []
        for provider in self.registry.by_priority(include_disabled=True):
            if not provider.enabled:
                provenance[provider.name] = ProviderOutcome(status="disabled", detail="no API key")
                continue
            skip = self._skip_reason(provider, request.request_class)
            if skip is not None:
                provenance[provider.name] = skip
                logger.info(
                    f"Skipping {provider.name}: {skip.status} ({skip.detail})",
                    extra={"event": "provider_skipped", "provider": provider.name},
                )
                continue
            eligible.append(provider)

        with log_stage("aggregate"):
            for wave_start in range(0, len(eligible), self.policy.fan_out):
                wave = eligible[wave_start:wave_start + self.policy.fan_out]
                outcomes = await asyncio.gather(*(self._call(provider, request) for provider in wave))

                for provider, (outcome, articles) in zip(wave, outcomes):
                    provenance[provider.name] = outcome
                    if outcome.status in ("ok", "empty"):
                        any_success = True
                        self.classifier.apply(articles)
                        self.split.record(articles)
                        working.extend(articles)

                report = self.deduper.dedupe_with_report(working)
                survivors = report.articles
                removed = len(working) - len(survivors)
                ambiguous = len(report.ambiguous)
                if len(survivors) >= request.target_count:
                    break

        if not any_success:
            status = BatchStatus.EXHAUSTED
        elif survivors:
            status = BatchStatus.OK
        else:
            status = BatchStatus.EMPTY

        survivors.sort(key=lambda a: (a.published_at, a.provider, a.external_id), reverse=True)

        store_error = None
        if survivors and self.store is not None:
            try:
                # Blocking SQLAlchemy write, run off the event loop
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, lambda: self.store.upsert_many(survivors))
            except Exception as e:
                store_error = str(e)
                logger.error(f"Article upsert failed: {e}", exc_info=True)

        batch = ArticleBatch(
            status=status,
            category=request.category,
            query=request.query,
            articles=survivors,
            provenance=provenance,
            domestic_count=sum(1 for a in survivors if a.is_domestic),
            global_count=sum(1 for a in survivors if not a.is_domestic),
            duplicates_removed=removed,
            ambiguous_pairs=ambiguous,
            store_error=store_error,
        )

        logger.info(
            f"Aggregated {request.category}: {status.value}, {len(survivors)} articles "
            f"from {batch.contributing_providers or 'no providers'}",
            extra={
                "event": "aggregate_complete",
                "category": request.category,
                "items_processed": len(survivors),
                "duration_ms": int((time.time() - start_time) * 1000),
            },
        )
        return batch

    async def _call(
        self,
        provider: ProviderConfig,
        request: AggregateRequest,
    ) -> tuple[ProviderOutcome, list[CanonicalArticle]]:
        """Call one provider; every failure becomes a provenance entry."""
        adapter = self.adapters[provider.name]
        scope = self.split.preferred_scope(provider.domestic_share)
        params = FetchParams(
            category=request.category,
            query=request.query,
            scope=scope,
            page_size=max(1, min(request.target_count, 50)),
        )

        async with self._semaphore:
            try:
                articles = await adapter.fetch(params=params)
            except QuotaDenied as e:
                return ProviderOutcome(status="denied", detail=e.reason, scope=scope), []
            except ProviderPermanent as e:
                logger.error(
                    f"{provider.name} rejected the request, check configuration: {e}",
                    extra={"event": "provider_permanent", "provider": provider.name},
                )
                return ProviderOutcome(status="permanent", detail=str(e), scope=scope), []
            except ProviderTransient as e:
                return ProviderOutcome(status="transient", detail=str(e), scope=scope), []
            except Exception as e:
                logger.error(f"Unexpected failure calling {provider.name}: {e}", exc_info=True)
                return ProviderOutcome(status="error", detail=str(e), scope=scope), []

        status = "ok" if articles else "empty"
        return ProviderOutcome(status=status, articles=len(articles), scope=scope), articles

    # -- lifecycle -----------------------------------------------------------

    @property
    def in_flight(self) -> int:
        return len(self._runs)

    async def drain(self, timeout: float) -> bool:
        """Stop accepting runs and wait for in-flight ones. True if all finished."""
        self._closing = True
        if not self._runs:
            return True
        logger.info(f"Waiting up to {timeout:.0f}s for {len(self._runs)} aggregation runs")
        done, pending = await asyncio.wait(list(self._runs), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending, timeout=1.0)
            logger.warning(f"Cancelled {len(pending)} aggregation runs at shutdown")
        return not pending
