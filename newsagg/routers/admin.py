# newsagg/routers/admin.py
"""
Admin endpoints.

POST /v1/admin/refresh     - Force aggregation for a category, bypassing the cache
POST /v1/admin/cache/clear - Invalidate one cached page or the whole cache
GET  /v1/admin/quota       - Per-provider quota usage and thresholds
GET  /v1/admin/quota/{p}   - Quota usage for one provider
GET  /v1/admin/stats       - Cache, dedup, quota and article-store statistics
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from newsagg.auth import require_admin_key
from newsagg.runtime import NewsRuntime, get_runtime
from newsagg.schemas.admin import (
    CacheClearRequest,
    CacheClearResponse,
    ProviderQuota,
    QuotaUsageResponse,
    RefreshRequest,
    RefreshResponse,
    StatsResponse,
)
from newsagg.schemas.article import BatchStatus, RequestClass
from newsagg.services.adaptive_cache import CacheSignature
from newsagg.services.quota_ledger import QuotaUsage

admin_logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"], dependencies=[Depends(require_admin_key)])


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    request: RefreshRequest,
    runtime: NewsRuntime = Depends(get_runtime),
) -> RefreshResponse:
    """Run aggregation now. Returns 503 with provenance if every provider was exhausted."""
    batch = await runtime.feed.refresh(
        request.category,
        query=request.query,
        target_count=request.target_count,
        request_class=RequestClass.MANUAL,
    )
    response = RefreshResponse(
        status=batch.status.value,
        category=batch.category,
        query=batch.query,
        articles=len(batch.articles),
        domestic_count=batch.domestic_count,
        global_count=batch.global_count,
        duplicates_removed=batch.duplicates_removed,
        ambiguous_pairs=batch.ambiguous_pairs,
        providers=batch.provenance,
        store_error=batch.store_error,
        generated_at=batch.generated_at,
    )
    if batch.status == BatchStatus.EXHAUSTED:
        admin_logger.warning(f"Manual refresh of {request.category} exhausted all providers")
        raise HTTPException(status_code=503, detail=response.model_dump(mode="json"))
    return response


@router.post("/cache/clear", response_model=CacheClearResponse)
async def clear_cache(
    request: CacheClearRequest | None = None,
    runtime: NewsRuntime = Depends(get_runtime),
) -> CacheClearResponse:
    if request is None or request.category is None:
        removed = await runtime.cache.invalidate()
        return CacheClearResponse(status="ok", scope="all", removed=removed)

    signature = CacheSignature(
        category=request.category.lower(),
        query=request.query,
        page=request.page,
        limit=request.limit,
    )
    removed = await runtime.cache.invalidate(signature)
    return CacheClearResponse(status="ok", scope=signature.key(runtime.cache.prefix), removed=removed)


def _provider_quota(runtime: NewsRuntime, usage: QuotaUsage) -> ProviderQuota:
    config = runtime.config.registry.get(usage.provider)
    adapter = runtime.adapters.get(usage.provider)
    degraded = bool(adapter and adapter.is_degraded)
    return ProviderQuota(
        provider=usage.provider,
        priority=config.priority,
        enabled=config.enabled,
        degraded=degraded,
        degraded_reason=adapter.breaker.last_reason if degraded else None,
        day=usage.day,
        used_today=usage.used_today,
        daily_cap=usage.daily_cap,
        used_this_hour=usage.used_this_hour,
        hourly_cap=usage.hourly_cap,
        reserved=usage.reserved,
        usage_ratio=usage.usage_ratio,
        status=usage.status.value,
        approved=usage.approved,
        rejected=usage.rejected,
        last_reset_at=usage.last_reset_at,
    )


@router.get("/quota", response_model=QuotaUsageResponse)
def quota_usage(runtime: NewsRuntime = Depends(get_runtime)) -> QuotaUsageResponse:
    return QuotaUsageResponse(
        warning_threshold=runtime.ledger.policy.warning_threshold,
        critical_threshold=runtime.ledger.policy.critical_threshold,
        providers=[_provider_quota(runtime, usage) for usage in runtime.ledger.usage()],
    )


@router.get("/quota/{provider}", response_model=ProviderQuota)
def provider_quota(provider: str, runtime: NewsRuntime = Depends(get_runtime)) -> ProviderQuota:
    for usage in runtime.ledger.usage():
        if usage.provider == provider:
            return _provider_quota(runtime, usage)
    raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")


@router.get("/stats", response_model=StatsResponse)
def stats(runtime: NewsRuntime = Depends(get_runtime)) -> StatsResponse:
    return StatsResponse(
        cache=runtime.cache.stats(),
        dedup=runtime.deduper.stats(),
        quota=runtime.ledger.stats(),
        articles=runtime.article_store.stats(),
        scheduler=runtime.scheduler.get_status() if runtime.scheduler else None,
    )
