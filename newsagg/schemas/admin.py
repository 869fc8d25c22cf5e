# newsagg/schemas/admin.py
"""
Schemas for admin endpoints.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from newsagg.schemas.article import ProviderOutcome

# -----------------------------------------------------------------------------
# Refresh
# -----------------------------------------------------------------------------


class RefreshRequest(BaseModel):
    """Force an aggregation run, bypassing the cache."""

    category: str = Field("general", min_length=1, max_length=32, description="Content category")
    query: str | None = Field(None, max_length=200, description="Optional free-text query")
    target_count: int = Field(30, ge=1, le=200, description="Stop once this many distinct articles are collected")


class RefreshResponse(BaseModel):
    status: str = Field(..., description="ok|empty|exhausted")
    category: str
    query: str | None = None
    articles: int
    domestic_count: int
    global_count: int
    duplicates_removed: int
    ambiguous_pairs: int
    providers: dict[str, ProviderOutcome] = Field(default_factory=dict)
    store_error: str | None = None
    generated_at: datetime


# -----------------------------------------------------------------------------
# Cache
# -----------------------------------------------------------------------------


class CacheClearRequest(BaseModel):
    """Clear one cached feed page, or everything when `category` is omitted."""

    category: str | None = Field(None, description="Category of the entry to clear (omit to clear all)")
    query: str | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)


class CacheClearResponse(BaseModel):
    status: str
    scope: str = Field(..., description="all|<cache key>")
    removed: int


# -----------------------------------------------------------------------------
# Quota
# -----------------------------------------------------------------------------


class ProviderQuota(BaseModel):
    provider: str
    priority: int
    enabled: bool
    degraded: bool
    degraded_reason: str | None = None
    day: str
    used_today: int
    daily_cap: int
    used_this_hour: int
    hourly_cap: int | None = None
    reserved: int
    usage_ratio: float
    status: str = Field(..., description="ok|warning|critical")
    approved: int
    rejected: int
    last_reset_at: datetime | None = None


class QuotaUsageResponse(BaseModel):
    warning_threshold: float
    critical_threshold: float
    providers: list[ProviderQuota] = Field(default_factory=list)


class StatsResponse(BaseModel):
    cache: dict
    dedup: dict
    quota: dict
    articles: dict
    scheduler: dict | None = None
