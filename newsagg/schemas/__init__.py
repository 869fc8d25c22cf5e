"""
Pydantic schemas for API request/response validation.
"""

from newsagg.schemas.admin import (
    CacheClearRequest,
    CacheClearResponse,
    ProviderQuota,
    QuotaUsageResponse,
    RefreshRequest,
    RefreshResponse,
    StatsResponse,
)
from newsagg.schemas.article import (
    ArticleBatch,
    BatchStatus,
    CanonicalArticle,
    ProviderOutcome,
    RequestClass,
)
from newsagg.schemas.feed import FeedArticle, FeedResponse

__all__ = [
    "ArticleBatch",
    "BatchStatus",
    "CacheClearRequest",
    "CacheClearResponse",
    "CanonicalArticle",
    "FeedArticle",
    "FeedResponse",
    "ProviderOutcome",
    "ProviderQuota",
    "QuotaUsageResponse",
    "RefreshRequest",
    "RefreshResponse",
    "RequestClass",
    "StatsResponse",
]
