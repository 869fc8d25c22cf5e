# newsagg/services/__init__.py
"""
Aggregation core services.
"""

from newsagg.services.adaptive_cache import AdaptiveCache, CacheSignature
from newsagg.services.article_store import ArticleStore
from newsagg.services.classifier import DomesticClassifier
from newsagg.services.deduper import Deduper
from newsagg.services.feed_service import FeedService
from newsagg.services.orchestrator import AggregateRequest, AggregationOrchestrator
from newsagg.services.quota_ledger import QuotaLedger
from newsagg.services.scheduler import AggregationScheduler
from newsagg.services.source_registry import SourceRegistry
from newsagg.services.ttl_policy import TTLPolicy

__all__ = [
    "AdaptiveCache",
    "AggregateRequest",
    "AggregationOrchestrator",
    "AggregationScheduler",
    "ArticleStore",
    "CacheSignature",
    "Deduper",
    "DomesticClassifier",
    "FeedService",
    "QuotaLedger",
    "SourceRegistry",
    "TTLPolicy",
]
