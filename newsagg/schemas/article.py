# newsagg/schemas/article.py
"""
Canonical article record and aggregation batch.

Provider adapters normalize into CanonicalArticle; the orchestrator returns
an ArticleBatch which is also the unit stored in the feed cache.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CanonicalArticle(BaseModel):
    """Provider-independent article. Keyed by (provider, external_id) on ingest."""

    provider: str
    external_id: str
    title: str
    url: str
    description: str | None = None
    body: str | None = None
    image_url: str | None = None
    source_name: str | None = None
    source_domain: str | None = None
    author: str | None = None
    category: str = "general"
    country: str | None = None
    published_at: datetime = Field(default_factory=utcnow)
    fetched_at: datetime = Field(default_factory=utcnow)
    is_domestic: bool = False
    relevance_score: float | None = None
    sentiment_score: float | None = None
    tags: list[str] = Field(default_factory=list)
    fingerprint: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.provider, self.external_id)


class BatchStatus(str, Enum):
    """Outcome of an aggregation run."""

    OK = "ok"
    EMPTY = "empty"  # providers answered, nothing matched
    EXHAUSTED = "exhausted"  # every provider denied, degraded or failed


class RequestClass(str, Enum):
    """Who asked. Background work yields quota headroom to the others."""

    MANUAL = "manual"
    FOREGROUND = "foreground"
    BACKGROUND = "background"


class ProviderOutcome(BaseModel):
    """What happened with one provider during a run."""

    status: str = Field(..., description="ok|empty|denied|degraded|critical|warning|disabled|transient|permanent|error")
    articles: int = 0
    detail: str | None = None
    scope: str | None = None


class ArticleBatch(BaseModel):
    """Result of one aggregation run, annotated with provenance."""

    status: BatchStatus
    category: str
    query: str | None = None
    articles: list[CanonicalArticle] = Field(default_factory=list)
    provenance: dict[str, ProviderOutcome] = Field(default_factory=dict)
    domestic_count: int = 0
    global_count: int = 0
    duplicates_removed: int = 0
    ambiguous_pairs: int = 0
    store_error: str | None = None
    generated_at: datetime = Field(default_factory=utcnow)

    @property
    def contributing_providers(self) -> list[str]:
        return [name for name, outcome in self.provenance.items() if outcome.articles > 0]
