# newsagg/services/errors.py
"""
Error taxonomy for the aggregation core.

Provider-level failures are absorbed by the orchestrator; only ExhaustedError
propagates to feed callers as a distinguishable outcome.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from newsagg.schemas.article import ArticleBatch


class NewsAggError(Exception):
    """Base class for aggregation errors."""

    pass


class QuotaDenied(NewsAggError):
    """Admission refused by the quota ledger. Triggers fallback, not a caller error."""

    def __init__(self, provider: str, reason: str):
        super().__init__(f"Quota denied for '{provider}': {reason}")
        self.provider = provider
        self.reason = reason


class ProviderError(NewsAggError):
    """Base for upstream provider failures."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
        reached_network: bool = True,
    ):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code
        self.reached_network = reached_network


class ProviderTransient(ProviderError):
    """Timeout, transport error, 5xx or rate limit. Retried with backoff."""

    pass


class ProviderPermanent(ProviderError):
    """Bad credentials or malformed request. Marks the provider degraded."""

    pass


class ExhaustedError(NewsAggError):
    """Every eligible provider was denied or failed."""

    def __init__(self, batch: "ArticleBatch"):
        if batch.provenance:
            detail = ", ".join(f"{name}={outcome.status}" for name, outcome in batch.provenance.items())
        else:
            detail = "no providers configured"
        super().__init__(f"All providers exhausted: {detail}")
        self.batch = batch


class CacheStoreUnavailable(NewsAggError):
    """Key-value cache store unreachable. Callers degrade to direct compute."""

    pass


class CacheWaitTimeout(NewsAggError):
    """A single-flight wait exceeded its upper bound."""

    def __init__(self, key: str, timeout: float):
        super().__init__(f"Timed out after {timeout:.1f}s waiting for in-flight compute of '{key}'")
        self.key = key
        self.timeout = timeout


@dataclass(frozen=True)
class DedupAmbiguous:
    """
    A pair whose title similarity fell just below the duplicate threshold.

    Both articles are kept; the pair is reported for observability only.
    """

    kept: str
    other: str
    score: float
