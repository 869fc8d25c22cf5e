# newsagg/services/api_fetchers/base.py
"""
Base class for upstream news provider adapters.

Each adapter maps one provider's response shape into CanonicalArticle. The
shared fetch() loop owns the quota and retry rules:

- one ledger reservation per attempt, denied reservations never touch the network
- commit for every attempt that reached the provider, release otherwise
- transient failures retried with exponential backoff, permanent ones degrade the provider
"""

import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

import httpx

from newsagg.logging_config import log_provider_call
from newsagg.schemas.article import CanonicalArticle
from newsagg.services.errors import ProviderError, ProviderPermanent, ProviderTransient, QuotaDenied
from newsagg.services.quota_ledger import QuotaLedger
from newsagg.services.resilience import CircuitBreaker, backoff_delay
from newsagg.services.source_registry import ProviderConfig

logger = logging.getLogger(__name__)

DOMESTIC = "domestic"
GLOBAL = "global"


@dataclass(frozen=True)
class FetchParams:
    """Provider-independent query for one upstream call."""

    category: str = "general"
    query: str | None = None
    scope: str = DOMESTIC
    page_size: int = 20
    language: str = "en"


# -----------------------------------------------------------------------------
# Normalization helpers
# -----------------------------------------------------------------------------


def parse_datetime(value: Any, formats: tuple[str, ...] = ()) -> datetime | None:
    """Parse provider timestamps into aware UTC datetimes. Returns None if unparseable."""
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    for fmt in formats:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def make_external_id(raw_id: Any, url: str) -> str:
    """Provider id when present, otherwise a stable hash of the URL."""
    if raw_id:
        return str(raw_id)
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:32]


def domain_of(url: str | None) -> str | None:
    if not url:
        return None
    netloc = urlparse(url).netloc.lower()
    return netloc[4:] if netloc.startswith("www.") else netloc or None


def clean_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def classify_status(provider: str, response: httpx.Response) -> ProviderError | None:
    """Map an HTTP status to the failure taxonomy. None for success."""
    code = response.status_code
    if code < 400:
        return None
    snippet = response.text[:200] if response.content else ""
    if code == 429 or code >= 500:
        return ProviderTransient(provider, f"HTTP {code}: {snippet}", status_code=code)
    return ProviderPermanent(provider, f"HTTP {code}: {snippet}", status_code=code)


# -----------------------------------------------------------------------------
# Adapter base
# -----------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """Uniform fetch capability over one upstream provider."""

    def __init__(
        self,
        config: ProviderConfig,
        ledger: QuotaLedger,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        breaker: CircuitBreaker | None = None,
    ):
        self.config = config
        self.ledger = ledger
        self.client = client or httpx.AsyncClient(
            timeout=config.timeout_seconds,
            headers={"Accept": "application/json"},
        )
        self.breaker = breaker or CircuitBreaker(
            name=config.name,
            failure_threshold=5,
            reset_timeout_seconds=config.degraded_cooldown_seconds,
        )
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def is_degraded(self) -> bool:
        return self.breaker.is_open

    # -- provider specifics --------------------------------------------------

    def select_endpoint(self, params: FetchParams) -> str:
        return self.config.endpoints[0]

    @abstractmethod
    def build_request(self, endpoint: str, params: FetchParams) -> tuple[dict[str, Any], dict[str, str]]:
        """Query parameters and extra headers for one call."""

    def check_payload(self, payload: Any) -> None:
        """Raise for provider errors reported inside a 2xx body."""

    @abstractmethod
    def extract_records(self, payload: Any) -> list[dict[str, Any]]:
        """Raw article records from a decoded response."""

    @abstractmethod
    def normalize(self, record: dict[str, Any], params: FetchParams) -> CanonicalArticle | None:
        """Canonical article, or None when url/title are missing."""

    # -- shared loop ---------------------------------------------------------

    async def fetch(self, endpoint: str | None = None, params: FetchParams | None = None) -> list[CanonicalArticle]:
        """
        Fetch and normalize articles with quota-checked retries.

        Raises:
            QuotaDenied: the first reservation was refused; nothing was sent
            ProviderTransient: retries exhausted, or quota ran out mid-retry
            ProviderPermanent: credentials or request rejected; provider degraded
        """
        params = params or FetchParams()
        endpoint = endpoint or self.select_endpoint(params)
        retry = self.config.retry
        last_error: ProviderTransient | None = None

        for attempt in range(1, retry.max_attempts + 1):
            decision = await self.ledger.try_reserve(self.name)
            if not decision:
                if last_error is None:
                    raise QuotaDenied(self.name, decision.reason)
                logger.warning(
                    f"{self.name}: quota denied on retry {attempt} ({decision.reason}), giving up",
                    extra={"event": "provider_retry_denied", "provider": self.name},
                )
                self.breaker.record_failure(str(last_error))
                raise last_error

            try:
                articles = await self._attempt(endpoint, params)
            except ProviderPermanent as e:
                await self._settle(e.reached_network)
                self.breaker.trip(str(e))
                raise
            except ProviderTransient as e:
                await self._settle(e.reached_network)
                last_error = e
                if attempt == retry.max_attempts:
                    logger.error(
                        f"{self.name} failed after {retry.max_attempts} attempts: {e}",
                        extra={"event": "provider_failed", "provider": self.name},
                    )
                    self.breaker.record_failure(str(e))
                    raise
                wait_time = backoff_delay(attempt, retry.backoff_seconds, retry.max_backoff_seconds)
                logger.warning(
                    f"{self.name} attempt {attempt} failed: {e}. Retrying in {wait_time:.1f}s...",
                    extra={"event": "provider_retry", "provider": self.name},
                )
                await self._sleep(wait_time)
                continue
            except asyncio.CancelledError:
                # The request may already be on the wire
                await self.ledger.commit(self.name)
                raise
            except Exception as e:
                # Unmapped failure: assume the call was sent so the reservation is never leaked
                await self.ledger.commit(self.name)
                self.breaker.record_failure(repr(e))
                raise

            await self.ledger.commit(self.name)
            self.breaker.record_success()
            return articles

        # max_attempts >= 1, so the loop always returns or raises
        raise RuntimeError(f"{self.name} fetch loop exited without result")

    async def _settle(self, reached_network: bool) -> None:
        if reached_network:
            await self.ledger.commit(self.name)
        else:
            await self.ledger.release(self.name)

    async def _attempt(self, endpoint: str, params: FetchParams) -> list[CanonicalArticle]:
        if not self.config.api_key:
            raise ProviderPermanent(self.name, "API key not configured", reached_network=False)

        query, headers = self.build_request(endpoint, params)
        with log_provider_call(self.name, endpoint, params.category) as call:
            try:
                response = await self.client.get(endpoint, params=query, headers=headers)
            except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
                raise ProviderTransient(self.name, f"connect failed: {e!r}", reached_network=False) from e
            except httpx.TimeoutException as e:
                raise ProviderTransient(self.name, f"timeout: {e!r}") from e
            except httpx.TransportError as e:
                raise ProviderTransient(self.name, f"transport error: {e!r}") from e
            except httpx.HTTPError as e:
                # Decoding and other errors after the request was sent
                raise ProviderTransient(self.name, f"request failed: {e!r}") from e
            call["status_code"] = response.status_code

            error = classify_status(self.name, response)
            if error is not None:
                raise error

            try:
                payload = response.json()
            except ValueError as e:
                raise ProviderTransient(
                    self.name, "response is not valid JSON", status_code=response.status_code
                ) from e

            self.check_payload(payload)

            articles: list[CanonicalArticle] = []
            for record in self.extract_records(payload):
                if not isinstance(record, dict):
                    continue
                try:
                    article = self.normalize(record, params)
                except Exception as e:
                    logger.warning(f"Failed to normalize {self.name} article: {e}")
                    continue
                if article is not None:
                    articles.append(article)
            call["items"] = len(articles)
        return articles

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "ProviderAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
