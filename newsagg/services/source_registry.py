# newsagg/services/source_registry.py
"""
Static description of each upstream news provider.

Loaded once at startup and never mutated. Priority 1 is the highest.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for transient provider failures."""

    max_attempts: int = 3
    backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0


@dataclass(frozen=True)
class ProviderConfig:
    """Immutable provider description."""

    name: str
    priority: int
    daily_cap: int
    hourly_cap: int | None = None
    endpoints: tuple[str, ...] = ()
    domestic_share: float = 0.5
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    api_key: str | None = field(default=None, repr=False)
    host: str | None = None
    timeout_seconds: float = 30.0
    degraded_cooldown_seconds: int = 900
    enabled: bool = True

    @property
    def global_share(self) -> float:
        return round(1.0 - self.domestic_share, 6)


class SourceRegistry:
    """Read-only lookup of provider configs ordered by priority."""

    def __init__(self, providers: Iterable[ProviderConfig]):
        providers = list(providers)
        seen: set[str] = set()
        for provider in providers:
            if provider.name in seen:
                raise ValueError(f"Duplicate provider '{provider.name}'")
            if provider.priority < 1:
                raise ValueError(f"Provider '{provider.name}' has invalid priority {provider.priority}")
            if not 0.0 <= provider.domestic_share <= 1.0:
                raise ValueError(f"Provider '{provider.name}' domestic share must be within [0, 1]")
            if provider.daily_cap < 0 or (provider.hourly_cap is not None and provider.hourly_cap < 0):
                raise ValueError(f"Provider '{provider.name}' caps must be non-negative")
            seen.add(provider.name)

        self._ordered: tuple[ProviderConfig, ...] = tuple(sorted(providers, key=lambda p: (p.priority, p.name)))
        self._by_name = {p.name: p for p in self._ordered}

    def by_priority(self, include_disabled: bool = False) -> list[ProviderConfig]:
        """Providers in ascending priority order (1 first)."""
        if include_disabled:
            return list(self._ordered)
        return [p for p in self._ordered if p.enabled]

    def get(self, name: str) -> ProviderConfig:
        return self._by_name[name]

    def names(self) -> list[str]:
        return [p.name for p in self._ordered]

    def priority_of(self, name: str) -> int:
        """Priority for tie-breaks; unknown providers sort last."""
        provider = self._by_name.get(name)
        return provider.priority if provider else 10_000

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[ProviderConfig]:
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)


# -----------------------------------------------------------------------------
# Stock providers
# -----------------------------------------------------------------------------

RAPIDAPI_ENDPOINTS = (
    "https://real-time-news-data.p.rapidapi.com/top-headlines",
    "https://real-time-news-data.p.rapidapi.com/search",
    "https://real-time-news-data.p.rapidapi.com/topic-headlines",
)
NEWSDATA_ENDPOINTS = ("https://newsdata.io/api/1/latest",)
GNEWS_ENDPOINTS = ("https://gnews.io/api/v4/top-headlines", "https://gnews.io/api/v4/search")
MEDIASTACK_ENDPOINTS = ("http://api.mediastack.com/v1/news",)

# name -> (priority, domestic share, endpoints)
STOCK_PROVIDERS: dict[str, tuple[int, float, tuple[str, ...]]] = {
    "rapidapi": (1, 0.75, RAPIDAPI_ENDPOINTS),
    "newsdata": (2, 0.80, NEWSDATA_ENDPOINTS),
    "gnews": (3, 0.60, GNEWS_ENDPOINTS),
    "mediastack": (4, 0.75, MEDIASTACK_ENDPOINTS),
}


def default_providers(settings: Any) -> list[ProviderConfig]:
    """
    Build the stock provider set from settings.

    Providers without an API key are registered but disabled so they still
    show up in quota reports.
    """
    retry = RetryPolicy(
        max_attempts=settings.PROVIDER_MAX_ATTEMPTS,
        backoff_seconds=settings.PROVIDER_BACKOFF_SECONDS,
        max_backoff_seconds=settings.PROVIDER_MAX_BACKOFF_SECONDS,
    )
    credentials = {
        "rapidapi": settings.RAPIDAPI_KEY,
        "newsdata": settings.NEWSDATA_API_KEY,
        "gnews": settings.GNEWS_API_KEY,
        "mediastack": settings.MEDIASTACK_API_KEY,
    }
    shares = settings.DOMESTIC_SHARES or {}

    providers = []
    for name, (priority, domestic_share, endpoints) in STOCK_PROVIDERS.items():
        prefix = name.upper()
        api_key = credentials[name]
        providers.append(
            ProviderConfig(
                name=name,
                priority=priority,
                daily_cap=getattr(settings, f"{prefix}_DAILY_CAP"),
                hourly_cap=getattr(settings, f"{prefix}_HOURLY_CAP"),
                endpoints=endpoints,
                domestic_share=shares.get(name, domestic_share),
                retry=retry,
                api_key=api_key,
                host=settings.RAPIDAPI_HOST if name == "rapidapi" else None,
                timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
                degraded_cooldown_seconds=settings.PROVIDER_DEGRADED_COOLDOWN_SECONDS,
                enabled=bool(api_key),
            )
        )
    return providers
