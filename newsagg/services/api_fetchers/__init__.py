"""
Provider adapters for upstream news APIs.

Each adapter normalizes one provider's response shape into CanonicalArticle
behind the same fetch() contract.
"""

import httpx

from newsagg.services.api_fetchers.base import DOMESTIC, GLOBAL, FetchParams, ProviderAdapter
from newsagg.services.api_fetchers.gnews_fetcher import GNewsAdapter
from newsagg.services.api_fetchers.mediastack_fetcher import MediastackAdapter
from newsagg.services.api_fetchers.newsdata_fetcher import NewsDataAdapter
from newsagg.services.api_fetchers.rapidapi_fetcher import RapidApiAdapter
from newsagg.services.quota_ledger import QuotaLedger
from newsagg.services.source_registry import SourceRegistry

ADAPTER_TYPES: dict[str, type[ProviderAdapter]] = {
    "rapidapi": RapidApiAdapter,
    "newsdata": NewsDataAdapter,
    "gnews": GNewsAdapter,
    "mediastack": MediastackAdapter,
}


def build_adapters(
    registry: SourceRegistry,
    ledger: QuotaLedger,
    client: httpx.AsyncClient | None = None,
) -> dict[str, ProviderAdapter]:
    """One adapter per registered provider that has a known variant."""
    adapters: dict[str, ProviderAdapter] = {}
    for config in registry.by_priority(include_disabled=True):
        adapter_type = ADAPTER_TYPES.get(config.name)
        if adapter_type is None:
            raise ValueError(f"No adapter for provider '{config.name}'")
        adapters[config.name] = adapter_type(config, ledger, client=client)
    return adapters


__all__ = [
    "ADAPTER_TYPES",
    "DOMESTIC",
    "GLOBAL",
    "FetchParams",
    "GNewsAdapter",
    "MediastackAdapter",
    "NewsDataAdapter",
    "ProviderAdapter",
    "RapidApiAdapter",
    "build_adapters",
]
