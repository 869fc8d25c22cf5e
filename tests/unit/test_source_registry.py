# tests/unit/test_source_registry.py
"""
Unit tests for the provider registry and stock provider wiring.
"""

from types import SimpleNamespace

import pytest

from newsagg.services.source_registry import (
    STOCK_PROVIDERS,
    ProviderConfig,
    SourceRegistry,
    default_providers,
)
from tests.factories import make_provider


def _settings(**overrides):
    values = {
        "PROVIDER_MAX_ATTEMPTS": 3,
        "PROVIDER_BACKOFF_SECONDS": 1.0,
        "PROVIDER_MAX_BACKOFF_SECONDS": 30.0,
        "PROVIDER_TIMEOUT_SECONDS": 30.0,
        "PROVIDER_DEGRADED_COOLDOWN_SECONDS": 900,
        "RAPIDAPI_KEY": "rk",
        "RAPIDAPI_HOST": "news.p.rapidapi.com",
        "NEWSDATA_API_KEY": "nk",
        "GNEWS_API_KEY": None,
        "MEDIASTACK_API_KEY": "mk",
        "RAPIDAPI_DAILY_CAP": 16667,
        "RAPIDAPI_HOURLY_CAP": 1000,
        "NEWSDATA_DAILY_CAP": 200,
        "NEWSDATA_HOURLY_CAP": None,
        "GNEWS_DAILY_CAP": 100,
        "GNEWS_HOURLY_CAP": None,
        "MEDIASTACK_DAILY_CAP": 16,
        "MEDIASTACK_HOURLY_CAP": None,
        "DOMESTIC_SHARES": {},
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestSourceRegistry:
    """Tests for SourceRegistry ordering and validation."""

    def test_by_priority_orders_ascending(self):
        registry = SourceRegistry([make_provider("gamma", 3), make_provider("alpha", 1), make_provider("beta", 2)])
        assert [p.name for p in registry.by_priority()] == ["alpha", "beta", "gamma"]

    def test_by_priority_excludes_disabled_by_default(self):
        registry = SourceRegistry([make_provider("alpha", 1), make_provider("beta", 2, api_key=None)])
        assert [p.name for p in registry.by_priority()] == ["alpha"]
        assert [p.name for p in registry.by_priority(include_disabled=True)] == ["alpha", "beta"]

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            SourceRegistry([make_provider("alpha", 1), make_provider("alpha", 2)])

    def test_invalid_priority_rejected(self):
        with pytest.raises(ValueError, match="priority"):
            SourceRegistry([make_provider("alpha", 0)])

    def test_domestic_share_out_of_range_rejected(self):
        with pytest.raises(ValueError, match="domestic share"):
            SourceRegistry([make_provider("alpha", 1, domestic_share=1.5)])

    def test_negative_cap_rejected(self):
        with pytest.raises(ValueError, match="caps"):
            SourceRegistry([make_provider("alpha", 1, daily_cap=-1)])

    def test_priority_of_unknown_sorts_last(self, registry):
        assert registry.priority_of("alpha") == 1
        assert registry.priority_of("nobody") > registry.priority_of("beta")

    def test_lookup_helpers(self, registry):
        assert "alpha" in registry
        assert "nobody" not in registry
        assert len(registry) == 2
        assert registry.get("beta").priority == 2
        assert registry.names() == ["alpha", "beta"]

    def test_global_share_complements_domestic(self):
        config = ProviderConfig(name="x", priority=1, daily_cap=10, domestic_share=0.75)
        assert config.global_share == pytest.approx(0.25)


class TestDefaultProviders:
    """Tests for the stock provider set built from settings."""

    def test_stock_priorities(self):
        providers = {p.name: p for p in default_providers(_settings())}
        assert set(providers) == set(STOCK_PROVIDERS)
        assert providers["rapidapi"].priority == 1
        assert providers["newsdata"].priority == 2
        assert providers["gnews"].priority == 3
        assert providers["mediastack"].priority == 4

    def test_provider_without_key_is_disabled(self):
        providers = {p.name: p for p in default_providers(_settings())}
        assert providers["gnews"].enabled is False
        assert providers["newsdata"].enabled is True

    def test_caps_and_host_come_from_settings(self):
        providers = {p.name: p for p in default_providers(_settings(NEWSDATA_DAILY_CAP=50))}
        assert providers["newsdata"].daily_cap == 50
        assert providers["rapidapi"].hourly_cap == 1000
        assert providers["rapidapi"].host == "news.p.rapidapi.com"
        assert providers["gnews"].host is None

    def test_domestic_share_override(self):
        providers = {p.name: p for p in default_providers(_settings(DOMESTIC_SHARES={"gnews": 0.5}))}
        assert providers["gnews"].domestic_share == 0.5
        assert providers["newsdata"].domestic_share == 0.80

    def test_retry_policy_shared(self):
        providers = default_providers(_settings(PROVIDER_MAX_ATTEMPTS=5))
        assert all(p.retry.max_attempts == 5 for p in providers)
