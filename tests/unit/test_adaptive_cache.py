# tests/unit/test_adaptive_cache.py
"""
Unit tests for the adaptive cache and its stores.

Tests single-flight coalescing, TTL expiry with a fake timer, degradation
when the store is unreachable, bounded waits and invalidation.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis

from newsagg.schemas.article import ArticleBatch, BatchStatus
from newsagg.services.adaptive_cache import AdaptiveCache, CacheEntry, CacheSignature
from newsagg.services.cache_stores import MemoryCacheStore, RedisCacheStore
from newsagg.services.errors import CacheStoreUnavailable, CacheWaitTimeout
from newsagg.services.ttl_policy import CategoryTTL, TTLPolicy
from tests.factories import FIXED_NOW, FakeTimer, make_article


def _batch(category="breaking", n=1):
    return ArticleBatch(
        status=BatchStatus.OK,
        category=category,
        articles=[make_article(external_id=str(i), title=f"story{i}") for i in range(n)],
    )


class UnreachableStore:
    """Store whose every call fails like a downed Redis."""

    def __init__(self):
        self.writes = 0

    async def get(self, key):
        raise CacheStoreUnavailable("connection refused")

    async def set(self, key, value, ttl):
        self.writes += 1
        raise CacheStoreUnavailable("connection refused")

    async def delete(self, key):
        raise CacheStoreUnavailable("connection refused")

    async def clear(self, prefix):
        raise CacheStoreUnavailable("connection refused")

    async def ping(self):
        return False

    async def close(self):
        pass


class CountingCompute:
    """Compute callable that counts invocations and can be held open."""

    def __init__(self, batch=None, error=None):
        self.calls = 0
        self.batch = batch or _batch()
        self.error = error
        self.gate = asyncio.Event()
        self.gate.set()

    async def __call__(self):
        self.calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.batch


@pytest.fixture
def timer():
    return FakeTimer(1000.0)


@pytest.fixture
def ttl_policy():
    """Breaking news cached for exactly 300s at any time of day."""
    return TTLPolicy(category_ttls={"breaking": CategoryTTL(peak=300, off_peak=300, event=300)}, default_ttl=600)


@pytest.fixture
def cache(timer, ttl_policy):
    return AdaptiveCache(MemoryCacheStore(maxsize=100, timer=timer), ttl_policy, prefix="test", clock=lambda: FIXED_NOW)


class TestCacheSignature:
    def test_key_includes_all_parts(self):
        signature = CacheSignature(category="Sports", query="IPL  Final", page=2, limit=10, flags=(("lang", "en"),))
        assert signature.key("newsagg") == "newsagg:feed:sports:p2:l10:q=ipl final:lang=en"

    def test_distinct_signatures_distinct_keys(self):
        assert CacheSignature(page=1).key("x") != CacheSignature(page=2).key("x")
        assert CacheSignature(query="a").key("x") != CacheSignature(query="b").key("x")

    def test_entry_round_trip(self):
        entry = CacheEntry(signature="k", batch=_batch(n=2), ttl=300, inserted_at=FIXED_NOW)
        decoded = CacheEntry.decode(entry.encode())
        assert decoded.ttl == 300
        assert [a.key for a in decoded.batch.articles] == [a.key for a in entry.batch.articles]


class TestSingleFlight:
    """Concurrent callers on a cold key trigger exactly one compute."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_compute(self, cache):
        compute = CountingCompute()
        compute.gate.clear()
        signature = CacheSignature(category="breaking")

        tasks = [asyncio.create_task(cache.get_or_compute(signature, compute)) for _ in range(10)]
        while cache.stats()["coalesced"] < 9:
            await asyncio.sleep(0)
        compute.gate.set()
        results = await asyncio.gather(*tasks)

        assert compute.calls == 1
        assert all(r is results[0] for r in results)
        assert cache.inflight == 0

    @pytest.mark.asyncio
    async def test_waiters_receive_same_exception(self, cache):
        compute = CountingCompute(error=RuntimeError("providers down"))
        compute.gate.clear()
        signature = CacheSignature(category="breaking")

        tasks = [asyncio.create_task(cache.get_or_compute(signature, compute)) for _ in range(5)]
        while cache.stats()["coalesced"] < 4:
            await asyncio.sleep(0)
        compute.gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert compute.calls == 1
        assert all(isinstance(r, RuntimeError) for r in results)
        assert cache.stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_failed_compute_not_cached(self, cache):
        signature = CacheSignature(category="breaking")
        with pytest.raises(RuntimeError):
            await cache.get_or_compute(signature, CountingCompute(error=RuntimeError("boom")))

        compute = CountingCompute()
        await cache.get_or_compute(signature, compute)
        assert compute.calls == 1

    @pytest.mark.asyncio
    async def test_wait_is_bounded(self, timer, ttl_policy):
        cache = AdaptiveCache(MemoryCacheStore(timer=timer), ttl_policy, wait_timeout=0.05)
        compute = CountingCompute()
        compute.gate.clear()

        with pytest.raises(CacheWaitTimeout):
            await cache.get_or_compute(CacheSignature(category="breaking"), compute)
        assert cache.stats()["wait_timeouts"] == 1

        # The shared compute keeps running and still populates the cache
        compute.gate.set()
        await cache.drain(1.0)
        result = await cache.lookup_or_compute(CacheSignature(category="breaking"), CountingCompute())
        assert result.hit is True


class TestTTL:
    @pytest.mark.asyncio
    async def test_served_before_expiry_recomputed_after(self, cache, timer):
        signature = CacheSignature(category="breaking")
        compute = CountingCompute()

        first = await cache.lookup_or_compute(signature, compute)
        await cache.drain(1.0)
        assert first.hit is False

        timer.value += 299
        second = await cache.lookup_or_compute(signature, compute)
        assert second.hit is True
        assert compute.calls == 1

        timer.value += 2  # t+301
        third = await cache.lookup_or_compute(signature, compute)
        assert third.hit is False
        assert compute.calls == 2

    @pytest.mark.asyncio
    async def test_put_returns_ttl_for_category(self, cache):
        assert await cache.put(CacheSignature(category="breaking"), _batch()) == 300
        assert await cache.put(CacheSignature(category="astrology"), _batch("astrology")) == 600

    @pytest.mark.asyncio
    async def test_unreadable_entry_recomputed(self, cache):
        signature = CacheSignature(category="breaking")
        await cache.store.set(signature.key(cache.prefix), "{not json", 300)
        compute = CountingCompute()
        result = await cache.lookup_or_compute(signature, compute)
        assert result.hit is False
        assert compute.calls == 1


class TestDegradedStore:
    @pytest.mark.asyncio
    async def test_unreachable_store_computes_directly(self, ttl_policy):
        store = UnreachableStore()
        cache = AdaptiveCache(store, ttl_policy)
        compute = CountingCompute()

        result = await cache.lookup_or_compute(CacheSignature(category="breaking"), compute)

        assert result.batch is compute.batch
        assert result.degraded is True
        assert store.writes == 0  # no write attempted once the read failed
        assert cache.stats()["degraded"] == 1

    @pytest.mark.asyncio
    async def test_invalidate_on_unreachable_store_returns_zero(self, ttl_policy):
        cache = AdaptiveCache(UnreachableStore(), ttl_policy)
        assert await cache.invalidate() == 0


class TestInvalidate:
    @pytest.mark.asyncio
    async def test_invalidate_one_signature(self, cache):
        kept = CacheSignature(category="breaking", page=2)
        dropped = CacheSignature(category="breaking")
        await cache.put(kept, _batch())
        await cache.put(dropped, _batch())

        assert await cache.invalidate(dropped) == 1
        compute = CountingCompute()
        await cache.get_or_compute(dropped, compute)
        await cache.get_or_compute(kept, compute)
        assert compute.calls == 1

    @pytest.mark.asyncio
    async def test_invalidate_all(self, cache):
        await cache.put(CacheSignature(category="breaking"), _batch())
        await cache.put(CacheSignature(category="sports"), _batch("sports"))
        assert await cache.invalidate() == 2

    @pytest.mark.asyncio
    async def test_stats_track_hit_rate(self, cache):
        signature = CacheSignature(category="breaking")
        compute = CountingCompute()
        await cache.get_or_compute(signature, compute)
        await cache.drain(1.0)
        await cache.get_or_compute(signature, compute)

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["categories"]["breaking"]["hit_rate"] == 0.5


class TestRedisCacheStore:
    """RedisCacheStore against a mocked client."""

    @pytest.mark.asyncio
    async def test_set_uses_setex(self):
        client = MagicMock()
        client.setex = AsyncMock()
        store = RedisCacheStore("redis://localhost:6379/0", client=client)

        await store.set("k", "v", 300)
        client.setex.assert_awaited_once_with("k", 300, "v")

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_unavailable(self):
        client = MagicMock()
        client.get = AsyncMock(side_effect=redis.exceptions.ConnectionError("refused"))
        store = RedisCacheStore("redis://localhost:6379/0", client=client)

        with pytest.raises(CacheStoreUnavailable):
            await store.get("k")

    @pytest.mark.asyncio
    async def test_ping_failure_is_false(self):
        client = MagicMock()
        client.ping = AsyncMock(side_effect=redis.exceptions.TimeoutError("timeout"))
        store = RedisCacheStore("redis://localhost:6379/0", client=client)
        assert await store.ping() is False
