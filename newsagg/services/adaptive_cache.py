# newsagg/services/adaptive_cache.py
"""
Adaptive feed cache with single-flight protection.

Usage:
    cache = AdaptiveCache(store, ttl_policy)
    batch = await cache.get_or_compute(signature, lambda: orchestrator.aggregate(request))

- A hit returns the stored batch without calling compute
- On a miss at most one compute per signature runs; concurrent callers await it
  and receive the same batch or the same exception
- Every wait is bounded; a caller giving up never cancels the shared compute
- TTL is chosen at write time from the category and the local event windows
- If the store is unreachable the cache logs and computes directly
"""

import asyncio
import json
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import ValidationError

from newsagg.schemas.article import ArticleBatch
from newsagg.services.cache_stores import CacheStore
from newsagg.services.errors import CacheStoreUnavailable, CacheWaitTimeout
from newsagg.services.ttl_policy import TTLPolicy

logger = logging.getLogger(__name__)

Compute = Callable[[], Awaitable[ArticleBatch]]


@dataclass(frozen=True)
class CacheSignature:
    """Identity of a cached feed request."""

    category: str = "general"
    query: str | None = None
    page: int = 1
    limit: int = 20
    content_type: str = "feed"
    flags: tuple[tuple[str, str], ...] = ()

    def key(self, prefix: str) -> str:
        parts = [prefix, self.content_type, self.category.lower(), f"p{self.page}", f"l{self.limit}"]
        if self.query:
            normalized = " ".join(self.query.lower().replace(":", " ").split())
            parts.append(f"q={normalized}")
        for name, value in sorted(self.flags):
            parts.append(f"{name}={value}")
        return ":".join(parts)


@dataclass
class CacheEntry:
    signature: str
    batch: ArticleBatch
    ttl: int
    inserted_at: datetime

    def encode(self) -> str:
        return json.dumps(
            {
                "signature": self.signature,
                "ttl": self.ttl,
                "inserted_at": self.inserted_at.isoformat(),
                "batch": self.batch.model_dump(mode="json"),
            }
        )

    @classmethod
    def decode(cls, raw: str) -> "CacheEntry":
        data = json.loads(raw)
        return cls(
            signature=data["signature"],
            batch=ArticleBatch.model_validate(data["batch"]),
            ttl=int(data["ttl"]),
            inserted_at=datetime.fromisoformat(data["inserted_at"]),
        )


@dataclass
class CacheResult:
    batch: ArticleBatch
    hit: bool
    degraded: bool = False


@dataclass
class _CategoryStats:
    hits: int = 0
    misses: int = 0


@dataclass
class _Stats:
    computes: int = 0
    coalesced: int = 0
    errors: int = 0
    degraded: int = 0
    wait_timeouts: int = 0
    by_category: dict[str, _CategoryStats] = field(default_factory=lambda: defaultdict(_CategoryStats))


def _consume_exception(future: asyncio.Future) -> None:
    # Avoid "exception was never retrieved" when every waiter timed out
    if not future.cancelled():
        future.exception()


class AdaptiveCache:
    """Signature-keyed cache over a CacheStore."""

    def __init__(
        self,
        store: CacheStore,
        ttl_policy: TTLPolicy,
        prefix: str = "newsagg",
        wait_timeout: float = 45.0,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.ttl_policy = ttl_policy
        self.prefix = prefix
        self.wait_timeout = wait_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._inflight: dict[str, asyncio.Future] = {}
        self._tasks: set[asyncio.Task] = set()
        self._stats = _Stats()

    # -- read path -----------------------------------------------------------

    async def get_or_compute(self, signature: CacheSignature, compute: Compute) -> ArticleBatch:
        return (await self.lookup_or_compute(signature, compute)).batch

    async def lookup_or_compute(self, signature: CacheSignature, compute: Compute) -> CacheResult:
        """Like get_or_compute, but also says whether the batch came from cache."""
        key = signature.key(self.prefix)
        category_stats = self._stats.by_category[signature.category]
        degraded = False

        try:
            raw = await self.store.get(key)
        except CacheStoreUnavailable as e:
            self._note_degraded("get", e)
            raw = None
            degraded = True

        if raw is not None:
            entry = self._decode(key, raw)
            if entry is not None:
                category_stats.hits += 1
                return CacheResult(batch=entry.batch, hit=True)

        category_stats.misses += 1
        batch = await self._single_flight(key, signature, compute, write=not degraded)
        return CacheResult(batch=batch, hit=False, degraded=degraded)

    def _decode(self, key: str, raw: str) -> CacheEntry | None:
        try:
            return CacheEntry.decode(raw)
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            return None

    # -- single flight -------------------------------------------------------

    async def _single_flight(self, key: str, signature: CacheSignature, compute: Compute, write: bool) -> ArticleBatch:
        future = self._inflight.get(key)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            future.add_done_callback(_consume_exception)
            self._inflight[key] = future
            self._stats.computes += 1
            task = asyncio.create_task(self._run(key, signature, compute, future, write))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            self._stats.coalesced += 1

        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self.wait_timeout)
        except asyncio.TimeoutError:
            self._stats.wait_timeouts += 1
            raise CacheWaitTimeout(key, self.wait_timeout) from None

    async def _run(
        self,
        key: str,
        signature: CacheSignature,
        compute: Compute,
        future: asyncio.Future,
        write: bool,
    ) -> None:
        try:
            batch = await compute()
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            self._stats.errors += 1
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(batch)
            if write:
                await self._write(key, signature, batch)
        finally:
            if self._inflight.get(key) is future:
                del self._inflight[key]

    # -- write path ----------------------------------------------------------

    async def _write(self, key: str, signature: CacheSignature, batch: ArticleBatch) -> int | None:
        now = self._clock()
        ttl = self.ttl_policy.ttl_for(signature.category, now)
        entry = CacheEntry(signature=key, batch=batch, ttl=ttl, inserted_at=now)
        try:
            await self.store.set(key, entry.encode(), ttl)
        except CacheStoreUnavailable as e:
            self._note_degraded("set", e)
            return None
        logger.debug(
            f"Cached {key} for {ttl}s",
            extra={"event": "cache_write", "signature": key, "ttl": ttl},
        )
        return ttl

    async def put(self, signature: CacheSignature, batch: ArticleBatch) -> int | None:
        """Write a freshly computed batch. Returns the TTL used, or None if the store is down."""
        return await self._write(signature.key(self.prefix), signature, batch)

    async def invalidate(self, signature: CacheSignature | None = None) -> int:
        """Remove one entry, or every entry under the prefix. Bypasses TTL."""
        try:
            if signature is None:
                removed = await self.store.clear(f"{self.prefix}:")
            else:
                removed = int(await self.store.delete(signature.key(self.prefix)))
        except CacheStoreUnavailable as e:
            self._note_degraded("invalidate", e)
            return 0
        logger.info(
            f"Cache invalidated: {removed} entries",
            extra={"event": "cache_invalidate", "signature": signature.key(self.prefix) if signature else "*"},
        )
        return removed

    # -- housekeeping --------------------------------------------------------

    def _note_degraded(self, operation: str, error: Exception) -> None:
        self._stats.degraded += 1
        logger.warning(
            f"Cache store unavailable during {operation}, serving without cache: {error}",
            extra={"event": "cache_degraded", "operation": operation},
        )

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def drain(self, timeout: float) -> None:
        """Wait for in-flight computes, up to timeout."""
        if self._tasks:
            await asyncio.wait(list(self._tasks), timeout=timeout)

    def stats(self) -> dict:
        categories = {}
        hits = misses = 0
        for name, s in self._stats.by_category.items():
            total = s.hits + s.misses
            categories[name] = {
                "hits": s.hits,
                "misses": s.misses,
                "hit_rate": round(s.hits / total, 4) if total else 0.0,
            }
            hits += s.hits
            misses += s.misses
        return {
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / (hits + misses), 4) if hits + misses else 0.0,
            "computes": self._stats.computes,
            "coalesced": self._stats.coalesced,
            "errors": self._stats.errors,
            "degraded": self._stats.degraded,
            "wait_timeouts": self._stats.wait_timeouts,
            "inflight": len(self._inflight),
            "categories": categories,
        }
