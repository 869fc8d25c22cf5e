# newsagg/services/cache_stores.py
"""
Key-value stores behind the adaptive cache.

Both stores keep serialized payloads with a per-entry TTL. Any failure to
reach the backing store surfaces as CacheStoreUnavailable so the cache can
fall back to direct compute.
"""

import logging
import time
from collections.abc import Callable
from typing import Protocol

import redis
import redis.asyncio as aioredis
from cachetools import TLRUCache

from newsagg.services.errors import CacheStoreUnavailable

logger = logging.getLogger(__name__)


class CacheStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def clear(self, prefix: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


def _expires_at(key: str, value: tuple[str, int], now: float) -> float:
    return now + value[1]


class MemoryCacheStore:
    """In-process store with per-entry expiry (cachetools TLRUCache)."""

    def __init__(self, maxsize: int = 1000, timer: Callable[[], float] = time.monotonic):
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_expires_at, timer=timer)

    async def get(self, key: str) -> str | None:
        entry = self._cache.get(key)
        return entry[0] if entry is not None else None

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._cache[key] = (value, ttl)

    async def delete(self, key: str) -> bool:
        return self._cache.pop(key, None) is not None

    async def clear(self, prefix: str) -> int:
        keys = [k for k in list(self._cache.keys()) if k.startswith(prefix)]
        for key in keys:
            self._cache.pop(key, None)
        return len(keys)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._cache.clear()


class RedisCacheStore:
    """Redis-backed store. Values are written with SETEX."""

    def __init__(self, url: str, socket_timeout: float = 2.0, client: aioredis.Redis | None = None):
        self.url = url
        self._client = client or aioredis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except (redis.exceptions.RedisError, OSError) as e:
            raise CacheStoreUnavailable(f"Redis GET failed: {e}") from e

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._client.setex(key, ttl, value)
        except (redis.exceptions.RedisError, OSError) as e:
            raise CacheStoreUnavailable(f"Redis SETEX failed: {e}") from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client.delete(key))
        except (redis.exceptions.RedisError, OSError) as e:
            raise CacheStoreUnavailable(f"Redis DEL failed: {e}") from e

    async def clear(self, prefix: str) -> int:
        removed = 0
        try:
            async for key in self._client.scan_iter(match=f"{prefix}*", count=500):
                removed += await self._client.delete(key)
        except (redis.exceptions.RedisError, OSError) as e:
            raise CacheStoreUnavailable(f"Redis clear failed after {removed} keys: {e}") from e
        return removed

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (redis.exceptions.RedisError, OSError) as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
