"""Cache adapters and the fail-open cache-aside layer.

The cache maps a deduplication key to a short code. It is purely an
optimization: the durable store is always the record of truth, a miss only
means "not confirmed in cache", and a broken cache only makes things slower.

Layering
========
::
    URLShorteningService
            │
            ▼
    ┌────────────────┐   swallows + logs every adapter error
    │   CacheAside    │   (get -> miss, set/delete -> no-op)
    └───────┬────────┘
            ▼
    ┌────────────────┐   raises CacheError on backend failure
    │  CacheAdapter   │── RedisCacheAdapter  (redis.asyncio)
    │                 │── InMemoryCacheAdapter (single process)
    └────────────────┘

Key Behaviours
===============
- Short-code mappings never change once written, so the default TTL is long
  (7 days); it only bounds staleness after a record expires or is deleted.
- Keys are namespaced by prefix, owner scope and expiration class, so a
  permanent mapping is never served for a time-boxed request, and one owner's
  code is never served to another.
- CacheAside with no adapter behaves as an always-missing cache.

Classes:
    CacheKeySchema:  Standardized cache key names.
    CacheAdapter:  Interface for cache backends.
    RedisCacheAdapter:  Redis-backed adapter.
    InMemoryCacheAdapter:  Dict-backed adapter with TTL.
    CacheAside:  Fail-open wrapper used by the orchestrator.
"""

import asyncio
import datetime
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

import redis.asyncio as redis
from redis.exceptions import RedisError

from shortlink.exceptions import CacheError

__all__ = [
    "DEFAULT_CACHE_TTL_SECONDS",
    "CacheAdapter",
    "CacheAside",
    "CacheKeySchema",
    "InMemoryCacheAdapter",
    "RedisCacheAdapter",
]

DEFAULT_CACHE_TTL_SECONDS = 604800  # 7 days

ANONYMOUS_SCOPE = "anon"
PERMANENT_SUFFIX = "permanent"

logger = logging.getLogger("shortlink.cache")


class CacheKeySchema:
    """Provide standardized cache keys for short code deduplication."""

    def __init__(self, prefix: str | None = None):
        self.prefix = prefix

    def _prefixed(self, key: str) -> str:
        return f"{self.prefix}:{key}" if self.prefix else key

    def url_key(
        self,
        normalized_url: str,
        owner_id: str | None = None,
        expires_at: datetime.datetime | None = None,
    ) -> str:
        scope = f"user:{owner_id}" if owner_id else ANONYMOUS_SCOPE
        if expires_at is None:
            suffix = PERMANENT_SUFFIX
        else:
            suffix = f"exp:{int(expires_at.timestamp())}"
        return self._prefixed(f"url:{scope}:{normalized_url}:{suffix}")


class CacheAdapter(ABC):
    """Interface for cache backends.

    Implementations raise CacheError on backend failure; they never decide
    on their own that an error is a miss.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int = DEFAULT_CACHE_TTL_SECONDS) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


class RedisCacheAdapter(CacheAdapter):
    def __init__(self, client: redis.Redis):
        self._redis = client

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheError(f"Redis GET failed for {key!r}") from exc

    async def set(self, key: str, value: str, ttl: int = DEFAULT_CACHE_TTL_SECONDS) -> None:
        try:
            await self._redis.set(key, value, ex=ttl)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheError(f"Redis SET failed for {key!r}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheError(f"Redis DEL failed for {key!r}") from exc

    def __repr__(self) -> str:
        return "<RedisCacheAdapter>"


def _monotonic() -> float:
    return asyncio.get_running_loop().time()


class InMemoryCacheAdapter(CacheAdapter):
    """Process-local cache for environments without Redis.

    Entries expire lazily on read. ``clock`` returns seconds and is injectable
    for tests.
    """

    def __init__(self, clock: Callable[[], float] | None = None):
        self._entries: dict[str, tuple[str, float | None]] = {}
        self._clock = clock or _monotonic

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: int = DEFAULT_CACHE_TTL_SECONDS) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._entries[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class CacheAside:
    """Fail-open front for an optional cache adapter."""

    def __init__(
        self,
        adapter: CacheAdapter | None,
        ttl: int = DEFAULT_CACHE_TTL_SECONDS,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.adapter = adapter
        self.ttl = ttl
        self._logger = log or logger

    async def get(self, key: str) -> str | None:
        if self.adapter is None:
            return None
        try:
            return await self.adapter.get(key)
        except Exception as exc:
            self._logger.warning(f"Cache get failed, treating as miss: {exc}", extra={"cache_key": key})
            return None

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        if self.adapter is None:
            return False
        try:
            await self.adapter.set(key, value, ttl or self.ttl)
        except Exception as exc:
            self._logger.warning(f"Cache set failed, ignoring: {exc}", extra={"cache_key": key})
            return False
        return True

    async def delete(self, key: str) -> bool:
        if self.adapter is None:
            return False
        try:
            await self.adapter.delete(key)
        except Exception as exc:
            self._logger.warning(f"Cache delete failed, ignoring: {exc}", extra={"cache_key": key})
            return False
        return True
