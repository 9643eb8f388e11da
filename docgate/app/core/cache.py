"""Byte-oriented key/value caches with per-entry TTL.

Two backends share the CacheBackend interface: a process-local dictionary
and Redis. Neither sweeps in the background. The in-memory backend drops an
expired entry the first time it is read past its deadline; Redis expires
keys on its own.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable
import asyncio
import time

import redis.asyncio as aioredis

from docgate.app.core.config import settings


@dataclass
class _CacheEntry:
    value: bytes
    expires_at: float | None = None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (time.time() if now is None else now) > self.expires_at


class CacheBackend(ABC):
    """Interface shared by every cache backend.

    A ``ttl`` of zero or less stores the value without expiry.
    """

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the stored bytes, or None when absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: int) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; a missing key is not an error."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether ``key`` holds a live value."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry this backend owns."""


class InMemoryCache(CacheBackend):
    """Dictionary cache for single-process deployments and tests.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._data: dict[str, _CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def __len__(self) -> int:
        # Includes expired entries that nobody has read yet
        return len(self._data)

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            entry = self._data.get(key)
            if entry is not None and entry.is_expired(self._clock()):
                del self._data[key]
                entry = None
        return None if entry is None else entry.value

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        expires_at = self._clock() + ttl if ttl > 0 else None
        async with self._lock:
            self._data[key] = _CacheEntry(value, expires_at)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()


class RedisCache(CacheBackend):
    """Redis-backed cache shared between processes.

    The connection is opened on first use. ``clear`` only removes keys under
    ``key_prefix`` so a shared Redis database is left intact.

    Example:
        >>> cache = RedisCache("redis://localhost:6379/0")
        >>> await cache.set("docgate:v1:docs:gitlab-org/gitlab", payload, ttl=1800)
    """

    def __init__(self, redis_url: str, key_prefix: str = "docgate:") -> None:
        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._redis: aioredis.Redis | None = None

    async def _get_client(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def get(self, key: str) -> bytes | None:
        client = await self._get_client()
        return await client.get(key)

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        client = await self._get_client()
        if ttl > 0:
            await client.setex(key, ttl, value)
        else:
            await client.set(key, value)

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        await client.delete(key)

    async def exists(self, key: str) -> bool:
        client = await self._get_client()
        return await client.exists(key) > 0

    async def clear(self) -> None:
        client = await self._get_client()
        keys = [key async for key in client.scan_iter(match=f"{self._key_prefix}*")]
        if keys:
            await client.delete(*keys)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


_cache_instance: CacheBackend | None = None


def get_cache(
    backend: str | None = None,
    redis_url: str | None = None,
    force_new: bool = False,
    key_prefix: str | None = None,
) -> CacheBackend:
    """Return the process-wide cache, creating it on first call.

    Args:
        backend: 'memory' or 'redis'; None follows settings.redis_enabled.
        redis_url: Overrides settings.redis_url for the Redis backend.
        force_new: Replace the existing instance.
        key_prefix: Redis key namespace; defaults to settings.cache_prefix.
    """
    global _cache_instance

    if _cache_instance is not None and not force_new:
        return _cache_instance

    use_redis = settings.redis_enabled if backend is None else backend == "redis"
    if use_redis:
        _cache_instance = RedisCache(
            redis_url or settings.redis_url,
            key_prefix=key_prefix or f"{settings.cache_prefix}:",
        )
    else:
        _cache_instance = InMemoryCache()
    return _cache_instance


def reset_cache() -> None:
    """Forget the process-wide cache (tests)."""
    global _cache_instance
    _cache_instance = None
