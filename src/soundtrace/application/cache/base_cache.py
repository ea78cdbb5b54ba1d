"""Base cache interface and in-memory TTL implementation."""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

K = TypeVar("K")  # Key type
V = TypeVar("V")  # Value type


@dataclass
class CacheEntry(Generic[V]):
    """Cache entry: the value plus when it was inserted."""

    value: V
    created_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        """Check if cache entry is expired at the given time."""
        return now > (self.created_at + self.ttl_seconds)


class BaseCache(ABC, Generic[K, V]):
    """Base cache interface for all cache implementations."""

    @abstractmethod
    async def get(self, key: K) -> V | None:
        """Get value from cache, None if missing or expired."""

    @abstractmethod
    async def set(self, key: K, value: V, ttl_seconds: float | None = None) -> None:
        """Set value in cache. ttl_seconds=None uses the cache's configured TTL."""

    @abstractmethod
    async def delete(self, key: K) -> bool:
        """Delete value from cache. Returns False if it wasn't there."""

    @abstractmethod
    async def clear(self) -> None:
        """Clear all entries from cache."""


class InMemoryCache(BaseCache[K, V]):
    """Process-local TTL cache.

    The TTL policy is explicit: a default passed in at construction (from settings)
    and an optional per-entry override. The clock is injectable for tests.
    """

    # Hey future me, the _lock keeps get/set/delete atomic across coroutines. Restart = empty
    # cache, which is fine for what we keep here (Spotify profiles).
    def __init__(
        self,
        default_ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache: dict[K, CacheEntry[V]] = {}
        self._lock = asyncio.Lock()
        self._default_ttl = default_ttl_seconds
        self._clock = clock

    # get() evicts expired entries on read, so it has a side effect despite the name.
    async def get(self, key: K) -> V | None:
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._cache[key]
                return None
            return entry.value

    async def set(self, key: K, value: V, ttl_seconds: float | None = None) -> None:
        async with self._lock:
            self._cache[key] = CacheEntry(
                value=value,
                created_at=self._clock(),
                ttl_seconds=self._default_ttl if ttl_seconds is None else ttl_seconds,
            )

    async def delete(self, key: K) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    async def cleanup_expired(self) -> int:
        """Remove expired entries. Returns the number removed."""
        async with self._lock:
            now = self._clock()
            expired_keys = [key for key, entry in self._cache.items() if entry.is_expired(now)]
            for key in expired_keys:
                del self._cache[key]
            return len(expired_keys)

    def get_stats(self) -> dict[str, Any]:
        """Cache statistics (unlocked, for monitoring only)."""
        now = self._clock()
        total_entries = len(self._cache)
        expired_entries = sum(1 for entry in self._cache.values() if entry.is_expired(now))
        return {
            "total_entries": total_entries,
            "active_entries": total_entries - expired_entries,
            "expired_entries": expired_entries,
        }
