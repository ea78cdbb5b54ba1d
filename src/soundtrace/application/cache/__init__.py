"""Caching layer - cache implementations for reducing API calls."""

from soundtrace.application.cache.base_cache import BaseCache, CacheEntry, InMemoryCache

__all__ = ["BaseCache", "CacheEntry", "InMemoryCache"]
