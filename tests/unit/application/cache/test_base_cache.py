"""Tests for the in-memory TTL cache."""

from soundtrace.application.cache.base_cache import InMemoryCache


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestInMemoryCache:
    """Test get/set/expiry."""

    async def test_set_and_get(self) -> None:
        cache: InMemoryCache[str, dict] = InMemoryCache(default_ttl_seconds=60)
        await cache.set("u1", {"id": "spotify-user"})
        assert await cache.get("u1") == {"id": "spotify-user"}

    async def test_missing_key(self) -> None:
        cache: InMemoryCache[str, int] = InMemoryCache()
        assert await cache.get("nope") is None

    async def test_default_ttl_expires(self) -> None:
        clock = FakeClock()
        cache: InMemoryCache[str, int] = InMemoryCache(default_ttl_seconds=60, clock=clock)
        await cache.set("k", 1)

        clock.now += 60
        assert await cache.get("k") == 1
        clock.now += 1
        assert await cache.get("k") is None

    async def test_per_entry_ttl_override(self) -> None:
        clock = FakeClock()
        cache: InMemoryCache[str, int] = InMemoryCache(default_ttl_seconds=3600, clock=clock)
        await cache.set("k", 1, ttl_seconds=5)

        clock.now += 6
        assert await cache.get("k") is None

    async def test_delete(self) -> None:
        cache: InMemoryCache[str, int] = InMemoryCache()
        await cache.set("k", 1)
        assert await cache.delete("k") is True
        assert await cache.delete("k") is False

    async def test_cleanup_and_stats(self) -> None:
        clock = FakeClock()
        cache: InMemoryCache[str, int] = InMemoryCache(default_ttl_seconds=10, clock=clock)
        await cache.set("old", 1)
        await cache.set("new", 2, ttl_seconds=100)
        clock.now += 11

        assert cache.get_stats() == {
            "total_entries": 2,
            "active_entries": 1,
            "expired_entries": 1,
        }
        assert await cache.cleanup_expired() == 1
        assert cache.get_stats()["total_entries"] == 1

    async def test_clear(self) -> None:
        cache: InMemoryCache[str, int] = InMemoryCache()
        await cache.set("a", 1)
        await cache.clear()
        assert await cache.get("a") is None
