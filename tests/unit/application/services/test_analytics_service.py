"""Tests for AnalyticsService."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from soundtrace.application.services import analytics_service as analytics_module
from soundtrace.application.services.analytics_service import AnalyticsService
from soundtrace.config.settings import AnalyticsSettings
from soundtrace.domain.dtos import ArtistDetails
from soundtrace.domain.exceptions import ExternalServiceException
from soundtrace.infrastructure.persistence.repositories import CachedTopArtistRepository


class MovableClock:
    """Clock the test can move forward."""

    def __init__(self, now) -> None:
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def gateway() -> AsyncMock:
    gateway = AsyncMock()
    gateway.fetch_top_artists.return_value = [
        ArtistDetails(id=f"ar{i}", name=f"Artist {i}", image_url=f"http://img/{i}")
        for i in range(1, 4)
    ]
    return gateway


@pytest.fixture
def moving_clock(now) -> MovableClock:
    return MovableClock(now)


@pytest.fixture
def service(db, gateway: AsyncMock, moving_clock: MovableClock) -> AnalyticsService:
    return AnalyticsService(db.session_scope, gateway, AnalyticsSettings(), clock=moving_clock)


class TestCachedTopArtists:
    """Test the 24h top-artist cache."""

    async def test_miss_fetches_and_stores_ranks(
        self, service: AnalyticsService, gateway: AsyncMock, db, create_user
    ) -> None:
        user = await create_user()

        artists = await service.get_cached_top_artists(user.id, "short_term", limit=2)

        assert [a.artist_name for a in artists] == ["Artist 1", "Artist 2"]
        gateway.fetch_top_artists.assert_awaited_once_with(user.id, "short_term", 50)
        async with db.session_scope() as session:
            rows = await CachedTopArtistRepository(session).list_for_user(user.id, "short_term")
        assert [(row.rank, row.artist_id) for row in rows] == [(1, "ar1"), (2, "ar2"), (3, "ar3")]

    async def test_hit_within_lifetime(
        self, service: AnalyticsService, gateway: AsyncMock, moving_clock, create_user
    ) -> None:
        user = await create_user()
        await service.get_cached_top_artists(user.id)

        moving_clock.now += timedelta(hours=24)
        artists = await service.get_cached_top_artists(user.id)

        assert gateway.fetch_top_artists.await_count == 1
        assert artists[0].image_url == "http://img/1"

    async def test_stale_cache_refetches(
        self, service: AnalyticsService, gateway: AsyncMock, moving_clock, create_user
    ) -> None:
        user = await create_user()
        await service.get_cached_top_artists(user.id)

        moving_clock.now += timedelta(hours=24, minutes=1)
        await service.get_cached_top_artists(user.id)

        assert gateway.fetch_top_artists.await_count == 2

    async def test_time_ranges_are_cached_separately(
        self, service: AnalyticsService, gateway: AsyncMock, create_user
    ) -> None:
        user = await create_user()
        await service.get_cached_top_artists(user.id, "short_term")
        await service.get_cached_top_artists(user.id, "long_term")

        assert gateway.fetch_top_artists.await_count == 2

    async def test_upstream_failure_on_miss_raises(
        self, service: AnalyticsService, gateway: AsyncMock, create_user
    ) -> None:
        user = await create_user()
        gateway.fetch_top_artists.return_value = None

        with pytest.raises(ExternalServiceException):
            await service.get_cached_top_artists(user.id)


class TestHistoryRankings:
    """Test rankings computed from the ledger."""

    @pytest.mark.parametrize(
        ("time_range", "days"),
        [("last_month", 30), ("LAST_6_MONTHS", 180), (None, None), ("bogus", None)],
    )
    async def test_window(
        self, service: AnalyticsService, mocker, now, time_range, days
    ) -> None:
        repository = mocker.patch.object(analytics_module, "ListeningHistoryRepository")
        repository.return_value.top_artists = AsyncMock(return_value=[])

        await service.top_artists_from_history("u1", time_range, limit=5)

        since = now - timedelta(days=days) if days is not None else None
        repository.return_value.top_artists.assert_awaited_once_with("u1", since, now, 5)

    async def test_top_tracks_uses_same_window(
        self, service: AnalyticsService, mocker, now
    ) -> None:
        repository = mocker.patch.object(analytics_module, "ListeningHistoryRepository")
        repository.return_value.top_tracks = AsyncMock(return_value=[])

        await service.top_tracks_from_history("u1", "last_month")

        repository.return_value.top_tracks.assert_awaited_once_with(
            "u1", now - timedelta(days=30), now, 10
        )
