"""Listening analytics: cached Spotify top artists and rankings from our own ledger."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from soundtrace.application.services.music_gateway import SpotifyGateway
from soundtrace.application.services.token_manager import SessionScope
from soundtrace.config.settings import AnalyticsSettings
from soundtrace.domain.entities import (
    CachedTopArtist,
    HistoryRange,
    TopArtistStat,
    TopTrackStat,
)
from soundtrace.domain.exceptions import ExternalServiceException
from soundtrace.infrastructure.persistence.repositories import (
    CachedTopArtistRepository,
    ListeningHistoryRepository,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class AnalyticsService:
    """Top artists and tracks for display."""

    def __init__(
        self,
        session_scope: SessionScope,
        gateway: SpotifyGateway,
        settings: AnalyticsSettings,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._session_scope = session_scope
        self._gateway = gateway
        self._settings = settings
        self._clock = clock

    @property
    def cache_lifetime(self) -> timedelta:
        return timedelta(hours=self._settings.top_artists_cache_hours)

    # Hey future me, the cached ranking is a materialized copy of Spotify's /me/top/artists. A row
    # set is fresh while it's at most 24h old (exactly 24h still counts as fresh). On a miss we
    # fetch the full 50, replace the whole row set and answer from what we just fetched.
    async def get_cached_top_artists(
        self, user_id: str, time_range: str = "medium_term", limit: int = 20
    ) -> list[TopArtistStat]:
        """Spotify's top artists for the user, served from a 24h cache.

        Raises:
            ExternalServiceException: Cache is stale and Spotify gave no result
        """
        now = self._clock()
        async with self._session_scope() as session:
            cached = await CachedTopArtistRepository(session).list_for_user(user_id, time_range)

        if cached and cached[0].is_fresh(now, self.cache_lifetime):
            logger.info(
                "analytics.top_artists.cache_hit",
                extra={"user_id": user_id, "time_range": time_range},
            )
            return [
                TopArtistStat(
                    artist_id=row.artist_id,
                    artist_name=row.artist_name,
                    play_count=0,
                    image_url=row.artist_image_url,
                )
                for row in cached[:limit]
            ]

        logger.info(
            "analytics.top_artists.cache_miss",
            extra={"user_id": user_id, "time_range": time_range, "cached_rows": len(cached)},
        )
        artists = await self._gateway.fetch_top_artists(
            user_id, time_range, self._settings.top_artists_fetch_limit
        )
        if artists is None:
            raise ExternalServiceException("spotify", "could not fetch top artists")

        rows = [
            CachedTopArtist(
                user_id=user_id,
                time_range=time_range,
                artist_id=artist.id,
                artist_name=artist.name,
                artist_image_url=artist.image_url,
                rank=rank,
                last_updated_at=now,
            )
            for rank, artist in enumerate(artists, start=1)
        ]
        async with self._session_scope() as session:
            await CachedTopArtistRepository(session).replace(user_id, time_range, rows)

        return [
            TopArtistStat(
                artist_id=artist.id,
                artist_name=artist.name,
                play_count=0,
                image_url=artist.image_url,
            )
            for artist in artists[:limit]
        ]

    def _window(self, time_range: str | None) -> tuple[datetime | None, datetime]:
        until = self._clock()
        days = HistoryRange.parse(time_range).days
        since = until - timedelta(days=days) if days is not None else None
        return since, until

    async def top_artists_from_history(
        self, user_id: str, time_range: str | None = None, limit: int = 10
    ) -> list[TopArtistStat]:
        """Artists ranked by plays in our ledger (last_month, last_6_months, all_time)."""
        since, until = self._window(time_range)
        async with self._session_scope() as session:
            return await ListeningHistoryRepository(session).top_artists(
                user_id, since, until, limit
            )

    async def top_tracks_from_history(
        self, user_id: str, time_range: str | None = None, limit: int = 10
    ) -> list[TopTrackStat]:
        """Tracks ranked by plays in our ledger (last_month, last_6_months, all_time)."""
        since, until = self._window(time_range)
        async with self._session_scope() as session:
            return await ListeningHistoryRepository(session).top_tracks(
                user_id, since, until, limit
            )
