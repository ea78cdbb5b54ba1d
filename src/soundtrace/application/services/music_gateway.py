"""Token-aware Spotify gateway that turns upstream failures into None.

Yo, this is the isolation boundary between flaky upstream I/O and the deterministic sync logic.
Every method:
1. asks the TokenManager for a token (None -> return None, no call made)
2. calls the raw SpotifyClient
3. parses the JSON into DTOs
and converts ANY transport error, non-2xx status, token failure or malformed body into None.
Callers treat None as "try again next cycle", never as a crash.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

import httpx

from soundtrace.application.cache import BaseCache
from soundtrace.application.services.token_manager import TokenManager
from soundtrace.config.settings import SPOTIFY_MAX_PAGE_SIZE
from soundtrace.domain.dtos import (
    ArtistDetails,
    RecentlyPlayedPage,
    SpotifyProfile,
    TrackDTO,
)
from soundtrace.domain.exceptions import TokenRefreshException
from soundtrace.domain.ports import ISpotifyClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that mean "no usable result this time". Anything else is a programming error and
# propagates.
_ABSENT_ERRORS = (
    httpx.HTTPError,
    TokenRefreshException,
    KeyError,
    ValueError,
    TypeError,
)


def to_epoch_millis(value: datetime) -> int:
    """Convert an aware datetime into Spotify's epoch-millisecond cursor format."""
    return int(value.timestamp() * 1000)


class SpotifyGateway:
    """Spotify Web API access on behalf of a user."""

    def __init__(
        self,
        client: ISpotifyClient,
        token_manager: TokenManager,
        profile_cache: BaseCache[str, SpotifyProfile] | None = None,
        page_size: int = SPOTIFY_MAX_PAGE_SIZE,
    ) -> None:
        self._client = client
        self._token_manager = token_manager
        self._profile_cache = profile_cache
        self.page_size = min(page_size, SPOTIFY_MAX_PAGE_SIZE)

    async def _call(
        self,
        operation: str,
        user_id: str,
        request: Callable[[str], Awaitable[dict[str, Any]]],
        parse: Callable[[dict[str, Any]], T],
        **context: Any,
    ) -> T | None:
        token = await self._token_manager.get_valid_access_token(user_id)
        if token is None:
            logger.info(
                f"spotify.{operation}.skipped",
                extra={"user_id": user_id, "reason": "no_token", **context},
            )
            return None

        try:
            return parse(await request(token))
        except _ABSENT_ERRORS as e:
            logger.warning(
                f"spotify.{operation}.failed",
                extra={
                    "user_id": user_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    **context,
                },
            )
            return None

    async def fetch_recently_played(
        self, user_id: str, after: datetime | None = None
    ) -> RecentlyPlayedPage | None:
        """Fetch one page (up to 50 plays) strictly after the given instant.

        after=None means "the most recent page regardless of what we already stored".
        """
        after_ms = to_epoch_millis(after) if after is not None else None
        return await self._call(
            "recently_played",
            user_id,
            lambda token: self._client.get_recently_played(
                token, after_ms=after_ms, limit=self.page_size
            ),
            RecentlyPlayedPage.from_api,
            after_ms=after_ms,
        )

    async def fetch_artist_details(
        self, user_id: str, artist_id: str
    ) -> ArtistDetails | None:
        """Fetch full artist details (genres live only on the full object)."""
        return await self._call(
            "artist_details",
            user_id,
            lambda token: self._client.get_artist(artist_id, token),
            ArtistDetails.from_api,
            artist_id=artist_id,
        )

    # Hey future me, the profile barely ever changes, so it's cached per user for
    # profile_cache_ttl_seconds. Failures are NOT cached, the next call tries again.
    async def fetch_current_profile(self, user_id: str) -> SpotifyProfile | None:
        """Fetch the Spotify profile of the user's linked account."""
        if self._profile_cache is not None:
            cached = await self._profile_cache.get(user_id)
            if cached is not None:
                return cached

        profile = await self._call(
            "profile",
            user_id,
            self._client.get_current_user,
            SpotifyProfile.from_api,
        )
        if profile is not None and self._profile_cache is not None:
            await self._profile_cache.set(user_id, profile)
        return profile

    async def fetch_top_artists(
        self, user_id: str, time_range: str = "medium_term", limit: int = 20
    ) -> list[ArtistDetails] | None:
        """Fetch the user's top artists as ranked by Spotify."""
        return await self._call(
            "top_artists",
            user_id,
            lambda token: self._client.get_top_artists(token, time_range, limit),
            lambda data: [ArtistDetails.from_api(item) for item in data["items"]],
            time_range=time_range,
        )

    async def fetch_top_tracks(
        self, user_id: str, time_range: str = "medium_term", limit: int = 20
    ) -> list[TrackDTO] | None:
        """Fetch the user's top tracks as ranked by Spotify."""
        return await self._call(
            "top_tracks",
            user_id,
            lambda token: self._client.get_top_tracks(token, time_range, limit),
            lambda data: [TrackDTO.from_api(item) for item in data["items"]],
            time_range=time_range,
        )
