"""Spotify HTTP client for the authorization-code flow and the Web API."""

import base64
import logging
from typing import Any, cast
from urllib.parse import urlencode

import httpx

from soundtrace.config.settings import SPOTIFY_MAX_PAGE_SIZE, SpotifySettings
from soundtrace.domain.exceptions import TokenRefreshException, ValidationException
from soundtrace.domain.ports import ISpotifyClient
from soundtrace.infrastructure.rate_limiter import RateLimiter, get_spotify_limiter

logger = logging.getLogger(__name__)


class SpotifyClient(ISpotifyClient):
    """HTTP client for Spotify OAuth and Web API operations.

    Every method returns raw JSON and raises httpx errors (or TokenRefreshException on the token
    endpoint). Converting failures into "absent" is the gateway's job, not this class's.
    """

    AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
    TOKEN_URL = "https://accounts.spotify.com/api/token"  # nosec B105 - public endpoint URL
    API_BASE_URL = "https://api.spotify.com/v1"

    # Hey future me, the HTTP client is NOT created here - it gets lazy-loaded in _get_client()
    # so constructing this outside a running event loop is safe.
    def __init__(
        self,
        settings: SpotifySettings,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.settings = settings
        self._rate_limiter = rate_limiter
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.request_timeout)
        return self._client

    # Always close (or use `async with`), otherwise connections leak until the process dies.
    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SpotifyClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def _basic_auth_header(self) -> str:
        raw = f"{self.settings.client_id}:{self.settings.client_secret}".encode()
        return "Basic " + base64.b64encode(raw).decode("ascii")

    # Hey future me - ALL Web API calls go through here! Token bucket before every request,
    # Retry-After honoured on 429, at most max_retries retries so a throttled account can't
    # pin the scheduler forever.
    async def _api_request(
        self,
        method: str,
        url: str,
        access_token: str,
        params: dict[str, Any] | None = None,
        max_retries: int = 3,
    ) -> httpx.Response:
        """Make rate-limited API request with automatic retry on 429.

        Raises:
            httpx.HTTPStatusError: When still rate limited after max_retries
        """
        client = await self._get_client()
        rate_limiter = self._rate_limiter or get_spotify_limiter()
        headers = {"Authorization": f"Bearer {access_token}"}

        for attempt in range(max_retries + 1):
            async with rate_limiter:
                response = await client.request(
                    method=method,
                    url=url,
                    params=params,
                    headers=headers,
                )

            if response.status_code != 429:
                return response

            retry_after_str = response.headers.get("Retry-After")
            retry_after = int(retry_after_str) if retry_after_str else None
            if attempt >= max_retries:
                raise httpx.HTTPStatusError(
                    f"Spotify API rate limited (429) after {max_retries} retries. "
                    f"Retry-After: {retry_after or 'not provided'} seconds.",
                    request=response.request,
                    response=response,
                )
            wait_time = await rate_limiter.handle_rate_limit_response(retry_after)
            logger.warning(
                "spotify.rate_limited",
                extra={"attempt": attempt + 1, "waited_seconds": wait_time, "url": url},
            )

        return response

    async def _get_json(
        self, path: str, access_token: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        response = await self._api_request(
            method="GET",
            url=f"{self.API_BASE_URL}{path}",
            access_token=access_token,
            params=params,
        )
        response.raise_for_status()
        return cast(dict[str, Any], response.json())

    def get_authorization_url(self, state: str) -> str:
        """Build the Spotify consent URL for the authorization-code flow.

        Raises:
            ValidationException: If client_id or redirect_uri is not configured
        """
        if not self.settings.client_id.strip():
            raise ValidationException("SPOTIFY__CLIENT_ID is not configured")
        if not self.settings.redirect_uri.strip():
            raise ValidationException("SPOTIFY__REDIRECT_URI is not configured")

        params = {
            "client_id": self.settings.client_id,
            "response_type": "code",
            "redirect_uri": self.settings.redirect_uri,
            "state": state,
            "scope": " ".join(self.settings.scopes),
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    # The code is single-use and expires after ~10 minutes, and redirect_uri MUST match the one
    # used for the consent URL. Token endpoint wants form encoding plus Basic client auth.
    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for access and refresh tokens.

        Raises:
            httpx.HTTPError: If the request fails
        """
        client = await self._get_client()
        response = await client.post(
            self.TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.settings.redirect_uri,
            },
            headers={
                "Authorization": self._basic_auth_header(),
                "Content-Type": "application/x-www-form-urlencoded",
            },
        )
        response.raise_for_status()
        return cast(dict[str, Any], response.json())

    # Listen up, Spotify MAY rotate the refresh token. If the response carries a new one, the old
    # one is dead - that's why the token manager serializes refreshes per account.
    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        """Exchange a refresh token for a new access token.

        Returns:
            Token response with access_token, token_type, expires_in and
            optionally a rotated refresh_token

        Raises:
            TokenRefreshException: If the refresh token is invalid or access was revoked
            httpx.HTTPStatusError: For other HTTP errors
        """
        client = await self._get_client()
        response = await client.post(
            self.TOKEN_URL,
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
            headers={
                "Authorization": self._basic_auth_header(),
                "Content-Type": "application/x-www-form-urlencoded",
            },
        )

        # invalid_grant must be checked BEFORE raise_for_status: it means re-link, not retry.
        if response.status_code == 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {}
            if error_data.get("error") == "invalid_grant":
                raise TokenRefreshException(
                    message=(
                        "Refresh token invalid: "
                        f"{error_data.get('error_description', 'revoked')}"
                    ),
                    error_code="invalid_grant",
                    http_status=400,
                )

        if response.status_code in (401, 403):
            raise TokenRefreshException(
                message="Spotify access denied. Please re-link the account.",
                error_code="access_denied",
                http_status=response.status_code,
            )

        response.raise_for_status()
        return cast(dict[str, Any], response.json())

    # Hey future me, `after` is an epoch-MILLISECOND cursor: Spotify returns plays strictly after
    # it. Without it we get the most recent 50 regardless of what we already stored.
    async def get_recently_played(
        self, access_token: str, after_ms: int | None = None, limit: int = SPOTIFY_MAX_PAGE_SIZE
    ) -> dict[str, Any]:
        """Get one page of the user's recently played tracks."""
        params: dict[str, Any] = {"limit": min(limit, SPOTIFY_MAX_PAGE_SIZE)}
        if after_ms is not None:
            params["after"] = after_ms
        return await self._get_json("/me/player/recently-played", access_token, params)

    async def get_artist(self, artist_id: str, access_token: str) -> dict[str, Any]:
        """Get full artist details (genres, images, popularity)."""
        return await self._get_json(f"/artists/{artist_id}", access_token)

    async def get_current_user(self, access_token: str) -> dict[str, Any]:
        """Get current authenticated user's profile (raw Spotify JSON)."""
        return await self._get_json("/me", access_token)

    async def get_top_artists(
        self, access_token: str, time_range: str = "medium_term", limit: int = 20
    ) -> dict[str, Any]:
        """Get the user's top artists for a Spotify time range."""
        return await self._get_json(
            "/me/top/artists",
            access_token,
            {"time_range": time_range, "limit": min(limit, 50)},
        )

    async def get_top_tracks(
        self, access_token: str, time_range: str = "medium_term", limit: int = 20
    ) -> dict[str, Any]:
        """Get the user's top tracks for a Spotify time range."""
        return await self._get_json(
            "/me/top/tracks",
            access_token,
            {"time_range": time_range, "limit": min(limit, 50)},
        )
