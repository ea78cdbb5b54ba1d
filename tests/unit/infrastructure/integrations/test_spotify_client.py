"""Tests for the Spotify HTTP client.

Hey future me - HTTP is mocked with httpx.MockTransport, so the real request building (params,
headers, form bodies) runs and we assert on what actually went over the "wire".
"""

import base64
from collections.abc import Callable
from urllib.parse import parse_qs

import httpx
import pytest

from soundtrace.config.settings import SpotifySettings
from soundtrace.domain.exceptions import TokenRefreshException, ValidationException
from soundtrace.infrastructure.integrations.spotify_client import SpotifyClient
from soundtrace.infrastructure.rate_limiter import RateLimiter


@pytest.fixture
def spotify_settings() -> SpotifySettings:
    return SpotifySettings(
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://localhost:8080/callback",
    )


@pytest.fixture
def make_client(
    spotify_settings: SpotifySettings,
) -> Callable[[Callable[[httpx.Request], httpx.Response]], SpotifyClient]:
    """Build a client whose HTTP traffic goes to the given handler."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> SpotifyClient:
        client = SpotifyClient(spotify_settings, rate_limiter=RateLimiter.for_spotify())
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return client

    return _make


class TestAuthorizationUrl:
    """Test consent URL building."""

    def test_contains_client_and_scopes(self, spotify_settings: SpotifySettings) -> None:
        url = SpotifyClient(spotify_settings).get_authorization_url("state-123")
        query = parse_qs(url.split("?", 1)[1])

        assert url.startswith(SpotifyClient.AUTHORIZE_URL)
        assert query["client_id"] == ["client-id"]
        assert query["state"] == ["state-123"]
        assert query["response_type"] == ["code"]
        assert "user-read-recently-played" in query["scope"][0].split(" ")

    def test_requires_client_id(self) -> None:
        client = SpotifyClient(SpotifySettings(client_id=""))
        with pytest.raises(ValidationException):
            client.get_authorization_url("state")


class TestTokenEndpoint:
    """Test code exchange and refresh."""

    async def test_exchange_code_uses_basic_auth_and_form_body(self, make_client) -> None:
        seen: dict[str, httpx.Request] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(
                200, json={"access_token": "a", "refresh_token": "r", "expires_in": 3600}
            )

        client = make_client(handler)
        payload = await client.exchange_code("the-code")

        request = seen["request"]
        expected = base64.b64encode(b"client-id:client-secret").decode()
        form = parse_qs(request.content.decode())
        assert payload["access_token"] == "a"
        assert request.headers["Authorization"] == f"Basic {expected}"
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["the-code"]
        assert form["redirect_uri"] == ["http://localhost:8080/callback"]
        await client.close()

    async def test_refresh_token_success(self, make_client) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            form = parse_qs(request.content.decode())
            assert form["grant_type"] == ["refresh_token"]
            assert form["refresh_token"] == ["r-1"]
            return httpx.Response(200, json={"access_token": "a-2", "expires_in": 3600})

        client = make_client(handler)
        assert (await client.refresh_token("r-1"))["access_token"] == "a-2"
        await client.close()

    async def test_invalid_grant_requires_reauth(self, make_client) -> None:
        client = make_client(
            lambda request: httpx.Response(
                400, json={"error": "invalid_grant", "error_description": "Refresh token revoked"}
            )
        )

        with pytest.raises(TokenRefreshException) as exc_info:
            await client.refresh_token("dead")

        assert exc_info.value.error_code == "invalid_grant"
        assert exc_info.value.requires_reauth is True
        await client.close()

    async def test_server_error_raises_http_error(self, make_client) -> None:
        client = make_client(lambda request: httpx.Response(503))
        with pytest.raises(httpx.HTTPStatusError):
            await client.refresh_token("r-1")
        await client.close()


class TestWebApi:
    """Test Web API calls."""

    async def test_recently_played_sends_cursor_and_caps_limit(self, make_client) -> None:
        seen: dict[str, httpx.Request] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(200, json={"items": []})

        client = make_client(handler)
        await client.get_recently_played("token", after_ms=1714557600000, limit=500)

        request = seen["request"]
        assert request.url.path == "/v1/me/player/recently-played"
        assert request.url.params["after"] == "1714557600000"
        assert request.url.params["limit"] == "50"
        assert request.headers["Authorization"] == "Bearer token"
        await client.close()

    async def test_recently_played_without_cursor(self, make_client) -> None:
        seen: dict[str, httpx.Request] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(200, json={"items": []})

        client = make_client(handler)
        await client.get_recently_played("token")

        assert "after" not in seen["request"].url.params
        await client.close()

    async def test_retries_after_429(self, make_client) -> None:
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            if calls["count"] == 1:
                return httpx.Response(429, headers={"Retry-After": "0"})
            return httpx.Response(200, json={"id": "ar1", "name": "A", "genres": ["rock"]})

        client = make_client(handler)
        artist = await client.get_artist("ar1", "token")

        assert artist["genres"] == ["rock"]
        assert calls["count"] == 2
        await client.close()

    async def test_non_2xx_raises(self, make_client) -> None:
        client = make_client(lambda request: httpx.Response(404, json={"error": "nope"}))
        with pytest.raises(httpx.HTTPStatusError):
            await client.get_current_user("token")
        await client.close()

    async def test_top_artists_params(self, make_client) -> None:
        seen: dict[str, httpx.Request] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(200, json={"items": []})

        client = make_client(handler)
        await client.get_top_artists("token", "short_term", 50)

        assert seen["request"].url.path == "/v1/me/top/artists"
        assert seen["request"].url.params["time_range"] == "short_term"
        await client.close()
