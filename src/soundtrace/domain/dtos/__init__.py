"""
Data Transfer Objects for Spotify Web API payloads.

Hey future me - these are "dumb data carriers" between the HTTP client and the services.
The client hands back raw JSON dicts, the gateway turns them into these DTOs via from_api(),
and only the dimension service turns DTOs into entities. A malformed payload fails HERE
(KeyError/ValueError/TypeError) which the gateway converts into "absent".

Flow: Spotify JSON → DTO → DimensionService → Repository → Entity
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from soundtrace.domain.dtos.answers import (
    AnswerResponse,
    GenreStat,
    InsightResponse,
    TrackInsight,
    TrackStat,
)


def parse_spotify_timestamp(value: str) -> datetime:
    """Parse Spotify's ISO-8601 timestamps ("2024-05-01T10:00:00.123Z") into aware UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _first_image_url(images: list[dict[str, Any]] | None) -> str | None:
    if not images:
        return None
    return images[0].get("url")


@dataclass
class ArtistDTO:
    """Artist as embedded in a track payload (no genres on simplified objects)."""

    id: str
    name: str
    image_url: str | None = None
    genres: list[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ArtistDTO":
        return cls(
            id=data["id"],
            name=data["name"],
            image_url=_first_image_url(data.get("images")),
            genres=list(data.get("genres") or []),
        )


@dataclass
class ArtistDetails:
    """Full artist object from GET /artists/{id}."""

    id: str
    name: str
    genres: list[str] = field(default_factory=list)
    image_url: str | None = None
    popularity: int | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ArtistDetails":
        return cls(
            id=data["id"],
            name=data["name"],
            genres=list(data.get("genres") or []),
            image_url=_first_image_url(data.get("images")),
            popularity=data.get("popularity"),
        )


@dataclass
class AlbumDTO:
    """Album as embedded in a track payload."""

    id: str
    name: str
    image_url: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "AlbumDTO":
        return cls(
            id=data["id"],
            name=data["name"],
            image_url=_first_image_url(data.get("images")),
        )


@dataclass
class TrackDTO:
    """Track with its album and artists."""

    id: str
    name: str
    duration_ms: int
    artists: list[ArtistDTO] = field(default_factory=list)
    album: AlbumDTO | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "TrackDTO":
        album = data.get("album")
        return cls(
            id=data["id"],
            name=data["name"],
            duration_ms=int(data.get("duration_ms") or 0),
            artists=[ArtistDTO.from_api(a) for a in data.get("artists") or []],
            album=AlbumDTO.from_api(album) if album else None,
        )


@dataclass
class PlayedItem:
    """One entry of the recently-played feed."""

    track: TrackDTO
    played_at: datetime

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PlayedItem":
        return cls(
            track=TrackDTO.from_api(data["track"]),
            played_at=parse_spotify_timestamp(data["played_at"]),
        )


@dataclass
class RecentlyPlayedPage:
    """One page of GET /me/player/recently-played."""

    items: list[PlayedItem] = field(default_factory=list)
    next_url: str | None = None
    cursor_after: str | None = None
    cursor_before: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "RecentlyPlayedPage":
        cursors = data.get("cursors") or {}
        return cls(
            items=[PlayedItem.from_api(item) for item in data.get("items") or []],
            next_url=data.get("next"),
            cursor_after=cursors.get("after"),
            cursor_before=cursors.get("before"),
        )


@dataclass
class TokenResponse:
    """OAuth token endpoint response."""

    access_token: str
    expires_in: int
    refresh_token: str | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "TokenResponse":
        return cls(
            access_token=data["access_token"],
            expires_in=int(data.get("expires_in", 3600)),
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope"),
        )


@dataclass
class SpotifyProfile:
    """Current user profile from GET /me."""

    id: str
    display_name: str | None = None
    email: str | None = None
    country: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SpotifyProfile":
        return cls(
            id=data["id"],
            display_name=data.get("display_name"),
            email=data.get("email"),
            country=data.get("country"),
        )


__all__ = [
    "AlbumDTO",
    "AnswerResponse",
    "ArtistDTO",
    "ArtistDetails",
    "GenreStat",
    "InsightResponse",
    "PlayedItem",
    "RecentlyPlayedPage",
    "SpotifyProfile",
    "TokenResponse",
    "TrackDTO",
    "TrackInsight",
    "TrackStat",
    "parse_spotify_timestamp",
]
