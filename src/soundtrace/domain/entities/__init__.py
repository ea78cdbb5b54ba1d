"""Domain entities."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4


def _new_id() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


# Hey future me, SummaryType is the tag stored on every generated document! Retrieval filters on
# it and the retention sweep deletes by it, so the string values ARE the storage format. Don't
# rename a value without a data migration.
class SummaryType(str, Enum):
    """Kind of generated RAG document."""

    MONTHLY = "monthly"
    MONTHLY_STRUCTURED = "monthly_structured"
    DAILY = "daily"
    WEEKLY = "weekly"
    HOURLY_PATTERNS = "hourly_patterns"
    TOP_TRACKS_GLOBAL = "top_tracks_global"


class SpotifyTimeRange(str, Enum):
    """Time range accepted by Spotify's /me/top endpoints."""

    SHORT_TERM = "short_term"
    MEDIUM_TERM = "medium_term"
    LONG_TERM = "long_term"


class HistoryRange(str, Enum):
    """Time range for rankings computed from our own listening history."""

    LAST_MONTH = "last_month"
    LAST_6_MONTHS = "last_6_months"
    ALL_TIME = "all_time"

    @property
    def days(self) -> int | None:
        """Window length in days, None for all time."""
        return {
            HistoryRange.LAST_MONTH: 30,
            HistoryRange.LAST_6_MONTHS: 180,
        }.get(self)

    @classmethod
    def parse(cls, value: str | None) -> "HistoryRange":
        """Map a loose time-range string to a range, unknown values mean all time."""
        if value is None:
            return cls.ALL_TIME
        try:
            return cls(value.lower())
        except ValueError:
            return cls.ALL_TIME


@dataclass
class User:
    """Identity anchor. Owns at most one linked Spotify account."""

    email: str
    display_name: str | None = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def __post_init__(self) -> None:
        if not self.email or "@" not in self.email:
            raise ValueError("User email must be a valid address")


# Listen up, LinkedAccount holds the OAuth state for one user's Spotify account. The token manager
# is the only writer of the token fields after linking. is_linked() is purely "do we have an access
# token" - an expired token still counts as linked because a refresh may revive it.
@dataclass
class LinkedAccount:
    """Spotify account linked to a user."""

    user_id: str
    access_token: str | None
    refresh_token: str | None = None
    token_expires_at: datetime | None = None
    spotify_user_id: str | None = None
    spotify_email: str | None = None
    display_name: str | None = None
    linked_at: datetime = field(default_factory=_now)
    last_sync_at: datetime | None = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def is_linked(self) -> bool:
        """Check if the account holds a usable access token."""
        return bool(self.access_token)

    def is_expired(self, now: datetime, buffer_seconds: int = 60) -> bool:
        """Check if the access token must be refreshed before use.

        A missing expiry counts as expired.
        """
        if self.token_expires_at is None:
            return True
        return self.token_expires_at - timedelta(seconds=buffer_seconds) < now

    def expires_within(self, now: datetime, window: timedelta) -> bool:
        """Check if the token expires before now + window."""
        if self.token_expires_at is None:
            return True
        return self.token_expires_at < now + window

    def update_tokens(
        self,
        access_token: str,
        expires_at: datetime,
        refresh_token: str | None = None,
    ) -> None:
        """Store a fresh access token. Keeps the old refresh token if none is given."""
        self.access_token = access_token
        self.token_expires_at = expires_at
        if refresh_token:
            self.refresh_token = refresh_token
        self.updated_at = _now()


@dataclass
class Artist:
    """Artist keyed by its Spotify id.

    genres is None (or empty) until enrichment fetched the artist details.
    """

    id: str
    name: str
    image_url: str | None = None
    genres: list[str] | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Artist id cannot be empty")

    def needs_genres(self) -> bool:
        """Check if genre enrichment should run for this artist."""
        return not self.genres


@dataclass
class Album:
    """Album keyed by its Spotify id. artist_ids come from the first track seen on it."""

    id: str
    name: str
    artist_ids: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Album id cannot be empty")


# Yo, Track.genres is a SNAPSHOT taken when the track row is created: the union of its artists'
# genres at that moment. Later artist enrichment does not touch it.
@dataclass
class Track:
    """Track keyed by its Spotify id."""

    id: str
    name: str
    duration_ms: int = 0
    album_id: str | None = None
    artist_ids: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Track id cannot be empty")
        if self.duration_ms < 0:
            raise ValueError("Duration cannot be negative")


@dataclass
class ListeningHistoryEntry:
    """One play event. Immutable once stored; (user_id, played_at) is unique."""

    user_id: str
    track_id: str
    played_at: datetime
    id: str = field(default_factory=_new_id)


# Hey future me, ListeningRecord is a READ model: one play joined with everything the summaries
# need (track, album, artist names, genre snapshot). The history repository builds these so the
# document generator never touches the ORM.
@dataclass(frozen=True)
class ListeningRecord:
    """A play event joined with its track details."""

    played_at: datetime
    track_id: str
    track_name: str
    duration_ms: int = 0
    album_name: str | None = None
    artist_names: tuple[str, ...] = ()
    genres: tuple[str, ...] = ()


@dataclass
class CachedTopArtist:
    """One row of a materialized per-user top-artist ranking."""

    user_id: str
    time_range: str
    artist_id: str
    artist_name: str
    rank: int
    last_updated_at: datetime
    artist_image_url: str | None = None
    id: str = field(default_factory=_new_id)

    def is_fresh(self, now: datetime, max_age: timedelta) -> bool:
        """Check if this row set is still within its cache lifetime."""
        return now - self.last_updated_at <= max_age


@dataclass
class GeneratedDocument:
    """An embedded, retrievable summary document."""

    user_id: str
    summary_type: str
    content: str
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)
    source: str = "spotify"
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)


@dataclass
class TopArtistStat:
    """Artist play count computed from listening history."""

    artist_id: str
    artist_name: str
    play_count: int
    image_url: str | None = None


@dataclass
class TopTrackStat:
    """Track play count computed from listening history."""

    track_id: str
    track_name: str
    artist_names: str
    play_count: int


__all__ = [
    "Album",
    "Artist",
    "CachedTopArtist",
    "GeneratedDocument",
    "HistoryRange",
    "LinkedAccount",
    "ListeningHistoryEntry",
    "ListeningRecord",
    "SpotifyTimeRange",
    "SummaryType",
    "TopArtistStat",
    "TopTrackStat",
    "Track",
    "User",
]
