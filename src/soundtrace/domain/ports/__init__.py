"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from soundtrace.domain.entities import (
    Album,
    Artist,
    CachedTopArtist,
    GeneratedDocument,
    LinkedAccount,
    ListeningHistoryEntry,
    ListeningRecord,
    TopArtistStat,
    TopTrackStat,
    Track,
    User,
)


# Hey future me, these are PORTS (hexagonal architecture)! Services depend on these ABCs, the
# SQLAlchemy implementations live in infrastructure/persistence/repositories.py. Repositories
# NEVER commit - the caller's session_scope() owns the transaction.
class IUserRepository(ABC):
    """Repository interface for User entities."""

    @abstractmethod
    async def add(self, user: User) -> None:
        """Add a new user."""

    @abstractmethod
    async def get_by_id(self, user_id: str) -> User | None:
        """Get a user by id."""

    @abstractmethod
    async def list_with_linked_account(self) -> list[User]:
        """List users that have a linked Spotify account with an access token."""


class ILinkedAccountRepository(ABC):
    """Repository interface for linked Spotify accounts."""

    @abstractmethod
    async def get_by_user_id(self, user_id: str) -> LinkedAccount | None:
        """Get the linked account of a user."""

    @abstractmethod
    async def add(self, account: LinkedAccount) -> None:
        """Add a new linked account."""

    @abstractmethod
    async def update(self, account: LinkedAccount) -> None:
        """Persist all mutable fields of an existing account."""

    @abstractmethod
    async def delete_by_user_id(self, user_id: str) -> bool:
        """Delete the linked account of a user. Returns False if none existed."""

    @abstractmethod
    async def list_expiring_before(self, cutoff: datetime) -> list[LinkedAccount]:
        """List linked accounts whose token expires before cutoff."""


class IArtistRepository(ABC):
    """Repository interface for Artist dimension rows."""

    @abstractmethod
    async def get_by_id(self, artist_id: str) -> Artist | None:
        """Get an artist by Spotify id."""

    @abstractmethod
    async def add(self, artist: Artist) -> None:
        """Insert a new artist."""

    @abstractmethod
    async def update_genres(self, artist_id: str, genres: list[str]) -> None:
        """Replace the genre list of an artist."""


class IAlbumRepository(ABC):
    """Repository interface for Album dimension rows."""

    @abstractmethod
    async def get_by_id(self, album_id: str) -> Album | None:
        """Get an album by Spotify id."""

    @abstractmethod
    async def add(self, album: Album) -> None:
        """Insert a new album with its artist links."""


class ITrackRepository(ABC):
    """Repository interface for Track dimension rows."""

    @abstractmethod
    async def get_by_id(self, track_id: str) -> Track | None:
        """Get a track by Spotify id."""

    @abstractmethod
    async def add(self, track: Track) -> None:
        """Insert a new track with its artist links and genre snapshot."""


class IListeningHistoryRepository(ABC):
    """Append-only ledger of play events."""

    @abstractmethod
    async def exists(self, user_id: str, played_at: datetime) -> bool:
        """Check if a play at this instant is already recorded for the user."""

    @abstractmethod
    async def append(self, entry: ListeningHistoryEntry) -> bool:
        """Insert a play event. Returns False if the (user, played_at) key already existed."""

    @abstractmethod
    async def most_recent_played_at(self, user_id: str) -> datetime | None:
        """Get the watermark: the latest played_at stored for the user."""

    @abstractmethod
    async def list_records(self, user_id: str) -> list[ListeningRecord]:
        """All plays of a user joined with track details, newest first."""

    @abstractmethod
    async def count_for_user(self, user_id: str) -> int:
        """Number of stored plays for the user."""

    @abstractmethod
    async def top_artists(
        self, user_id: str, since: datetime | None, until: datetime, limit: int
    ) -> list[TopArtistStat]:
        """Artists ranked by play count within a window."""

    @abstractmethod
    async def top_tracks(
        self, user_id: str, since: datetime | None, until: datetime, limit: int
    ) -> list[TopTrackStat]:
        """Tracks ranked by play count within a window."""


class ICachedTopArtistRepository(ABC):
    """Materialized top-artist rankings."""

    @abstractmethod
    async def list_for_user(self, user_id: str, time_range: str) -> list[CachedTopArtist]:
        """Cached rows ordered by rank."""

    @abstractmethod
    async def replace(
        self, user_id: str, time_range: str, rows: list[CachedTopArtist]
    ) -> None:
        """Delete the existing row set for (user, time_range) and insert rows."""


class IDocumentRepository(ABC):
    """Vector-capable store for generated documents."""

    @abstractmethod
    async def exists(self, user_id: str, summary_type: str, content: str) -> bool:
        """Check if an identical document is already stored."""

    @abstractmethod
    async def add(self, document: GeneratedDocument) -> None:
        """Insert a document."""

    @abstractmethod
    async def delete_older_than(
        self, user_id: str, summary_type: str, metadata_key: str, cutoff: str
    ) -> int:
        """Delete documents whose ISO date in metadata[metadata_key] sorts before cutoff."""

    @abstractmethod
    async def nearest(
        self,
        user_id: str,
        embedding: list[float],
        summary_types: list[str],
        limit: int,
    ) -> list[GeneratedDocument]:
        """Nearest documents by vector distance, ascending."""

    @abstractmethod
    async def list_for_user(
        self, user_id: str, summary_type: str | None = None
    ) -> list[GeneratedDocument]:
        """Stored documents of a user, optionally filtered by type."""


class IEmbeddingService(ABC):
    """Turns text into a fixed-length vector."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one text."""


class ICompletionService(ABC):
    """Single-turn text completion."""

    @abstractmethod
    async def complete(self, prompt: str, system: str | None = None) -> str:
        """Return the model's reply to prompt."""


class IReadOnlyQueryExecutor(ABC):
    """Executes vetted read-only SQL."""

    @abstractmethod
    async def fetch_all(self, sql: str) -> list[dict[str, Any]]:
        """Run a SELECT and return rows as dicts."""


class ISpotifyClient(ABC):
    """Port for the Spotify OAuth and Web API HTTP client.

    Methods take raw access tokens and return raw JSON; token lifecycle is the
    token manager's job, not the client's.
    """

    @abstractmethod
    def get_authorization_url(self, state: str) -> str:
        """Build the user-facing consent URL."""

    @abstractmethod
    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for tokens."""

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        """Exchange a refresh token for a new access token."""

    @abstractmethod
    async def get_recently_played(
        self, access_token: str, after_ms: int | None = None, limit: int = 50
    ) -> dict[str, Any]:
        """Fetch one page of recently played tracks."""

    @abstractmethod
    async def get_artist(self, artist_id: str, access_token: str) -> dict[str, Any]:
        """Fetch full artist details."""

    @abstractmethod
    async def get_current_user(self, access_token: str) -> dict[str, Any]:
        """Fetch the profile of the token's owner."""

    @abstractmethod
    async def get_top_artists(
        self, access_token: str, time_range: str = "medium_term", limit: int = 20
    ) -> dict[str, Any]:
        """Fetch the user's top artists."""

    @abstractmethod
    async def get_top_tracks(
        self, access_token: str, time_range: str = "medium_term", limit: int = 20
    ) -> dict[str, Any]:
        """Fetch the user's top tracks."""


__all__ = [
    "IAlbumRepository",
    "IArtistRepository",
    "ICachedTopArtistRepository",
    "ICompletionService",
    "IDocumentRepository",
    "IEmbeddingService",
    "ILinkedAccountRepository",
    "IListeningHistoryRepository",
    "IReadOnlyQueryExecutor",
    "ISpotifyClient",
    "ITrackRepository",
    "IUserRepository",
]
