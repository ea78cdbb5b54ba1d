"""SQLAlchemy ORM models for Soundtrace."""

import uuid
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Must match settings.openai.embedding_dimensions (text-embedding-ada-002 → 1536)
EMBEDDING_DIMENSIONS = 1536


# Hey future me, utc_now() ensures ALL timestamps are UTC! Never use datetime.now() without
# timezone - naive datetimes break comparisons against the token expiry and the watermark.
def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# SQLite doesn't preserve timezone info! UTC datetimes come back naive. Run every datetime read
# from the DB through this before comparing it with an aware datetime.
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models.

    All models inherit from this to use the same metadata registry.
    """

    pass


# Yo, association tables are plain Tables (no ORM class) because they carry no attributes. The
# ownership is one-directional: tracks/albums point at artists, artists don't know their tracks.
track_artists = Table(
    "track_artists",
    Base.metadata,
    Column("track_id", String(64), ForeignKey("tracks.id", ondelete="CASCADE"), primary_key=True),
    Column("artist_id", String(64), ForeignKey("artists.id", ondelete="CASCADE"), primary_key=True),
    Column("position", Integer, nullable=False, default=0),
)

album_artists = Table(
    "album_artists",
    Base.metadata,
    Column("album_id", String(64), ForeignKey("albums.id", ondelete="CASCADE"), primary_key=True),
    Column("artist_id", String(64), ForeignKey("artists.id", ondelete="CASCADE"), primary_key=True),
    Column("position", Integer, nullable=False, default=0),
)


class UserModel(Base):
    """Application user."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    linked_account: Mapped["LinkedAccountModel | None"] = relationship(
        back_populates="user", uselist=False, cascade="all, delete-orphan"
    )


# Listen up, one row per user (unique user_id). Deleting the account (unlink) must NOT touch the
# listening history - there's deliberately no FK from history to this table.
class LinkedAccountModel(Base):
    """Spotify account linked to a user, with its OAuth tokens."""

    __tablename__ = "linked_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    spotify_user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    spotify_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # OAuth tokens (stored as-is; protect the database accordingly)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    linked_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    user: Mapped[UserModel] = relationship(back_populates="linked_account")

    __table_args__ = (Index("ix_linked_accounts_expires", "token_expires_at"),)


# Hey future me, dimension tables are keyed by the SPOTIFY id, not a surrogate. That makes
# find-or-create a primary key lookup and concurrent inserts of the same id a PK violation.
class ArtistModel(Base):
    """Artist dimension row."""

    __tablename__ = "artists"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    # NULL = never enriched, [] = enriched but Spotify has no genres for this artist
    genres: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class AlbumModel(Base):
    """Album dimension row."""

    __tablename__ = "albums"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )

    artists: Mapped[list[ArtistModel]] = relationship(
        secondary=album_artists,
        order_by=album_artists.c.position,
        lazy="selectin",
        viewonly=True,
    )


class TrackModel(Base):
    """Track dimension row."""

    __tablename__ = "tracks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    album_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("albums.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )

    album: Mapped[AlbumModel | None] = relationship(lazy="selectin")
    artists: Mapped[list[ArtistModel]] = relationship(
        secondary=track_artists,
        order_by=track_artists.c.position,
        lazy="selectin",
        viewonly=True,
    )
    genre_rows: Mapped[list["TrackGenreModel"]] = relationship(
        cascade="all, delete-orphan", lazy="selectin", order_by="TrackGenreModel.position"
    )


class TrackGenreModel(Base):
    """Genre snapshot of a track, taken from its artists at creation time."""

    __tablename__ = "track_genres"

    track_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tracks.id", ondelete="CASCADE"), primary_key=True
    )
    genre: Mapped[str] = mapped_column(String(255), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# Yo, THE fact table. The unique constraint on (user_id, played_at) is the real dedup guarantee;
# the exists() check before insert only saves a round trip in the common case.
class ListeningHistoryModel(Base):
    """One play event."""

    __tablename__ = "listening_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    track_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tracks.id"), nullable=False, index=True
    )
    played_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)

    track: Mapped[TrackModel] = relationship(lazy="selectin")

    __table_args__ = (
        UniqueConstraint("user_id", "played_at", name="uq_listening_history_user_played_at"),
        Index("ix_listening_history_user_played_at", "user_id", "played_at"),
    )


class CachedTopArtistModel(Base):
    """Materialized top-artist ranking row."""

    __tablename__ = "cached_top_artists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    time_range: Mapped[str] = mapped_column(String(32), nullable=False)
    artist_id: Mapped[str] = mapped_column(String(64), nullable=False)
    artist_name: Mapped[str] = mapped_column(String(512), nullable=False)
    artist_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    last_updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        Index("ix_cached_top_artists_user_range", "user_id", "time_range"),
    )


# Hey future me, `metadata` is reserved on declarative classes, hence doc_metadata mapped onto a
# column literally named "metadata". The embedding goes through pgvector's Vector type, which
# serializes to a "[0.1,0.2,...]" literal, so SQLite can store it too (no distance queries there).
class GeneratedDocumentModel(Base):
    """Embedded summary document."""

    __tablename__ = "generated_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="spotify")
    summary_type: Mapped[str] = mapped_column(String(64), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[Any] = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=False)
    doc_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("ix_generated_documents_user_type", "user_id", "summary_type"),
    )
