"""Repository implementations for domain entities."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import numpy as np
from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

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
from soundtrace.domain.exceptions import EntityNotFoundException
from soundtrace.domain.ports import (
    IAlbumRepository,
    IArtistRepository,
    ICachedTopArtistRepository,
    IDocumentRepository,
    ILinkedAccountRepository,
    IListeningHistoryRepository,
    ITrackRepository,
    IUserRepository,
)

from .models import (
    AlbumModel,
    ArtistModel,
    CachedTopArtistModel,
    GeneratedDocumentModel,
    LinkedAccountModel,
    ListeningHistoryModel,
    TrackGenreModel,
    TrackModel,
    UserModel,
    album_artists,
    ensure_utc_aware,
    track_artists,
)

logger = logging.getLogger(__name__)


def _aware(dt: datetime | None) -> datetime | None:
    return ensure_utc_aware(dt) if dt is not None else None


class UserRepository(IUserRepository):
    """Repository for application users."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def add(self, user: User) -> None:
        self.session.add(
            UserModel(
                id=user.id,
                email=user.email,
                display_name=user.display_name,
                created_at=user.created_at,
                updated_at=user.updated_at,
            )
        )
        await self.session.flush()

    async def get_by_id(self, user_id: str) -> User | None:
        model = await self.session.get(UserModel, user_id)
        return self._to_entity(model) if model else None

    # Hey future me - this is what the scheduler iterates! "Linked" means the account row exists
    # AND holds a non-empty access token, same rule as LinkedAccount.is_linked().
    async def list_with_linked_account(self) -> list[User]:
        stmt = (
            select(UserModel)
            .join(LinkedAccountModel, LinkedAccountModel.user_id == UserModel.id)
            .where(LinkedAccountModel.access_token.is_not(None))
            .where(LinkedAccountModel.access_token != "")
            .order_by(UserModel.created_at)
        )
        result = await self.session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars().all()]

    @staticmethod
    def _to_entity(model: UserModel) -> User:
        return User(
            id=model.id,
            email=model.email,
            display_name=model.display_name,
            created_at=ensure_utc_aware(model.created_at),
            updated_at=ensure_utc_aware(model.updated_at),
        )


class LinkedAccountRepository(ILinkedAccountRepository):
    """Repository for linked Spotify accounts and their OAuth tokens."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def _get_model(self, user_id: str) -> LinkedAccountModel | None:
        stmt = select(LinkedAccountModel).where(LinkedAccountModel.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_user_id(self, user_id: str) -> LinkedAccount | None:
        model = await self._get_model(user_id)
        return self._to_entity(model) if model else None

    async def add(self, account: LinkedAccount) -> None:
        model = LinkedAccountModel(id=account.id, user_id=account.user_id)
        self._apply(model, account)
        model.created_at = account.created_at
        self.session.add(model)
        await self.session.flush()

    async def update(self, account: LinkedAccount) -> None:
        model = await self._get_model(account.user_id)
        if model is None:
            raise EntityNotFoundException("LinkedAccount", account.user_id)
        self._apply(model, account)
        await self.session.flush()

    async def delete_by_user_id(self, user_id: str) -> bool:
        stmt = delete(LinkedAccountModel).where(LinkedAccountModel.user_id == user_id)
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    # Yo, the proactive refresh sweep uses this. Missing expiry counts as "expiring" because the
    # token manager treats it as expired anyway. Accounts without a refresh token can't be
    # refreshed, so they're left out.
    async def list_expiring_before(self, cutoff: datetime) -> list[LinkedAccount]:
        stmt = (
            select(LinkedAccountModel)
            .where(LinkedAccountModel.refresh_token.is_not(None))
            .where(LinkedAccountModel.refresh_token != "")
            .where(
                (LinkedAccountModel.token_expires_at < cutoff)
                | (LinkedAccountModel.token_expires_at.is_(None))
            )
        )
        result = await self.session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars().all()]

    @staticmethod
    def _apply(model: LinkedAccountModel, account: LinkedAccount) -> None:
        model.spotify_user_id = account.spotify_user_id
        model.spotify_email = account.spotify_email
        model.display_name = account.display_name
        model.access_token = account.access_token
        model.refresh_token = account.refresh_token
        model.token_expires_at = account.token_expires_at
        model.linked_at = account.linked_at
        model.last_sync_at = account.last_sync_at
        model.updated_at = account.updated_at

    @staticmethod
    def _to_entity(model: LinkedAccountModel) -> LinkedAccount:
        return LinkedAccount(
            id=model.id,
            user_id=model.user_id,
            spotify_user_id=model.spotify_user_id,
            spotify_email=model.spotify_email,
            display_name=model.display_name,
            access_token=model.access_token,
            refresh_token=model.refresh_token,
            token_expires_at=_aware(model.token_expires_at),
            linked_at=ensure_utc_aware(model.linked_at),
            last_sync_at=_aware(model.last_sync_at),
            created_at=ensure_utc_aware(model.created_at),
            updated_at=ensure_utc_aware(model.updated_at),
        )


class ArtistRepository(IArtistRepository):
    """Repository for Artist dimension rows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def get_by_id(self, artist_id: str) -> Artist | None:
        model = await self.session.get(ArtistModel, artist_id)
        return self._to_entity(model) if model else None

    async def add(self, artist: Artist) -> None:
        self.session.add(
            ArtistModel(
                id=artist.id,
                name=artist.name,
                image_url=artist.image_url,
                genres=list(artist.genres) if artist.genres is not None else None,
            )
        )
        await self.session.flush()

    async def update_genres(self, artist_id: str, genres: list[str]) -> None:
        model = await self.session.get(ArtistModel, artist_id)
        if model is None:
            raise EntityNotFoundException("Artist", artist_id)
        model.genres = list(genres)
        await self.session.flush()

    @staticmethod
    def _to_entity(model: ArtistModel) -> Artist:
        return Artist(
            id=model.id,
            name=model.name,
            image_url=model.image_url,
            genres=list(model.genres) if model.genres is not None else None,
        )


class AlbumRepository(IAlbumRepository):
    """Repository for Album dimension rows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def get_by_id(self, album_id: str) -> Album | None:
        # populate_existing: a row added earlier in this session has its link collection unloaded
        model = await self.session.get(AlbumModel, album_id, populate_existing=True)
        if model is None:
            return None
        return Album(
            id=model.id,
            name=model.name,
            artist_ids=[artist.id for artist in model.artists],
        )

    async def add(self, album: Album) -> None:
        self.session.add(AlbumModel(id=album.id, name=album.name))
        await self.session.flush()
        if album.artist_ids:
            await self.session.execute(
                insert(album_artists),
                [
                    {"album_id": album.id, "artist_id": artist_id, "position": position}
                    for position, artist_id in enumerate(dict.fromkeys(album.artist_ids))
                ],
            )


class TrackRepository(ITrackRepository):
    """Repository for Track dimension rows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def get_by_id(self, track_id: str) -> Track | None:
        model = await self.session.get(TrackModel, track_id, populate_existing=True)
        if model is None:
            return None
        return Track(
            id=model.id,
            name=model.name,
            duration_ms=model.duration_ms,
            album_id=model.album_id,
            artist_ids=[artist.id for artist in model.artists],
            genres=[row.genre for row in model.genre_rows],
        )

    # Listen up, the artist links and the genre snapshot are written ONCE here. There's no update
    # path on purpose: a track's genres reflect its artists at the moment we first saw it.
    async def add(self, track: Track) -> None:
        model = TrackModel(
            id=track.id,
            name=track.name,
            duration_ms=track.duration_ms,
            album_id=track.album_id,
        )
        model.genre_rows = [
            TrackGenreModel(track_id=track.id, genre=genre, position=position)
            for position, genre in enumerate(dict.fromkeys(track.genres))
        ]
        self.session.add(model)
        await self.session.flush()
        if track.artist_ids:
            await self.session.execute(
                insert(track_artists),
                [
                    {"track_id": track.id, "artist_id": artist_id, "position": position}
                    for position, artist_id in enumerate(dict.fromkeys(track.artist_ids))
                ],
            )


class ListeningHistoryRepository(IListeningHistoryRepository):
    """Append-only ledger of play events."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def exists(self, user_id: str, played_at: datetime) -> bool:
        stmt = (
            select(ListeningHistoryModel.id)
            .where(ListeningHistoryModel.user_id == user_id)
            .where(ListeningHistoryModel.played_at == played_at)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    # Hey future me - exists() + append() is check-then-insert, so two writers can still race.
    # The unique constraint catches that; we run the insert in a SAVEPOINT so the violation only
    # rolls back this one row and report it as a benign duplicate instead of failing the sync.
    async def append(self, entry: ListeningHistoryEntry) -> bool:
        nested = await self.session.begin_nested()
        try:
            self.session.add(
                ListeningHistoryModel(
                    id=entry.id,
                    user_id=entry.user_id,
                    track_id=entry.track_id,
                    played_at=entry.played_at,
                )
            )
            await self.session.flush()
        except IntegrityError:
            await nested.rollback()
            logger.info(
                "listening_history.duplicate_ignored",
                extra={"user_id": entry.user_id, "played_at": entry.played_at.isoformat()},
            )
            return False
        await nested.commit()
        return True

    async def most_recent_played_at(self, user_id: str) -> datetime | None:
        stmt = select(func.max(ListeningHistoryModel.played_at)).where(
            ListeningHistoryModel.user_id == user_id
        )
        result = await self.session.execute(stmt)
        return _aware(result.scalar_one_or_none())

    async def list_records(self, user_id: str) -> list[ListeningRecord]:
        stmt = (
            select(ListeningHistoryModel)
            .where(ListeningHistoryModel.user_id == user_id)
            .order_by(ListeningHistoryModel.played_at.desc())
        )
        result = await self.session.execute(stmt)
        return [self._to_record(model) for model in result.scalars().all()]

    async def count_for_user(self, user_id: str) -> int:
        stmt = select(func.count(ListeningHistoryModel.id)).where(
            ListeningHistoryModel.user_id == user_id
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def top_artists(
        self, user_id: str, since: datetime | None, until: datetime, limit: int
    ) -> list[TopArtistStat]:
        plays = func.count(ListeningHistoryModel.id).label("play_count")
        stmt = (
            select(ArtistModel.id, ArtistModel.name, ArtistModel.image_url, plays)
            .join(track_artists, track_artists.c.artist_id == ArtistModel.id)
            .join(
                ListeningHistoryModel,
                ListeningHistoryModel.track_id == track_artists.c.track_id,
            )
            .where(ListeningHistoryModel.user_id == user_id)
            .where(ListeningHistoryModel.played_at <= until)
            .group_by(ArtistModel.id, ArtistModel.name, ArtistModel.image_url)
            .order_by(plays.desc())
            .limit(limit)
        )
        if since is not None:
            stmt = stmt.where(ListeningHistoryModel.played_at >= since)
        result = await self.session.execute(stmt)
        return [
            TopArtistStat(
                artist_id=row.id,
                artist_name=row.name,
                image_url=row.image_url,
                play_count=int(row.play_count),
            )
            for row in result.all()
        ]

    async def top_tracks(
        self, user_id: str, since: datetime | None, until: datetime, limit: int
    ) -> list[TopTrackStat]:
        plays = func.count(ListeningHistoryModel.id).label("play_count")
        stmt = (
            select(TrackModel, plays)
            .join(ListeningHistoryModel, ListeningHistoryModel.track_id == TrackModel.id)
            .where(ListeningHistoryModel.user_id == user_id)
            .where(ListeningHistoryModel.played_at <= until)
            .group_by(TrackModel.id)
            .order_by(plays.desc())
            .limit(limit)
        )
        if since is not None:
            stmt = stmt.where(ListeningHistoryModel.played_at >= since)
        result = await self.session.execute(stmt)
        return [
            TopTrackStat(
                track_id=track.id,
                track_name=track.name,
                artist_names=", ".join(sorted(artist.name for artist in track.artists)),
                play_count=int(play_count),
            )
            for track, play_count in result.all()
        ]

    @staticmethod
    def _to_record(model: ListeningHistoryModel) -> ListeningRecord:
        track = model.track
        return ListeningRecord(
            played_at=ensure_utc_aware(model.played_at),
            track_id=track.id,
            track_name=track.name,
            duration_ms=track.duration_ms,
            album_name=track.album.name if track.album else None,
            artist_names=tuple(artist.name for artist in track.artists),
            genres=tuple(row.genre for row in track.genre_rows),
        )


class CachedTopArtistRepository(ICachedTopArtistRepository):
    """Repository for materialized top-artist rankings."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def list_for_user(self, user_id: str, time_range: str) -> list[CachedTopArtist]:
        stmt = (
            select(CachedTopArtistModel)
            .where(CachedTopArtistModel.user_id == user_id)
            .where(CachedTopArtistModel.time_range == time_range)
            .order_by(CachedTopArtistModel.rank)
        )
        result = await self.session.execute(stmt)
        return [
            CachedTopArtist(
                id=model.id,
                user_id=model.user_id,
                time_range=model.time_range,
                artist_id=model.artist_id,
                artist_name=model.artist_name,
                artist_image_url=model.artist_image_url,
                rank=model.rank,
                last_updated_at=ensure_utc_aware(model.last_updated_at),
            )
            for model in result.scalars().all()
        ]

    # Delete-then-insert, not upsert: after a refresh exactly one row set exists per range.
    async def replace(
        self, user_id: str, time_range: str, rows: list[CachedTopArtist]
    ) -> None:
        await self.session.execute(
            delete(CachedTopArtistModel)
            .where(CachedTopArtistModel.user_id == user_id)
            .where(CachedTopArtistModel.time_range == time_range)
        )
        self.session.add_all(
            [
                CachedTopArtistModel(
                    id=row.id,
                    user_id=row.user_id,
                    time_range=row.time_range,
                    artist_id=row.artist_id,
                    artist_name=row.artist_name,
                    artist_image_url=row.artist_image_url,
                    rank=row.rank,
                    last_updated_at=row.last_updated_at,
                )
                for row in rows
            ]
        )
        await self.session.flush()


class DocumentRepository(IDocumentRepository):
    """pgvector-backed store for generated documents."""

    # Embeddings are persisted with fixed precision so re-embedding identical text doesn't
    # produce float noise in the stored literal.
    EMBEDDING_PRECISION = 6

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def exists(self, user_id: str, summary_type: str, content: str) -> bool:
        stmt = (
            select(GeneratedDocumentModel.id)
            .where(GeneratedDocumentModel.user_id == user_id)
            .where(GeneratedDocumentModel.summary_type == summary_type)
            .where(GeneratedDocumentModel.content == content)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def add(self, document: GeneratedDocument) -> None:
        self.session.add(
            GeneratedDocumentModel(
                id=document.id,
                user_id=document.user_id,
                source=document.source,
                summary_type=document.summary_type,
                content=document.content,
                embedding=[round(float(v), self.EMBEDDING_PRECISION) for v in document.embedding],
                doc_metadata=dict(document.metadata),
                created_at=document.created_at,
            )
        )
        await self.session.flush()

    # Hey future me, metadata dates are ISO "YYYY-MM-DD" strings, so string comparison IS date
    # comparison. The JSON path accessor compiles to ->> on PostgreSQL and JSON_EXTRACT on SQLite.
    async def delete_older_than(
        self, user_id: str, summary_type: str, metadata_key: str, cutoff: str
    ) -> int:
        stmt = (
            delete(GeneratedDocumentModel)
            .where(GeneratedDocumentModel.user_id == user_id)
            .where(GeneratedDocumentModel.summary_type == summary_type)
            .where(GeneratedDocumentModel.doc_metadata[metadata_key].as_string() < cutoff)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    # Yo, the <-> operator only exists on PostgreSQL with the vector extension. Anywhere else
    # (the default SQLite file, tests) we load the user's whitelisted documents and rank them by
    # the same L2 distance in numpy.
    async def nearest(
        self,
        user_id: str,
        embedding: list[float],
        summary_types: list[str],
        limit: int,
    ) -> list[GeneratedDocument]:
        stmt = (
            select(GeneratedDocumentModel)
            .where(GeneratedDocumentModel.user_id == user_id)
            .where(GeneratedDocumentModel.summary_type.in_(summary_types))
        )
        if self.session.get_bind().dialect.name == "postgresql":
            stmt = stmt.order_by(GeneratedDocumentModel.embedding.l2_distance(embedding)).limit(
                limit
            )
            result = await self.session.execute(stmt)
            return [self._to_entity(model) for model in result.scalars().all()]

        stmt = stmt.order_by(GeneratedDocumentModel.created_at, GeneratedDocumentModel.id)
        result = await self.session.execute(stmt)
        models = list(result.scalars().all())
        if not models or limit <= 0:
            return []

        query = np.asarray(embedding, dtype=np.float64)
        vectors = np.stack([np.asarray(model.embedding, dtype=np.float64) for model in models])
        distances = np.linalg.norm(vectors - query, axis=1)
        ranked = np.argsort(distances, kind="stable")[:limit]
        return [self._to_entity(models[int(index)]) for index in ranked]

    async def list_for_user(
        self, user_id: str, summary_type: str | None = None
    ) -> list[GeneratedDocument]:
        stmt = (
            select(GeneratedDocumentModel)
            .where(GeneratedDocumentModel.user_id == user_id)
            .order_by(GeneratedDocumentModel.created_at)
        )
        if summary_type is not None:
            stmt = stmt.where(GeneratedDocumentModel.summary_type == summary_type)
        result = await self.session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars().all()]

    @staticmethod
    def _to_entity(model: GeneratedDocumentModel) -> GeneratedDocument:
        embedding: Any = model.embedding
        return GeneratedDocument(
            id=model.id,
            user_id=model.user_id,
            source=model.source,
            summary_type=model.summary_type,
            content=model.content,
            embedding=[float(v) for v in embedding] if embedding is not None else [],
            metadata=dict(model.doc_metadata or {}),
            created_at=ensure_utc_aware(model.created_at),
        )
