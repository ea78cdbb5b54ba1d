"""Dimension store - find-or-create for artists, albums and tracks.

Hey future me - every method here is keyed on the Spotify id and is FIRST-WRITE-WINS: if the row
exists, the incoming DTO is ignored (no name fixups, no image updates). That keeps re-syncs free of
writes and makes the sync idempotent. The only mutation of an existing row is genre enrichment for
artists whose genres are still unknown.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from soundtrace.application.services.music_gateway import SpotifyGateway
from soundtrace.domain.dtos import AlbumDTO, ArtistDTO, TrackDTO
from soundtrace.domain.entities import Album, Artist, Track
from soundtrace.infrastructure.persistence.repositories import (
    AlbumRepository,
    ArtistRepository,
    TrackRepository,
)

logger = logging.getLogger(__name__)


def associate_genres_to_track(artists: list[Artist]) -> list[str]:
    """Union of the artists' currently known genres, first-seen order, no duplicates."""
    genres: dict[str, None] = {}
    for artist in artists:
        for genre in artist.genres or []:
            genres.setdefault(genre, None)
    return list(genres)


class DimensionService:
    """Upserts dimension rows inside the caller's session (never commits)."""

    def __init__(self, session: AsyncSession, gateway: SpotifyGateway) -> None:
        self.artist_repository = ArtistRepository(session)
        self.album_repository = AlbumRepository(session)
        self.track_repository = TrackRepository(session)
        self.gateway = gateway

    async def get_or_create_artist(self, dto: ArtistDTO) -> Artist:
        existing = await self.artist_repository.get_by_id(dto.id)
        if existing is not None:
            return existing

        artist = Artist(
            id=dto.id,
            name=dto.name,
            image_url=dto.image_url,
            genres=list(dto.genres) or None,
        )
        await self.artist_repository.add(artist)
        logger.debug("dimension.artist.created", extra={"artist_id": artist.id})
        return artist

    # Yo, enrichment is the only reason the sync calls /artists/{id}. It's skipped once genres are
    # known, so each artist costs at most one extra request until Spotify gives it genres. An
    # absent response or an empty genre list changes nothing and we'll try again next time.
    async def enrich_artist_with_genres(self, user_id: str, artist: Artist) -> Artist:
        """Fetch and persist genres for an artist that has none yet."""
        if not artist.needs_genres():
            return artist

        details = await self.gateway.fetch_artist_details(user_id, artist.id)
        if details is None or not details.genres:
            return artist

        await self.artist_repository.update_genres(artist.id, details.genres)
        artist.genres = list(details.genres)
        logger.debug(
            "dimension.artist.enriched",
            extra={"artist_id": artist.id, "genres": len(details.genres)},
        )
        return artist

    async def get_or_create_album(self, dto: AlbumDTO, artists: list[Artist]) -> Album:
        """Find or create an album. A new album gets the artists of the track it came with."""
        existing = await self.album_repository.get_by_id(dto.id)
        if existing is not None:
            return existing

        album = Album(id=dto.id, name=dto.name, artist_ids=[a.id for a in artists])
        await self.album_repository.add(album)
        return album

    async def get_or_create_track(
        self, dto: TrackDTO, album: Album | None, artists: list[Artist]
    ) -> Track:
        """Find or create a track, snapshotting its genres on creation."""
        existing = await self.track_repository.get_by_id(dto.id)
        if existing is not None:
            return existing

        track = Track(
            id=dto.id,
            name=dto.name,
            duration_ms=dto.duration_ms,
            album_id=album.id if album else None,
            artist_ids=[a.id for a in artists],
            genres=associate_genres_to_track(artists),
        )
        await self.track_repository.add(track)
        logger.debug(
            "dimension.track.created",
            extra={"track_id": track.id, "genres": len(track.genres)},
        )
        return track

    async def resolve_track(self, user_id: str, dto: TrackDTO) -> Track:
        """Resolve artists (with enrichment), album and track for one played item."""
        artists = []
        for artist_dto in dto.artists:
            artist = await self.get_or_create_artist(artist_dto)
            artists.append(await self.enrich_artist_with_genres(user_id, artist))

        album = await self.get_or_create_album(dto.album, artists) if dto.album else None
        return await self.get_or_create_track(dto, album, artists)
