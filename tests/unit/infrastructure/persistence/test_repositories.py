"""Tests for the SQLAlchemy repositories (SQLite via aiosqlite).

Hey future me - these run on a real database because the interesting parts are constraints and
query shapes (dedup key, watermark, join ordering), which mocks would just restate.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from soundtrace.domain.entities import (
    Album,
    Artist,
    CachedTopArtist,
    GeneratedDocument,
    ListeningHistoryEntry,
    Track,
)
from soundtrace.infrastructure.persistence.models import GeneratedDocumentModel
from soundtrace.infrastructure.persistence.repositories import (
    AlbumRepository,
    ArtistRepository,
    CachedTopArtistRepository,
    DocumentRepository,
    LinkedAccountRepository,
    ListeningHistoryRepository,
    TrackRepository,
    UserRepository,
)

NOW = datetime(2024, 5, 15, 12, 0, 0, tzinfo=UTC)


async def _seed_track(db, track_id: str = "t1", artists=(("ar1", "Beta"), ("ar2", "Alpha"))):
    async with db.session_scope() as session:
        artist_repo = ArtistRepository(session)
        for artist_id, name in artists:
            if await artist_repo.get_by_id(artist_id) is None:
                await artist_repo.add(Artist(id=artist_id, name=name, genres=["indie"]))
        album_repo = AlbumRepository(session)
        if await album_repo.get_by_id("al1") is None:
            await album_repo.add(Album(id="al1", name="Album", artist_ids=[a for a, _ in artists]))
        await TrackRepository(session).add(
            Track(
                id=track_id,
                name=f"Track {track_id}",
                duration_ms=200000,
                album_id="al1",
                artist_ids=[a for a, _ in artists],
                genres=["indie", "rock"],
            )
        )


class TestUserAndAccountRepositories:
    """Test users and linked accounts."""

    async def test_list_with_linked_account_skips_users_without_token(
        self, db, create_user, link_account
    ) -> None:
        linked = await create_user("a@example.com")
        await create_user("b@example.com")
        empty_token = await create_user("c@example.com")
        await link_account(linked)
        await link_account(empty_token, access_token="")

        async with db.session_scope() as session:
            users = await UserRepository(session).list_with_linked_account()

        assert [u.id for u in users] == [linked.id]

    async def test_account_round_trip_keeps_utc(self, db, create_user, link_account) -> None:
        user = await create_user()
        await link_account(user)

        async with db.session_scope() as session:
            account = await LinkedAccountRepository(session).get_by_user_id(user.id)

        assert account is not None
        assert account.refresh_token == "refresh-1"
        assert account.token_expires_at == NOW.replace(hour=13)
        assert account.token_expires_at.tzinfo is not None

    async def test_list_expiring_before_needs_refresh_token(
        self, db, create_user, link_account
    ) -> None:
        expiring = await create_user("a@example.com")
        no_refresh = await create_user("b@example.com")
        blank_refresh = await create_user("d@example.com")
        later = await create_user("c@example.com")
        await link_account(expiring, token_expires_at=NOW + timedelta(minutes=5))
        await link_account(
            no_refresh, refresh_token=None, token_expires_at=NOW + timedelta(minutes=5)
        )
        await link_account(
            blank_refresh, refresh_token="", token_expires_at=NOW + timedelta(minutes=5)
        )
        await link_account(later, token_expires_at=NOW + timedelta(hours=2))

        async with db.session_scope() as session:
            accounts = await LinkedAccountRepository(session).list_expiring_before(
                NOW + timedelta(minutes=15)
            )

        assert [a.user_id for a in accounts] == [expiring.id]

    async def test_delete_by_user_id(self, db, create_user, link_account) -> None:
        user = await create_user()
        await link_account(user)

        async with db.session_scope() as session:
            assert await LinkedAccountRepository(session).delete_by_user_id(user.id) is True
        async with db.session_scope() as session:
            assert await LinkedAccountRepository(session).delete_by_user_id(user.id) is False
            assert await UserRepository(session).get_by_id(user.id) is not None


class TestDimensionRepositories:
    """Test artist, album and track rows."""

    async def test_artist_genres_none_means_not_enriched(self, db) -> None:
        async with db.session_scope() as session:
            await ArtistRepository(session).add(Artist(id="ar1", name="A"))

        async with db.session_scope() as session:
            repo = ArtistRepository(session)
            artist = await repo.get_by_id("ar1")
            assert artist is not None
            assert artist.genres is None

            await repo.update_genres("ar1", ["shoegaze"])

        async with db.session_scope() as session:
            artist = await ArtistRepository(session).get_by_id("ar1")
        assert artist is not None
        assert artist.genres == ["shoegaze"]

    async def test_track_keeps_artist_order_and_genre_snapshot(self, db) -> None:
        await _seed_track(db)

        async with db.session_scope() as session:
            track = await TrackRepository(session).get_by_id("t1")
            album = await AlbumRepository(session).get_by_id("al1")

        assert track is not None
        assert track.artist_ids == ["ar1", "ar2"]
        assert track.genres == ["indie", "rock"]
        assert track.album_id == "al1"
        assert album is not None
        assert album.artist_ids == ["ar1", "ar2"]


class TestListeningHistoryRepository:
    """Test the append-only ledger."""

    async def test_exists_and_watermark(self, db, create_user) -> None:
        user = await create_user()
        await _seed_track(db)
        first = NOW - timedelta(hours=2)
        second = NOW - timedelta(hours=1)

        async with db.session_scope() as session:
            history = ListeningHistoryRepository(session)
            assert await history.most_recent_played_at(user.id) is None
            assert await history.append(ListeningHistoryEntry(user.id, "t1", first)) is True
            assert await history.append(ListeningHistoryEntry(user.id, "t1", second)) is True

        async with db.session_scope() as session:
            history = ListeningHistoryRepository(session)
            assert await history.exists(user.id, first) is True
            assert await history.exists(user.id, NOW) is False
            assert await history.most_recent_played_at(user.id) == second
            assert await history.count_for_user(user.id) == 2

    async def test_same_instant_for_other_user_is_not_a_duplicate(
        self, db, create_user
    ) -> None:
        alice = await create_user("alice@example.com")
        bob = await create_user("bob@example.com")
        await _seed_track(db)

        async with db.session_scope() as session:
            history = ListeningHistoryRepository(session)
            await history.append(ListeningHistoryEntry(alice.id, "t1", NOW))
            await history.append(ListeningHistoryEntry(bob.id, "t1", NOW))

        async with db.session_scope() as session:
            history = ListeningHistoryRepository(session)
            assert await history.count_for_user(alice.id) == 1
            assert await history.count_for_user(bob.id) == 1

    async def test_append_reports_duplicate_on_integrity_error(self) -> None:
        """A racing writer's unique violation is rolled back to the savepoint, not raised."""
        nested = MagicMock()
        nested.rollback = AsyncMock()
        nested.commit = AsyncMock()
        session = AsyncMock(spec=AsyncSession)
        session.begin_nested = AsyncMock(return_value=nested)
        session.flush = AsyncMock(
            side_effect=IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        )

        appended = await ListeningHistoryRepository(session).append(
            ListeningHistoryEntry("u1", "t1", NOW)
        )

        assert appended is False
        nested.rollback.assert_awaited_once()
        nested.commit.assert_not_awaited()

    async def test_list_records_newest_first_with_details(self, db, create_user) -> None:
        user = await create_user()
        await _seed_track(db, "t1")
        await _seed_track(db, "t2", artists=(("ar1", "Beta"),))

        async with db.session_scope() as session:
            history = ListeningHistoryRepository(session)
            await history.append(ListeningHistoryEntry(user.id, "t1", NOW - timedelta(hours=3)))
            await history.append(ListeningHistoryEntry(user.id, "t2", NOW - timedelta(hours=1)))

        async with db.session_scope() as session:
            records = await ListeningHistoryRepository(session).list_records(user.id)

        assert [r.track_id for r in records] == ["t2", "t1"]
        assert records[1].artist_names == ("Beta", "Alpha")
        assert records[1].album_name == "Album"
        assert records[1].genres == ("indie", "rock")
        assert records[1].played_at.tzinfo is not None

    async def test_top_artists_and_tracks_respect_window(self, db, create_user) -> None:
        user = await create_user()
        await _seed_track(db, "t1", artists=(("ar1", "Beta"),))
        await _seed_track(db, "t2", artists=(("ar2", "Alpha"),))

        async with db.session_scope() as session:
            history = ListeningHistoryRepository(session)
            for hours in (1, 2, 3):
                await history.append(
                    ListeningHistoryEntry(user.id, "t1", NOW - timedelta(hours=hours))
                )
            await history.append(ListeningHistoryEntry(user.id, "t2", NOW - timedelta(days=60)))
            await history.append(ListeningHistoryEntry(user.id, "t2", NOW - timedelta(days=61)))

        async with db.session_scope() as session:
            history = ListeningHistoryRepository(session)
            all_time = await history.top_artists(user.id, None, NOW, 10)
            last_month = await history.top_tracks(user.id, NOW - timedelta(days=30), NOW, 10)

        assert [(a.artist_name, a.play_count) for a in all_time] == [("Beta", 3), ("Alpha", 2)]
        assert [(t.track_id, t.play_count) for t in last_month] == [("t1", 3)]
        assert last_month[0].artist_names == "Beta"


class TestCachedTopArtistRepository:
    """Test the materialized ranking."""

    async def test_replace_deletes_previous_row_set(self, db, create_user) -> None:
        user = await create_user()

        def _rows(names: list[str], at: datetime) -> list[CachedTopArtist]:
            return [
                CachedTopArtist(
                    user_id=user.id,
                    time_range="medium_term",
                    artist_id=f"id-{name}",
                    artist_name=name,
                    rank=rank,
                    last_updated_at=at,
                )
                for rank, name in enumerate(names, start=1)
            ]

        async with db.session_scope() as session:
            await CachedTopArtistRepository(session).replace(
                user.id, "medium_term", _rows(["A", "B", "C"], NOW - timedelta(days=2))
            )
        async with db.session_scope() as session:
            await CachedTopArtistRepository(session).replace(
                user.id, "medium_term", _rows(["C", "A"], NOW)
            )

        async with db.session_scope() as session:
            rows = await CachedTopArtistRepository(session).list_for_user(user.id, "medium_term")
            other_range = await CachedTopArtistRepository(session).list_for_user(
                user.id, "short_term"
            )

        assert [(r.rank, r.artist_name) for r in rows] == [(1, "C"), (2, "A")]
        assert {r.last_updated_at for r in rows} == {NOW}
        assert other_range == []


class TestDocumentRepository:
    """Test generated document storage."""

    def _doc(self, user_id: str, summary_type: str, content: str, embedding, **metadata):
        return GeneratedDocument(
            user_id=user_id,
            summary_type=summary_type,
            content=content,
            embedding=embedding,
            metadata=metadata,
            created_at=NOW,
        )

    async def test_add_exists_and_list(self, db, create_user, embedding) -> None:
        user = await create_user()
        async with db.session_scope() as session:
            await DocumentRepository(session).add(
                self._doc(user.id, "monthly", "In May 2024...", embedding, month="2024-05")
            )

        async with db.session_scope() as session:
            repo = DocumentRepository(session)
            assert await repo.exists(user.id, "monthly", "In May 2024...") is True
            assert await repo.exists(user.id, "monthly_structured", "In May 2024...") is False
            docs = await repo.list_for_user(user.id)

        assert len(docs) == 1
        assert docs[0].metadata == {"month": "2024-05"}
        assert len(docs[0].embedding) == 1536
        # pgvector hands vectors back as float32
        assert docs[0].embedding[0] == pytest.approx(0.1)

    async def test_delete_older_than_compares_iso_dates(self, db, create_user, embedding) -> None:
        user = await create_user()
        async with db.session_scope() as session:
            repo = DocumentRepository(session)
            await repo.add(self._doc(user.id, "daily", "old", embedding, date="2024-05-07"))
            await repo.add(self._doc(user.id, "daily", "kept", embedding, date="2024-05-08"))
            await repo.add(self._doc(user.id, "weekly", "other", embedding, date="2024-01-01"))

        async with db.session_scope() as session:
            deleted = await DocumentRepository(session).delete_older_than(
                user.id, "daily", "date", "2024-05-08"
            )

        async with db.session_scope() as session:
            remaining = await DocumentRepository(session).list_for_user(user.id)

        assert deleted == 1
        assert sorted(d.content for d in remaining) == ["kept", "other"]

    async def test_nearest_ranks_by_distance_without_pgvector(
        self, db, create_user, embedding
    ) -> None:
        user = await create_user()
        other = await create_user(email="other@example.com")
        far = [0.9] * 1536
        close = [0.12] * 1536
        async with db.session_scope() as session:
            repo = DocumentRepository(session)
            await repo.add(self._doc(user.id, "monthly", "far", far, month="2024-04"))
            await repo.add(self._doc(user.id, "monthly", "close", close, month="2024-05"))
            await repo.add(self._doc(user.id, "daily", "not whitelisted", embedding))
            await repo.add(self._doc(other.id, "monthly", "someone else", embedding))

        async with db.session_scope() as session:
            docs = await DocumentRepository(session).nearest(
                user.id, embedding, summary_types=["monthly"], limit=10
            )
            top_one = await DocumentRepository(session).nearest(
                user.id, embedding, summary_types=["monthly"], limit=1
            )

        assert [d.content for d in docs] == ["close", "far"]
        assert [d.content for d in top_one] == ["close"]

    async def test_nearest_without_documents(self, db, create_user, embedding) -> None:
        user = await create_user()
        async with db.session_scope() as session:
            docs = await DocumentRepository(session).nearest(
                user.id, embedding, summary_types=["monthly"], limit=10
            )
        assert docs == []

    async def test_nearest_on_postgres_orders_in_sql(self, embedding) -> None:
        model = GeneratedDocumentModel(
            id="d1",
            user_id="u1",
            source="spotify",
            summary_type="monthly",
            content="content",
            embedding=embedding,
            doc_metadata={"month": "2024-05"},
            created_at=NOW,
        )
        result = MagicMock()
        result.scalars.return_value.all.return_value = [model]
        session = AsyncMock(spec=AsyncSession)
        session.get_bind = MagicMock()
        session.get_bind.return_value.dialect.name = "postgresql"
        session.execute = AsyncMock(return_value=result)

        docs = await DocumentRepository(session).nearest(
            "u1", embedding, summary_types=["monthly"], limit=10
        )

        assert [d.id for d in docs] == ["d1"]
        statement = str(session.execute.call_args.args[0])
        assert "generated_documents.summary_type IN" in statement
        assert "LIMIT" in statement
