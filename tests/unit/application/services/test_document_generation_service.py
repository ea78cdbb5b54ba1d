"""Tests for DocumentGenerationService."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from soundtrace.application.services.document_generation_service import (
    DocumentGenerationService,
)
from soundtrace.config.settings import RagSettings
from soundtrace.domain.entities import (
    Artist,
    GeneratedDocument,
    ListeningHistoryEntry,
    ListeningRecord,
    SummaryType,
    Track,
)
from soundtrace.infrastructure.persistence.repositories import (
    ArtistRepository,
    DocumentRepository,
    ListeningHistoryRepository,
    TrackRepository,
)


@pytest.fixture
def embedding_service(embedding) -> AsyncMock:
    service = AsyncMock()
    service.embed.return_value = embedding
    return service


@pytest.fixture
def service(db, embedding_service: AsyncMock, clock) -> DocumentGenerationService:
    return DocumentGenerationService(db.session_scope, embedding_service, RagSettings(), clock=clock)


async def _seed_history(db, user_id: str, played: list[datetime]) -> None:
    async with db.session_scope() as session:
        await ArtistRepository(session).add(Artist(id="ar1", name="Artist One", genres=["indie"]))
        await TrackRepository(session).add(
            Track(id="t1", name="Song", duration_ms=215000, artist_ids=["ar1"], genres=["indie"])
        )
        history = ListeningHistoryRepository(session)
        for played_at in played:
            await history.append(
                ListeningHistoryEntry(user_id=user_id, track_id="t1", played_at=played_at)
            )


async def _documents(db, user_id: str) -> list[GeneratedDocument]:
    async with db.session_scope() as session:
        return await DocumentRepository(session).list_for_user(user_id)


class TestGenerateFromHistory:
    """Test the full regeneration pipeline."""

    async def test_no_history_is_noop(
        self, service: DocumentGenerationService, embedding_service: AsyncMock, create_user
    ) -> None:
        user = await create_user()
        assert await service.generate_from_history(user.id) == 0
        embedding_service.embed.assert_not_awaited()

    async def test_generates_full_document_set(
        self, service: DocumentGenerationService, db, now, create_user
    ) -> None:
        user = await create_user()
        await _seed_history(
            db,
            user.id,
            [
                now - timedelta(hours=2),
                now - timedelta(days=3),
                datetime(2024, 4, 20, 18, 0, tzinfo=UTC),
            ],
        )

        created = await service.generate_from_history(user.id)

        docs = await _documents(db, user.id)
        types = sorted(doc.summary_type for doc in docs)
        assert created == 8
        assert types == sorted(
            [
                "monthly",
                "monthly",
                "monthly_structured",
                "monthly_structured",
                "daily",
                "weekly",
                "hourly_patterns",
                "top_tracks_global",
            ]
        )
        assert all(doc.source == "spotify" for doc in docs)

    async def test_rerun_without_changes_creates_nothing(
        self,
        service: DocumentGenerationService,
        embedding_service: AsyncMock,
        db,
        now,
        create_user,
    ) -> None:
        user = await create_user()
        await _seed_history(db, user.id, [now - timedelta(hours=2)])

        first = await service.generate_from_history(user.id)
        embeds_after_first = embedding_service.embed.await_count
        second = await service.generate_from_history(user.id)

        assert first > 0
        assert second == 0
        assert embedding_service.embed.await_count == embeds_after_first
        assert len(await _documents(db, user.id)) == first

    async def test_old_history_has_no_rolling_documents(
        self, service: DocumentGenerationService, db, create_user
    ) -> None:
        user = await create_user()
        await _seed_history(db, user.id, [datetime(2024, 1, 5, 9, 0, tzinfo=UTC)])

        await service.generate_from_history(user.id)

        types = {doc.summary_type for doc in await _documents(db, user.id)}
        assert types == {"monthly", "monthly_structured", "hourly_patterns", "top_tracks_global"}

    async def test_embedding_failure_propagates(
        self,
        service: DocumentGenerationService,
        embedding_service: AsyncMock,
        db,
        now,
        create_user,
    ) -> None:
        user = await create_user()
        await _seed_history(db, user.id, [now - timedelta(hours=2)])
        embedding_service.embed.side_effect = RuntimeError("embedding down")

        with pytest.raises(RuntimeError):
            await service.generate_from_history(user.id)

        assert await _documents(db, user.id) == []


class TestRetentionSweep:
    """Test deletion of stale rolling-window documents."""

    async def test_cutoffs(
        self, service: DocumentGenerationService, db, now, embedding, create_user
    ) -> None:
        user = await create_user()
        fixtures = [
            ("daily", {"date": "2024-05-07"}),  # 8 days old
            ("daily", {"date": "2024-05-08"}),  # exactly 7 days
            ("daily", {"date": "2024-05-09"}),  # 6 days old
            ("weekly", {"week_start": "2024-04-10"}),  # 5 weeks old
            ("weekly", {"week_start": "2024-04-24"}),  # 3 weeks old
            ("monthly", {"month": "2020-01"}),
        ]
        async with db.session_scope() as session:
            repository = DocumentRepository(session)
            for index, (summary_type, metadata) in enumerate(fixtures):
                await repository.add(
                    GeneratedDocument(
                        user_id=user.id,
                        summary_type=summary_type,
                        content=f"doc {index}",
                        embedding=embedding,
                        metadata=metadata,
                    )
                )

        async with db.session_scope() as session:
            deleted = await service.sweep_retention(DocumentRepository(session), user.id, now)

        remaining = {doc.content for doc in await _documents(db, user.id)}
        assert deleted == (1, 1)
        assert remaining == {"doc 1", "doc 2", "doc 4", "doc 5"}


class TestBuildDocuments:
    """Test the pure draft builder."""

    async def test_months_in_chronological_order(
        self, db, embedding_service: AsyncMock, now
    ) -> None:
        service = DocumentGenerationService(
            db.session_scope, embedding_service, RagSettings(timezone="Europe/Berlin")
        )
        records = [
            ListeningRecord(
                played_at=datetime(2024, 3, 31, 22, 30, tzinfo=UTC),
                track_id="t1",
                track_name="Song",
            ),
            ListeningRecord(
                played_at=datetime(2024, 2, 10, 12, 0, tzinfo=UTC),
                track_id="t1",
                track_name="Song",
            ),
        ]

        drafts = service.build_documents(records, now)

        monthly = [metadata["month"] for kind, _, metadata in drafts if kind is SummaryType.MONTHLY]
        # 22:30 UTC on March 31st is April in Berlin
        assert monthly == ["2024-02", "2024-04"]
        assert [kind for kind, _, _ in drafts][-2:] == [
            SummaryType.HOURLY_PATTERNS,
            SummaryType.TOP_TRACKS_GLOBAL,
        ]
