"""Document generator - turns the listening ledger into embedded RAG documents.

Hey future me - this runs after EVERY sync, on the user's full history (not just the new plays).
It's cheap to re-run because of the existence check: a document whose (user, type, content) is
already stored is skipped before we pay for an embedding. Unchanged history = zero new rows and
zero embedding calls.

Pipeline per user:
1. load the full history, no-op when empty
2. retention sweep (daily docs older than 7 days, weekly docs older than 4 weeks)
3. per local calendar month: prose summary + structured variant (shared metadata)
4. rolling 24h and 7d reports, only when those windows have plays
5. hourly listening pattern + all-time top tracks
6. embed and store whatever isn't stored yet
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from soundtrace.application.services import listening_summaries as summaries
from soundtrace.application.services.token_manager import SessionScope
from soundtrace.config.settings import RagSettings
from soundtrace.domain.entities import GeneratedDocument, ListeningRecord, SummaryType
from soundtrace.domain.ports import IDocumentRepository, IEmbeddingService
from soundtrace.infrastructure.persistence.repositories import (
    DocumentRepository,
    ListeningHistoryRepository,
)

logger = logging.getLogger(__name__)

DocumentDraft = tuple[SummaryType, str, dict[str, Any]]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class DocumentGenerationService:
    """Builds, embeds and stores summary documents for one user at a time."""

    def __init__(
        self,
        session_scope: SessionScope,
        embedding_service: IEmbeddingService,
        settings: RagSettings,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._session_scope = session_scope
        self._embedding_service = embedding_service
        self._settings = settings
        self._clock = clock
        self.zone = ZoneInfo(settings.timezone)

    async def generate_from_history(self, user_id: str) -> int:
        """Regenerate all documents for a user. Returns the number of new documents stored."""
        now = self._clock()
        async with self._session_scope() as session:
            records = await ListeningHistoryRepository(session).list_records(user_id)
            if not records:
                logger.info("documents.skipped", extra={"user_id": user_id, "reason": "no_history"})
                return 0

            documents = DocumentRepository(session)
            await self.sweep_retention(documents, user_id, now)

            created = 0
            drafts = self.build_documents(records, now)
            for summary_type, content, metadata in drafts:
                if await self._store(documents, user_id, summary_type, content, metadata):
                    created += 1

        logger.info(
            "documents.generated",
            extra={
                "user_id": user_id,
                "plays": len(records),
                "candidates": len(drafts),
                "created": created,
            },
        )
        return created

    # Listen up, metadata dates are local-calendar ISO strings, so the cutoffs are too. A daily
    # doc dated exactly today-7 survives, today-8 goes. Monthly and global docs are never swept.
    async def sweep_retention(
        self, documents: IDocumentRepository, user_id: str, now: datetime
    ) -> tuple[int, int]:
        """Delete stale rolling-window documents. Returns (daily_deleted, weekly_deleted)."""
        today = now.astimezone(self.zone).date()
        daily_cutoff = today - timedelta(days=self._settings.daily_retention_days)
        weekly_cutoff = today - timedelta(weeks=self._settings.weekly_retention_weeks)

        deleted_daily = await documents.delete_older_than(
            user_id, SummaryType.DAILY.value, "date", daily_cutoff.isoformat()
        )
        deleted_weekly = await documents.delete_older_than(
            user_id, SummaryType.WEEKLY.value, "week_start", weekly_cutoff.isoformat()
        )
        logger.info(
            "documents.retention.swept",
            extra={
                "user_id": user_id,
                "daily_deleted": deleted_daily,
                "weekly_deleted": deleted_weekly,
            },
        )
        return deleted_daily, deleted_weekly

    def build_documents(
        self, records: list[ListeningRecord], now: datetime
    ) -> list[DocumentDraft]:
        """Build every document draft for the given history (pure, no I/O)."""
        drafts: list[DocumentDraft] = []

        months = summaries.group_by_month(records, self.zone)
        for year, month in sorted(months):
            month_records = months[(year, month)]
            metadata = summaries.monthly_metadata(year, month, month_records)
            drafts.append(
                (
                    SummaryType.MONTHLY,
                    summaries.monthly_summary(year, month, month_records),
                    metadata,
                )
            )
            drafts.append(
                (
                    SummaryType.MONTHLY_STRUCTURED,
                    summaries.structured_monthly_summary(year, month, month_records),
                    metadata,
                )
            )

        last_day = summaries.records_since(records, now - timedelta(hours=24))
        if last_day:
            drafts.append(
                (
                    SummaryType.DAILY,
                    summaries.daily_summary(last_day, self.zone),
                    summaries.daily_metadata(last_day, now, self.zone),
                )
            )

        last_week = summaries.records_since(records, now - timedelta(days=7))
        if last_week:
            drafts.append(
                (
                    SummaryType.WEEKLY,
                    summaries.weekly_summary(last_week, self.zone),
                    summaries.weekly_metadata(last_week, now, self.zone),
                )
            )

        drafts.append(
            (
                SummaryType.HOURLY_PATTERNS,
                summaries.hourly_summary(records, self.zone),
                summaries.hourly_metadata(records, self.zone),
            )
        )
        drafts.append(
            (
                SummaryType.TOP_TRACKS_GLOBAL,
                summaries.global_top_tracks_summary(records),
                summaries.global_top_tracks_metadata(records),
            )
        )
        return drafts

    async def _store(
        self,
        documents: IDocumentRepository,
        user_id: str,
        summary_type: SummaryType,
        content: str,
        metadata: dict[str, Any],
    ) -> bool:
        if await documents.exists(user_id, summary_type.value, content):
            logger.debug(
                "documents.duplicate_skipped",
                extra={"user_id": user_id, "summary_type": summary_type.value},
            )
            return False

        embedding = await self._embedding_service.embed(content)
        await documents.add(
            GeneratedDocument(
                user_id=user_id,
                summary_type=summary_type.value,
                content=content,
                embedding=embedding,
                metadata=metadata,
                source=self._settings.document_source,
                created_at=self._clock(),
            )
        )
        return True
