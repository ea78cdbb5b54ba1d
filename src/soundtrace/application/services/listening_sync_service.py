"""Sync orchestrator - incremental ingestion of the recently-played feed.

Yo, this is the state machine that keeps the ledger in step with Spotify:

    watermark = latest stored played_at (None on the first sync)
    loop:
        page = gateway.fetch_recently_played(after=cursor)
        None            -> SyncAbortedException (user fails this cycle)
        no items        -> stop
        for each item   -> skip known (user, played_at), else resolve dimensions + append
        0 new this page -> stop (everything was a duplicate)
        < page size     -> stop (upstream has no more)
        else            -> cursor = newest played_at added on this page
    regenerate documents (always, even when nothing was new)

Each page runs in its own session_scope, so a crash mid-sync keeps every page committed before
it and the next run resumes from the stored watermark. A failure inside a page (dimension write,
ledger write) aborts the whole sync for this user, no per-item isolation.
"""

import logging
from datetime import datetime

from soundtrace.application.services.account_service import AccountService
from soundtrace.application.services.dimension_service import DimensionService
from soundtrace.application.services.document_generation_service import (
    DocumentGenerationService,
)
from soundtrace.application.services.music_gateway import SpotifyGateway
from soundtrace.application.services.token_manager import SessionScope
from soundtrace.domain.dtos import RecentlyPlayedPage
from soundtrace.domain.entities import ListeningHistoryEntry
from soundtrace.domain.exceptions import SyncAbortedException
from soundtrace.infrastructure.persistence.repositories import ListeningHistoryRepository

logger = logging.getLogger(__name__)


class ListeningSyncService:
    """Pulls new plays for a user into the ledger and refreshes their documents."""

    def __init__(
        self,
        session_scope: SessionScope,
        gateway: SpotifyGateway,
        document_generator: DocumentGenerationService,
        account_service: AccountService | None = None,
    ) -> None:
        self._session_scope = session_scope
        self._gateway = gateway
        self._document_generator = document_generator
        self._account_service = account_service

    async def sync_recently_played(self, user_id: str) -> int:
        """Run one incremental sync. Returns the number of new ledger entries.

        Raises:
            SyncAbortedException: A page could not be fetched (no token, upstream failure)
        """
        async with self._session_scope() as session:
            watermark = await ListeningHistoryRepository(session).most_recent_played_at(user_id)

        logger.info(
            "listening_sync.started",
            extra={
                "user_id": user_id,
                "watermark": watermark.isoformat() if watermark else None,
            },
        )

        cursor = watermark
        total_added = 0
        pages = 0
        while True:
            page = await self._gateway.fetch_recently_played(user_id, cursor)
            if page is None:
                raise SyncAbortedException(user_id)
            if not page.items:
                break

            pages += 1
            added, newest = await self._ingest_page(user_id, page)
            total_added += added

            if added == 0:
                break
            if len(page.items) < self._gateway.page_size:
                break
            cursor = newest

        if self._account_service is not None:
            await self._account_service.mark_synced(user_id)

        await self._document_generator.generate_from_history(user_id)

        logger.info(
            "listening_sync.completed",
            extra={"user_id": user_id, "pages": pages, "added": total_added},
        )
        return total_added

    async def _ingest_page(
        self, user_id: str, page: RecentlyPlayedPage
    ) -> tuple[int, datetime | None]:
        """Store the new plays of one page. Returns (added, newest played_at added)."""
        added = 0
        newest: datetime | None = None

        async with self._session_scope() as session:
            history = ListeningHistoryRepository(session)
            dimensions = DimensionService(session, self._gateway)

            for item in page.items:
                if await history.exists(user_id, item.played_at):
                    continue

                track = await dimensions.resolve_track(user_id, item.track)
                appended = await history.append(
                    ListeningHistoryEntry(
                        user_id=user_id,
                        track_id=track.id,
                        played_at=item.played_at,
                    )
                )
                if not appended:
                    continue

                added += 1
                if newest is None or item.played_at > newest:
                    newest = item.played_at

        logger.debug(
            "listening_sync.page.ingested",
            extra={"user_id": user_id, "items": len(page.items), "added": added},
        )
        return added, newest
