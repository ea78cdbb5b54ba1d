"""Background worker that periodically syncs listening history for every linked user."""

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING, Any

from soundtrace.infrastructure.observability.logger_template import (
    log_operation,
    log_worker_health,
)
from soundtrace.infrastructure.observability.logging import set_correlation_id
from soundtrace.infrastructure.persistence.repositories import UserRepository

if TYPE_CHECKING:
    from soundtrace.application.services.listening_sync_service import (
        ListeningSyncService,
    )
    from soundtrace.config import SchedulerSettings
    from soundtrace.infrastructure.persistence import Database

logger = logging.getLogger(__name__)


class ListeningSyncWorker:
    """Runs ListeningSyncService for all linked users on a fixed interval.

    Hey future me - users are synced ONE AFTER THE OTHER, never in parallel. That bounds the load
    on Spotify (and keeps dimension find-or-create race free) at the cost of a cycle that grows
    linearly with the number of users. A failing user is logged and counted, and the cycle moves
    on to the next one.
    """

    def __init__(
        self,
        db: "Database",
        sync_service: "ListeningSyncService",
        settings: "SchedulerSettings",
    ) -> None:
        """Initialize the worker.

        Args:
            db: Database with session_scope()
            sync_service: Per-user sync orchestrator
            settings: Scheduler timing (initial delay, interval)
        """
        self.db = db
        self.sync_service = sync_service
        self.initial_delay_seconds = settings.sync_initial_delay_seconds
        self.interval_seconds = settings.sync_interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None

        self._cycles_completed = 0
        self._errors_total = 0
        self._start_time = time.time()
        self._last_cycle: dict[str, Any] = {}

    async def start(self) -> None:
        """Start the worker loop (idempotent)."""
        if self._running:
            logger.warning("listening_sync.already_running")
            return

        self._running = True
        self._start_time = time.time()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "worker.started",
            extra={
                "worker": "listening_sync",
                "initial_delay_seconds": self.initial_delay_seconds,
                "interval_seconds": self.interval_seconds,
            },
        )

    async def stop(self) -> None:
        """Stop the worker loop and wait for it to finish (idempotent)."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info(
            "worker.stopped",
            extra={
                "worker": "listening_sync",
                "cycles_completed": self._cycles_completed,
                "errors_total": self._errors_total,
                "uptime_seconds": int(time.time() - self._start_time),
            },
        )

    async def _run_loop(self) -> None:
        try:
            await asyncio.sleep(self.initial_delay_seconds)
        except asyncio.CancelledError:
            return

        while self._running:
            try:
                await self.run_cycle()
                self._cycles_completed += 1

                if self._cycles_completed % 10 == 0:
                    log_worker_health(
                        logger,
                        "listening_sync",
                        self._cycles_completed,
                        self._errors_total,
                        time.time() - self._start_time,
                    )
            except Exception as e:
                # Only reached when listing users fails, per-user errors are handled in run_cycle
                self._errors_total += 1
                logger.error(
                    "listening_sync.cycle.failed",
                    extra={"error_type": type(e).__name__},
                    exc_info=True,
                )

            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break

    async def run_cycle(self) -> dict[str, int]:
        """Sync every user with a linked account once.

        Returns:
            Dict with users, succeeded, failed and added counts
        """
        set_correlation_id()
        async with log_operation(logger, "listening_sync.cycle") as result:
            async with self.db.session_scope() as session:
                users = await UserRepository(session).list_with_linked_account()

            succeeded = 0
            failed = 0
            added = 0
            for user in users:
                try:
                    added += await self.sync_service.sync_recently_played(user.id)
                    succeeded += 1
                except Exception as e:
                    failed += 1
                    self._errors_total += 1
                    logger.error(
                        "listening_sync.user.failed",
                        extra={
                            "user_id": user.id,
                            "error": str(e),
                            "error_type": type(e).__name__,
                        },
                        exc_info=True,
                    )

            result.update(
                {"users": len(users), "succeeded": succeeded, "failed": failed, "added": added}
            )

        self._last_cycle = dict(result)
        return dict(result)

    def get_status(self) -> dict[str, Any]:
        """Current worker state and the outcome of the last cycle."""
        return {
            "running": self._running,
            "interval_seconds": self.interval_seconds,
            "cycles_completed": self._cycles_completed,
            "errors_total": self._errors_total,
            "last_cycle": self._last_cycle,
        }
