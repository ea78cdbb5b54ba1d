"""Background worker that refreshes Spotify tokens before they expire."""

import asyncio
import contextlib
import logging
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from soundtrace.infrastructure.observability.logger_template import log_worker_health
from soundtrace.infrastructure.observability.logging import set_correlation_id

if TYPE_CHECKING:
    from soundtrace.application.services.token_manager import TokenManager

logger = logging.getLogger(__name__)


class TokenRefreshWorker:
    """Proactively refreshes tokens that expire within the refresh window.

    Yo, this exists so the sync rarely has to refresh inline. Demand-driven refresh in the
    TokenManager still covers whatever this sweep misses, and both share the per-account lock.
    """

    def __init__(
        self,
        token_manager: "TokenManager",
        check_interval_seconds: int = 1800,
        refresh_window_minutes: int = 15,
    ) -> None:
        self.token_manager = token_manager
        self.check_interval_seconds = check_interval_seconds
        self.refresh_window = timedelta(minutes=refresh_window_minutes)
        self._running = False
        self._task: asyncio.Task[None] | None = None

        self._cycles_completed = 0
        self._errors_total = 0
        self._refreshed_total = 0
        self._start_time = time.time()

    async def start(self) -> None:
        if self._running:
            logger.warning("token_refresh.already_running")
            return

        self._running = True
        self._start_time = time.time()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "worker.started",
            extra={
                "worker": "token_refresh",
                "check_interval_seconds": self.check_interval_seconds,
                "refresh_window_minutes": int(self.refresh_window.total_seconds() // 60),
            },
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info(
            "worker.stopped",
            extra={
                "worker": "token_refresh",
                "cycles_completed": self._cycles_completed,
                "refreshed_total": self._refreshed_total,
            },
        )

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
                self._cycles_completed += 1
                if self._cycles_completed % 10 == 0:
                    log_worker_health(
                        logger,
                        "token_refresh",
                        self._cycles_completed,
                        self._errors_total,
                        time.time() - self._start_time,
                        {"refreshed_total": self._refreshed_total},
                    )
            except Exception as e:
                self._errors_total += 1
                logger.error(
                    "token_refresh.cycle.failed",
                    extra={"error_type": type(e).__name__},
                    exc_info=True,
                )

            try:
                await asyncio.sleep(self.check_interval_seconds)
            except asyncio.CancelledError:
                break

    async def run_once(self) -> tuple[int, int]:
        """Run one sweep. Returns (refreshed, total)."""
        set_correlation_id()
        refreshed, total = await self.token_manager.refresh_expiring(self.refresh_window)
        self._refreshed_total += refreshed
        if total:
            logger.info(
                "token_refresh.cycle.completed",
                extra={
                    "refreshed": refreshed,
                    "total": total,
                    "summary": f"{refreshed}/{total} refreshed",
                },
            )
        return refreshed, total

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "check_interval_seconds": self.check_interval_seconds,
            "cycles_completed": self._cycles_completed,
            "errors_total": self._errors_total,
            "refreshed_total": self._refreshed_total,
        }
