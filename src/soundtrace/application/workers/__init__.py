"""Worker system - periodic background jobs."""

from soundtrace.application.workers.listening_sync_worker import ListeningSyncWorker
from soundtrace.application.workers.token_refresh_worker import TokenRefreshWorker

__all__ = [
    "ListeningSyncWorker",
    "TokenRefreshWorker",
]
