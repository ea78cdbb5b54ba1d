"""Application lifecycle management for startup and shutdown tasks.

Builds the object graph (database, clients, services, workers), starts the
background workers and tears everything down again in reverse order.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from soundtrace.application.cache import InMemoryCache
from soundtrace.application.services import (
    AccountService,
    AnalyticsService,
    AnswerService,
    DocumentGenerationService,
    ListeningSyncService,
    SpotifyGateway,
    TokenManager,
)
from soundtrace.application.workers import ListeningSyncWorker, TokenRefreshWorker
from soundtrace.config import Settings, get_settings
from soundtrace.domain.dtos import SpotifyProfile
from soundtrace.infrastructure.integrations.openai_client import OpenAIClient
from soundtrace.infrastructure.integrations.spotify_client import SpotifyClient
from soundtrace.infrastructure.observability.logging import configure_logging
from soundtrace.infrastructure.persistence.database import Database
from soundtrace.infrastructure.persistence.readonly_query import ReadOnlyQueryExecutor
from soundtrace.infrastructure.rate_limiter import get_spotify_limiter

logger = logging.getLogger(__name__)


@dataclass
class Application:
    """Everything a caller (CLI, HTTP layer, tests) needs at runtime."""

    settings: Settings
    db: Database
    spotify_client: SpotifyClient
    openai_client: OpenAIClient
    token_manager: TokenManager
    gateway: SpotifyGateway
    account_service: AccountService
    document_generator: DocumentGenerationService
    sync_service: ListeningSyncService
    analytics_service: AnalyticsService
    answer_service: AnswerService
    sync_worker: ListeningSyncWorker
    token_refresh_worker: TokenRefreshWorker


# Hey future me - this only WIRES things, nothing touches the network or the database here.
# Every service gets db.session_scope (the factory, not a session) so each unit of work opens
# and commits its own transaction.
def build_application(settings: Settings) -> Application:
    """Construct the full object graph from settings."""
    db = Database(settings)
    spotify_client = SpotifyClient(settings.spotify, rate_limiter=get_spotify_limiter())
    openai_client = OpenAIClient(settings.openai)

    token_manager = TokenManager(
        spotify_client=spotify_client,
        session_scope=db.session_scope,
        settings=settings.spotify,
    )
    profile_cache: InMemoryCache[str, SpotifyProfile] = InMemoryCache(
        default_ttl_seconds=settings.spotify.profile_cache_ttl_seconds
    )
    gateway = SpotifyGateway(
        client=spotify_client,
        token_manager=token_manager,
        profile_cache=profile_cache,
        page_size=settings.spotify.recently_played_page_size,
    )
    account_service = AccountService(spotify_client=spotify_client, session_scope=db.session_scope)
    document_generator = DocumentGenerationService(
        session_scope=db.session_scope,
        embedding_service=openai_client,
        settings=settings.rag,
    )
    sync_service = ListeningSyncService(
        session_scope=db.session_scope,
        gateway=gateway,
        document_generator=document_generator,
        account_service=account_service,
    )
    analytics_service = AnalyticsService(
        session_scope=db.session_scope,
        gateway=gateway,
        settings=settings.analytics,
    )
    answer_service = AnswerService(
        session_scope=db.session_scope,
        embedding_service=openai_client,
        completion_service=openai_client,
        query_executor=ReadOnlyQueryExecutor(db.readonly_engine),
        settings=settings.rag,
    )

    sync_worker = ListeningSyncWorker(db=db, sync_service=sync_service, settings=settings.scheduler)
    token_refresh_worker = TokenRefreshWorker(
        token_manager=token_manager,
        check_interval_seconds=settings.scheduler.token_refresh_interval_seconds,
        refresh_window_minutes=settings.spotify.proactive_refresh_window_minutes,
    )

    return Application(
        settings=settings,
        db=db,
        spotify_client=spotify_client,
        openai_client=openai_client,
        token_manager=token_manager,
        gateway=gateway,
        account_service=account_service,
        document_generator=document_generator,
        sync_service=sync_service,
        analytics_service=analytics_service,
        answer_service=answer_service,
        sync_worker=sync_worker,
        token_refresh_worker=token_refresh_worker,
    )


# Listen future me, everything before `yield` is STARTUP, everything after is SHUTDOWN. The
# finally block runs even if startup blew up halfway, so each close() must tolerate a component
# that never started.
@asynccontextmanager
async def lifespan(
    settings: Settings | None = None, start_workers: bool | None = None
) -> AsyncGenerator[Application, None]:
    """Start the application and yield the wired components.

    Args:
        settings: Settings to use (defaults to get_settings())
        start_workers: Override for settings.scheduler.enabled
    """
    settings = settings or get_settings()
    configure_logging(
        log_level=settings.log_level,
        json_format=settings.log_json,
        app_name=settings.app_name,
    )
    logger.info("app.starting", extra={"app_name": settings.app_name})

    app = build_application(settings)
    run_workers = settings.scheduler.enabled if start_workers is None else start_workers
    try:
        if run_workers:
            # Token refresh first so the first sync cycle already finds fresh tokens
            await app.token_refresh_worker.start()
            await app.sync_worker.start()
        logger.info("app.started", extra={"workers_enabled": run_workers})

        yield app
    finally:
        logger.info("app.stopping")
        await app.sync_worker.stop()
        await app.token_refresh_worker.stop()
        await app.spotify_client.close()
        await app.openai_client.close()
        await app.db.close()
        logger.info("app.stopped")
