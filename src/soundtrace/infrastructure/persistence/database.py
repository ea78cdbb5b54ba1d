"""Database session management."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from soundtrace.config import Settings

logger = logging.getLogger(__name__)


def _engine_kwargs(settings: Settings, url: str) -> dict[str, Any]:
    engine_kwargs: dict[str, Any] = {
        "echo": settings.database.echo,
        "pool_pre_ping": settings.database.pool_pre_ping,
    }

    # Only apply pool settings for PostgreSQL
    if "postgresql" in url:
        engine_kwargs.update(
            {
                "pool_size": settings.database.pool_size,
                "max_overflow": settings.database.max_overflow,
                "pool_timeout": settings.database.pool_timeout,
                "pool_recycle": settings.database.pool_recycle,
            }
        )
    elif "sqlite" in url:
        engine_kwargs.update(
            {
                "connect_args": {
                    "check_same_thread": False,
                    "timeout": 30,  # Wait up to 30s for lock
                }
            }
        )
    return engine_kwargs


class Database:
    """Database connection and session manager."""

    def __init__(self, settings: Settings) -> None:
        """Initialize database with settings."""
        self.settings = settings
        url = settings.database.url

        self._engine = create_async_engine(url, **_engine_kwargs(settings, url))

        # Enable foreign keys for SQLite
        if "sqlite" in url:
            self._enable_sqlite_foreign_keys(self._engine)

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self._readonly_engine: AsyncEngine | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Primary read/write engine."""
        return self._engine

    @property
    def readonly_engine(self) -> AsyncEngine:
        """Engine for the generated-SQL tool path.

        Hey future me - in production DATABASE__READONLY_URL should log in as a role that only has
        SELECT grants. Without it we fall back to the main engine and the SELECT-prefix guard is
        the only protection.
        """
        readonly_url = self.settings.database.readonly_url
        if not readonly_url:
            return self._engine
        if self._readonly_engine is None:
            self._readonly_engine = create_async_engine(
                readonly_url, **_engine_kwargs(self.settings, readonly_url)
            )
        return self._readonly_engine

    @staticmethod
    def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
        """Enable foreign key constraints for SQLite.

        SQLite has foreign keys disabled by default. This enables them
        for all connections of the given engine.
        """

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
            """Set SQLite pragmas on connection."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
            logger.debug("Enabled foreign keys for SQLite connection")

    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for database operations."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                # Rollback on any exception - intentionally broad to keep the transaction
                # consistent. All exceptions are re-raised for proper handling.
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self) -> None:
        """Close database connections."""
        if self._readonly_engine is not None:
            await self._readonly_engine.dispose()
        await self._engine.dispose()

    async def create_tables(self) -> None:
        """Create all tables (for testing only, production uses alembic)."""
        from soundtrace.infrastructure.persistence.models import Base

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
