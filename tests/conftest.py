"""Shared fixtures.

Hey future me - persistence tests run against a real SQLite file (aiosqlite) inside tmp_path, so
every test gets a fresh schema from Database.create_tables(). A file instead of :memory: because
each pooled connection to :memory: would see its own empty database.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from soundtrace.config import DatabaseSettings, Settings
from soundtrace.domain.entities import LinkedAccount, User
from soundtrace.infrastructure.persistence.database import Database
from soundtrace.infrastructure.persistence.repositories import (
    LinkedAccountRepository,
    UserRepository,
)

EMBEDDING_DIMENSIONS = 1536

FIXED_NOW = datetime(2024, 5, 15, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"),
    )


@pytest.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    """Database with all tables created."""
    database = Database(settings)
    await database.create_tables()
    yield database
    await database.close()


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock(now: datetime) -> Callable[[], datetime]:
    """Frozen clock for services that take a clock callable."""
    return lambda: now


@pytest.fixture
def embedding() -> list[float]:
    """Embedding with the column's dimensionality."""
    return [0.1] * EMBEDDING_DIMENSIONS


@pytest.fixture
def create_user(db: Database) -> Callable[..., Awaitable[User]]:
    """Factory that stores a user and returns it."""

    async def _create(email: str = "listener@example.com") -> User:
        user = User(email=email, display_name="Listener")
        async with db.session_scope() as session:
            await UserRepository(session).add(user)
        return user

    return _create


@pytest.fixture
def link_account(db: Database) -> Callable[..., Awaitable[LinkedAccount]]:
    """Factory that stores a linked account for a user (valid token until 13:00)."""

    async def _link(user: User, **fields: Any) -> LinkedAccount:
        data: dict[str, Any] = {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "token_expires_at": FIXED_NOW.replace(hour=13),
        }
        data.update(fields)
        account = LinkedAccount(user_id=user.id, **data)
        async with db.session_scope() as session:
            await LinkedAccountRepository(session).add(account)
        return account

    return _link
