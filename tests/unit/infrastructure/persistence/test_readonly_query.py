"""Tests for the read-only SQL executor."""

import pytest
from sqlalchemy import text

from soundtrace.domain.exceptions import UnsafeQueryException
from soundtrace.infrastructure.persistence.readonly_query import (
    ReadOnlyQueryExecutor,
    ensure_select,
)


class TestEnsureSelect:
    """Test the SELECT-prefix guard."""

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT 1",
            "  select name from tracks",
            "Select count(*) from listening_history;",
        ],
    )
    def test_accepts_select(self, sql: str) -> None:
        assert ensure_select(sql).lower().startswith("select")

    def test_strips_trailing_semicolon(self) -> None:
        assert ensure_select("SELECT 1;  ") == "SELECT 1"

    @pytest.mark.parametrize(
        "sql",
        [
            "DELETE FROM listening_history",
            "DROP TABLE tracks",
            "UPDATE tracks SET name = 'x'",
            "WITH x AS (DELETE FROM tracks RETURNING *) SELECT * FROM x",
            "selection",
            "",
        ],
    )
    def test_rejects_everything_else(self, sql: str) -> None:
        with pytest.raises(UnsafeQueryException) as exc_info:
            ensure_select(sql)
        assert exc_info.value.query == sql


class TestReadOnlyQueryExecutor:
    """Test execution against SQLite."""

    async def test_fetch_all_returns_dicts(self, db) -> None:
        executor = ReadOnlyQueryExecutor(db.engine)
        rows = await executor.fetch_all("SELECT 'Song' AS name, 3 AS listen_count")
        assert rows == [{"name": "Song", "listen_count": 3}]

    async def test_fetch_all_caps_rows(self, db) -> None:
        async with db.engine.begin() as conn:
            await conn.execute(text("CREATE TABLE numbers (n INTEGER)"))
            for n in range(5):
                await conn.execute(text("INSERT INTO numbers (n) VALUES (:n)"), {"n": n})

        executor = ReadOnlyQueryExecutor(db.engine, max_rows=2)
        rows = await executor.fetch_all("SELECT n FROM numbers ORDER BY n")
        assert rows == [{"n": 0}, {"n": 1}]

    async def test_fetch_all_refuses_writes(self, db) -> None:
        executor = ReadOnlyQueryExecutor(db.engine)
        with pytest.raises(UnsafeQueryException):
            await executor.fetch_all("DELETE FROM users")
