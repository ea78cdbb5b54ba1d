"""Read-only SQL execution for the generated-SQL tool path."""

import logging
import re
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from soundtrace.domain.exceptions import UnsafeQueryException
from soundtrace.domain.ports import IReadOnlyQueryExecutor

logger = logging.getLogger(__name__)

_SELECT_PREFIX = re.compile(r"^\s*select\b", re.IGNORECASE)


def ensure_select(sql: str) -> str:
    """Return the trimmed statement, or raise if it is not a SELECT."""
    statement = sql.strip().rstrip(";").strip()
    if not _SELECT_PREFIX.match(statement):
        raise UnsafeQueryException(sql)
    return statement


class ReadOnlyQueryExecutor(IReadOnlyQueryExecutor):
    """Runs SELECT statements on a dedicated connection and rolls back afterwards.

    Hey future me - the engine SHOULD log in as a SELECT-only role (see Database.readonly_engine).
    The prefix check and the unconditional rollback are the fallback when it doesn't.
    """

    def __init__(self, engine: AsyncEngine, max_rows: int = 500) -> None:
        self._engine = engine
        self._max_rows = max_rows

    async def fetch_all(self, sql: str) -> list[dict[str, Any]]:
        statement = ensure_select(sql)
        async with self._engine.connect() as conn:
            try:
                result = await conn.execute(text(statement))
                rows = [dict(row) for row in result.mappings().fetchmany(self._max_rows)]
            finally:
                await conn.rollback()
        logger.info("readonly_query.executed", extra={"row_count": len(rows)})
        return rows
