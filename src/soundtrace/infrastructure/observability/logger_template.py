"""Shared logging helpers for workers and long-running operations.

USAGE:
    from soundtrace.infrastructure.observability.logger_template import (
        log_operation,
        log_worker_health,
    )

    async with log_operation(logger, "listening_sync.cycle", users=12):
        await run_cycle()

    log_worker_health(logger, "listening_sync", cycles_completed=10, errors_total=1,
                      uptime_seconds=3600)
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any


# Yo, this logs {operation}.started / .completed / .failed with duration_ms attached. On failure
# it logs with exc_info and RE-RAISES, so the caller still decides what the error means.
@asynccontextmanager
async def log_operation(
    logger: logging.Logger,
    operation: str,
    **context: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Log operation start/end with automatic timing.

    The yielded dict can be filled with result fields that are added to the
    completion log line.

    Example:
        >>> async with log_operation(logger, "document_generation", user_id="u1") as result:
        ...     result["created"] = await generate()
    """
    start = time.monotonic()
    result: dict[str, Any] = {}
    logger.info(f"{operation}.started", extra=context)

    try:
        yield result
    except Exception as e:
        logger.error(
            f"{operation}.failed",
            extra={
                **context,
                "duration_ms": int((time.monotonic() - start) * 1000),
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        raise

    logger.info(
        f"{operation}.completed",
        extra={**context, **result, "duration_ms": int((time.monotonic() - start) * 1000)},
    )


# Listen future me, every worker calls this every N cycles so all workers report health in the
# same shape. High errors_total relative to cycles_completed is the thing to alert on.
def log_worker_health(
    logger: logging.Logger,
    worker_name: str,
    cycles_completed: int,
    errors_total: int,
    uptime_seconds: float,
    extra_stats: dict[str, Any] | None = None,
) -> None:
    """Log worker health status in consistent format."""
    logger.info(
        "worker.health",
        extra={
            "worker": worker_name,
            "cycles_completed": cycles_completed,
            "errors_total": errors_total,
            "uptime_seconds": round(uptime_seconds, 1),
            **(extra_stats or {}),
        },
    )
