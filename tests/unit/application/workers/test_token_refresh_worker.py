"""Tests for TokenRefreshWorker."""

import asyncio
import logging
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from soundtrace.application.workers.token_refresh_worker import TokenRefreshWorker


@pytest.fixture
def token_manager() -> AsyncMock:
    manager = AsyncMock()
    manager.refresh_expiring.return_value = (3, 4)
    return manager


@pytest.fixture
def worker(token_manager: AsyncMock) -> TokenRefreshWorker:
    return TokenRefreshWorker(token_manager, check_interval_seconds=3600, refresh_window_minutes=15)


class TestTokenRefreshWorker:
    """Test the proactive sweep worker."""

    async def test_run_once_uses_window_and_logs_summary(
        self,
        worker: TokenRefreshWorker,
        token_manager: AsyncMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.INFO):
            result = await worker.run_once()

        assert result == (3, 4)
        token_manager.refresh_expiring.assert_awaited_once_with(timedelta(minutes=15))
        completed = [r for r in caplog.records if r.getMessage() == "token_refresh.cycle.completed"]
        assert completed[0].summary == "3/4 refreshed"
        assert worker.get_status()["refreshed_total"] == 3

    async def test_nothing_due_logs_nothing(
        self,
        worker: TokenRefreshWorker,
        token_manager: AsyncMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        token_manager.refresh_expiring.return_value = (0, 0)

        with caplog.at_level(logging.INFO):
            await worker.run_once()

        assert not [r for r in caplog.records if r.getMessage() == "token_refresh.cycle.completed"]

    async def test_start_sweeps_immediately(
        self, worker: TokenRefreshWorker, token_manager: AsyncMock
    ) -> None:
        await worker.start()
        # The loop has no initial delay, one turn of the event loop runs the first sweep
        for _ in range(10):
            if token_manager.refresh_expiring.await_count:
                break
            await asyncio.sleep(0)
        await worker.stop()

        token_manager.refresh_expiring.assert_awaited()
        assert worker.get_status()["running"] is False

    async def test_loop_survives_sweep_errors(
        self, worker: TokenRefreshWorker, token_manager: AsyncMock
    ) -> None:
        token_manager.refresh_expiring.side_effect = RuntimeError("db down")

        await worker.start()
        for _ in range(10):
            if worker.get_status()["errors_total"]:
                break
            await asyncio.sleep(0)
        await worker.stop()

        assert worker.get_status()["errors_total"] == 1
