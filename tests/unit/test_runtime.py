"""
Unit tests for the runtime adapters (clock and asyncio retry scheduler).
"""

import asyncio

import pytest

from src.adapters.runtime import AsyncioRetryScheduler, SystemClock


class TestSystemClock:
    def test_now_is_timezone_aware(self) -> None:
        assert SystemClock().now().tzinfo is not None


class TestAsyncioRetryScheduler:
    """Tests for AsyncioRetryScheduler."""

    @pytest.mark.asyncio
    async def test_runs_job_after_delay(self) -> None:
        scheduler = AsyncioRetryScheduler()
        done = asyncio.Event()

        async def job() -> None:
            done.set()

        scheduler.schedule(0.01, job)
        assert scheduler.pending == 1

        await asyncio.wait_for(done.wait(), timeout=1.0)
        await asyncio.sleep(0.01)
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_failing_job_does_not_propagate(self) -> None:
        scheduler = AsyncioRetryScheduler()
        ran = asyncio.Event()

        async def job() -> None:
            ran.set()
            raise RuntimeError("boom")

        scheduler.schedule(0, job)
        await asyncio.wait_for(ran.wait(), timeout=1.0)
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_jobs(self) -> None:
        scheduler = AsyncioRetryScheduler()
        calls: list[str] = []

        async def job() -> None:
            calls.append("ran")

        scheduler.schedule(10, job)
        await scheduler.shutdown()
        await asyncio.sleep(0.01)

        assert calls == []
        assert scheduler.pending == 0
