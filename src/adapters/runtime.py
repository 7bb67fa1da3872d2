"""
Runtime adapters - Wall clock and asyncio-based retry scheduler.
"""

import asyncio
import logging
from datetime import datetime, timezone

from src.domain.ports import RetryJob

logger = logging.getLogger(__name__)


class SystemClock:
    """Implements Clock with timezone-aware UTC wall time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class AsyncioRetryScheduler:
    """
    Implements RetryScheduler on the running event loop.

    Jobs are started with ``loop.call_later`` and tracked until they finish so
    ``shutdown`` can cancel anything still pending when the app stops.
    """

    def __init__(self) -> None:
        self._handles: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task] = set()

    def schedule(self, delay_seconds: float, job: RetryJob) -> None:
        loop = asyncio.get_running_loop()

        def _start() -> None:
            self._handles.discard(handle)
            task = loop.create_task(self._run(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        handle = loop.call_later(delay_seconds, _start)
        self._handles.add(handle)

    @property
    def pending(self) -> int:
        return len(self._handles) + len(self._tasks)

    async def shutdown(self) -> None:
        """Cancel timers that have not fired and wait for running jobs."""
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Retry scheduler stopped")

    @staticmethod
    async def _run(job: RetryJob) -> None:
        try:
            await job()
        except Exception:
            logger.exception("Scheduled retry job failed")
