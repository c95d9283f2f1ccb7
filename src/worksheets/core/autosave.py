"""Cancellable periodic flush task.

The scheduler owns one recurring asyncio task. Every ``period`` seconds it
runs the flush callback; a failing flush is logged and swallowed. Stopping
cancels the recurring task but leaves an in-flight flush to finish on its
own, so a late server reply never lands in a cancelled coroutine.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_PERIOD_SECONDS = 10.0

FlushCallback = Callable[[], Awaitable[object]]


class AutosaveScheduler:
    """Recurring background flush, started and stopped explicitly."""

    def __init__(self, flush: FlushCallback, period: float = DEFAULT_PERIOD_SECONDS):
        if period <= 0:
            raise ValueError("Autosave period must be positive")
        self._flush = flush
        self.period = period
        self._task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()
        self.flush_count = 0
        self.failure_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Arm the timer from zero, replacing any running timer.

        Must be called from inside a running event loop.
        """
        if self._task is not None:
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("autosave_started", period=self.period)

    async def stop(self) -> None:
        """Cancel the recurring task; no tick fires after this returns."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("autosave_stopped")

    async def drain(self) -> None:
        """Wait for flushes already in flight."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.period)
            flush = asyncio.ensure_future(self._guarded_flush())
            self._inflight.add(flush)
            flush.add_done_callback(self._inflight.discard)
            await asyncio.shield(flush)

    async def _guarded_flush(self) -> None:
        try:
            await self._flush()
            self.flush_count += 1
        except Exception as e:
            self.failure_count += 1
            logger.warning("autosave_failed", error=str(e), error_type=type(e).__name__)
