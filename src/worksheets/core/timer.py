"""Countdown timer shown on pages with ``timer_seconds > 0``."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)

WARNING_SECONDS = 60
CRITICAL_SECONDS = 30


class TimerStatus(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    EXPIRED = "expired"
    COMPLETED = "completed"


def format_seconds(seconds: int) -> str:
    """Render seconds as ``mm:ss``."""
    minutes, secs = divmod(max(seconds, 0), 60)
    return f"{minutes:02d}:{secs:02d}"


class PageTimer:
    """Start/pause/reset countdown with a completion callback."""

    def __init__(self, seconds: int, on_complete: Callable[[], None] | None = None):
        if seconds < 0:
            raise ValueError("Timer seconds must be non-negative")
        self.seconds = seconds
        self.time_left = seconds
        self.active = False
        self.started = False
        self.completed = False
        self._on_complete = on_complete

    @property
    def status(self) -> TimerStatus:
        if self.completed:
            return TimerStatus.COMPLETED
        if self.time_left <= 0:
            return TimerStatus.EXPIRED
        if self.time_left <= CRITICAL_SECONDS:
            return TimerStatus.CRITICAL
        if self.time_left <= WARNING_SECONDS:
            return TimerStatus.WARNING
        return TimerStatus.NORMAL

    @property
    def elapsed(self) -> int:
        return self.seconds - self.time_left

    @property
    def progress(self) -> float:
        """Fraction of the countdown consumed, 0.0 to 1.0."""
        if self.seconds == 0:
            return 1.0
        return self.elapsed / self.seconds

    def toggle(self) -> None:
        """Start, pause or resume. Does nothing once time is up."""
        if self.time_left <= 0:
            return
        self.active = not self.active
        self.started = True

    def reset(self) -> None:
        self.time_left = self.seconds
        self.active = False
        self.started = False
        self.completed = False

    def tick(self, seconds: int = 1) -> None:
        """Advance an active timer, completing it when it reaches zero."""
        if not self.active or self.time_left <= 0:
            return
        self.time_left = max(self.time_left - seconds, 0)
        if self.time_left == 0:
            self.active = False
            self.completed = True
            logger.info("page_timer_completed", seconds=self.seconds)
            if self._on_complete is not None:
                self._on_complete()

    async def run(self, interval: float = 1.0) -> None:
        """Tick once per ``interval`` while active, until completion."""
        while not self.completed and self.time_left > 0:
            await asyncio.sleep(interval)
            self.tick()
