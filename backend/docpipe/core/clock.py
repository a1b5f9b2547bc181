"""
Clock abstraction.

Lease expiry and retry backoff read time through a Clock so tests can move
time forward explicitly instead of sleeping.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):

    @abstractmethod
    def now(self) -> datetime:
        """Current UTC time (timezone-aware)."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling coroutine."""


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock(Clock):
    """
    Deterministic clock: time only moves when advance() is called.

    sleep() advances the clock by the requested amount and yields once to the
    event loop, so polling loops make progress without real delays.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0.0, *, ms: float = 0.0) -> datetime:
        self._now += timedelta(seconds=seconds, milliseconds=ms)
        return self._now

    async def sleep(self, seconds: float) -> None:
        self.advance(seconds)
        await asyncio.sleep(0)
