"""Sliding-window limiter for job starts."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Callable, Deque


class SlidingWindowRateLimiter:
    """Allow at most ``max_events`` acquisitions per ``window`` seconds.

    Callers over the limit wait until the oldest event leaves the window;
    nothing is dropped.
    """

    def __init__(
        self,
        max_events: int,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_events < 1:
            raise ValueError("max_events must be at least 1")
        self.max_events = max_events
        self.window = window
        self._clock = clock
        self._events: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._events and now - self._events[0] >= self.window:
            self._events.popleft()

    def retry_after(self) -> float:
        """Seconds until another event would be allowed (0 if allowed now)."""
        now = self._clock()
        self._prune(now)
        if len(self._events) < self.max_events:
            return 0.0
        return max(self.window - (now - self._events[0]), 0.0)

    def try_acquire(self) -> bool:
        now = self._clock()
        self._prune(now)
        if len(self._events) >= self.max_events:
            return False
        self._events.append(now)
        return True

    async def acquire(self) -> None:
        """Wait until an event slot is free and record it."""
        async with self._lock:
            while not self.try_acquire():
                await asyncio.sleep(max(self.retry_after(), 0.001))

    def release(self) -> None:
        """Give back the most recent slot when it went unused."""
        if self._events:
            self._events.pop()

    def __len__(self) -> int:
        self._prune(self._clock())
        return len(self._events)
