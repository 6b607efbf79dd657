from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Callable


class SlidingWindowRateLimiter:
    """Allow at most ``limit`` hits per identifier within ``window_sec``."""

    def __init__(
        self,
        limit: int,
        window_sec: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limit = max(1, limit)
        self._window = max(0.001, window_sec)
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, identifier: str) -> bool:
        """Record one request; return False when the identifier is over the limit."""

        async with self._lock:
            now = self._clock()
            window_start = now - self._window
            hits = self._hits.setdefault(identifier, deque())
            while hits and hits[0] <= window_start:
                hits.popleft()
            if len(hits) >= self._limit:
                return False
            hits.append(now)
            self._prune(window_start)
            return True

    def _prune(self, window_start: float) -> None:
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for key in stale:
            del self._hits[key]
