"""Process-wide sliding-window rate limiter."""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from imageedit.config import Settings


class RateLimiter:
    """Allows ``max_requests`` per ``window`` seconds for each client key.

    Keys whose hits have all left the window are dropped, so the table only
    holds clients seen within the last window.
    """

    def __init__(self, max_requests: int, window: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = clock()

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimiter:
        return cls(settings.rate_limit_max, settings.rate_limit_window)

    @property
    def tracked_keys(self) -> int:
        return len(self._hits)

    async def acquire(self, key: str) -> float | None:
        """Record a hit for ``key``.

        Returns ``None`` when the request is allowed, otherwise the number of
        seconds until the oldest hit leaves the window.
        """
        async with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self.window:
                self._sweep(now)

            hits = self._hits.get(key)
            if hits is not None:
                self._evict(hits, now)
            if hits and len(hits) >= self.max_requests:
                return max(0.0, self.window - (now - hits[0]))
            if not hits:
                hits = self._hits[key] = deque()
            hits.append(now)
            return None

    async def reset(self) -> None:
        async with self._lock:
            self._hits.clear()

    def _evict(self, hits: deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.window:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        for key in list(self._hits):
            hits = self._hits[key]
            self._evict(hits, now)
            if not hits:
                del self._hits[key]
        self._last_sweep = now


def retry_after_seconds(wait: float) -> int:
    return max(1, math.ceil(wait))
