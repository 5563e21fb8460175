from __future__ import annotations

import time
from typing import Callable


class RateLimiter:
    """In-memory points-per-window limiter keyed by client IP.

    Each ``consume`` spends one point. Per-process only, so a multi-worker
    deployment gets one budget per worker. Keys whose window has emptied
    are dropped, at most once per window.
    """

    def __init__(
        self,
        points: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.points = points
        self.window_seconds = window_seconds
        self._clock = clock
        self._buckets: dict[str, list[float]] = {}
        self._last_prune = clock()

    def _prune(self, now: float) -> None:
        if now - self._last_prune < self.window_seconds:
            return
        self._last_prune = now
        stale = [k for k, hits in self._buckets.items() if not hits or now - hits[-1] >= self.window_seconds]
        for k in stale:
            del self._buckets[k]

    def consume(self, key: str) -> bool:
        """Return True if the call is allowed, False when the budget is spent."""
        now = self._clock()
        self._prune(now)
        bucket = [t for t in self._buckets.get(key, ()) if now - t < self.window_seconds]
        if len(bucket) >= self.points:
            self._buckets[key] = bucket
            return False
        bucket.append(now)
        self._buckets[key] = bucket
        return True

    @property
    def tracked_keys(self) -> int:
        return len(self._buckets)

    def reset(self) -> None:
        self._buckets.clear()
