"""Request throttling for the gateway.

``SlidingWindowRateLimiter`` bounds requests per client per window.
``RunSlots`` optionally caps simultaneous child processes; a zero capacity
means no cap. Neither ever queues work: callers are told to come back later.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_s: int


class SlidingWindowRateLimiter:
    def __init__(
        self,
        limit: int,
        window_s: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window_s <= 0:
            raise ValueError("window_s must be positive")
        self.limit = int(limit)
        self.window_s = float(window_s)
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: dict[str, deque[float]] = {}

    def _prune(self, key: str, now: float) -> deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            hits = deque()
            self._hits[key] = hits
        cutoff = now - self.window_s
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def check(self, key: str) -> RateDecision:
        now = self._clock()
        with self._lock:
            hits = self._prune(key, now)
            if len(hits) >= self.limit:
                retry = max(1, int(hits[0] + self.window_s - now + 0.999))
                return RateDecision(False, self.limit, 0, retry)
            hits.append(now)
            # Drop idle clients so the table does not grow without bound.
            for other in list(self._hits):
                if other != key and not self._prune(other, now):
                    del self._hits[other]
            return RateDecision(True, self.limit, self.limit - len(hits), 0)

    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._hits)


class RunSlots:
    def __init__(self, capacity: int) -> None:
        self.capacity = max(0, int(capacity))
        self._active = 0
        self._lock = threading.Lock()

    @property
    def active(self) -> int:
        return self._active

    def try_acquire(self) -> bool:
        with self._lock:
            if self.capacity and self._active >= self.capacity:
                return False
            self._active += 1
            return True

    def release(self) -> None:
        with self._lock:
            if self._active > 0:
                self._active -= 1
