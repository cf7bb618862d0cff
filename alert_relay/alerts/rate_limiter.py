"""
Call pacing for the feed client and outbound channels.

Two policies:

    RateLimiter        at most N calls in any rolling 60 s window
                       (feed: API_RATE_PER_MINUTE, ntfy: NTFY_RATE_PER_MINUTE)
    MinIntervalPacer   at least G seconds between consecutive calls
                       (Pushover: PUSHOVER_RATE_SECONDS)

Both block the caller instead of rejecting it: they model "do not exceed
provider quota", not "give up". Both are thread-safe so one instance can be
shared by a delivery worker pool; the lock is held while sleeping, which
serialises waiters and keeps the global bound.

Clock and sleep are injectable so tests run on a fake clock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


class RateLimiter:
    """Sliding-window admission: ≤ ``max_per_minute`` calls per 60 s."""

    def __init__(
        self,
        max_per_minute: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        name: str = "rate_limiter",
    ):
        self.max_per_minute = max(1, int(max_per_minute))
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._timestamps: Deque[float] = deque()
        self._lock = threading.Lock()

    def acquire(self) -> None:
        """Block until a call is permitted, then record it."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._timestamps) >= self.max_per_minute:
                wait = max(0.0, WINDOW_SECONDS - (now - self._timestamps[0]))
                if wait > 0:
                    logger.debug("%s: window full, sleeping %.2fs", self.name, wait)
                    self._sleep(wait)
                self._prune(self._clock())
            self._timestamps.append(self._clock())

    def _prune(self, now: float) -> None:
        window_start = now - WINDOW_SECONDS
        while self._timestamps and self._timestamps[0] <= window_start:
            self._timestamps.popleft()

    @property
    def in_window(self) -> int:
        """Calls currently counted against the window."""
        with self._lock:
            self._prune(self._clock())
            return len(self._timestamps)


class MinIntervalPacer:
    """Minimum gap between calls, measured start to start."""

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        name: str = "pacer",
    ):
        self.min_interval = max(0.0, float(min_interval))
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._last_call: float = float("-inf")
        self._lock = threading.Lock()

    def acquire(self) -> None:
        with self._lock:
            elapsed = self._clock() - self._last_call
            if elapsed < self.min_interval:
                wait = self.min_interval - elapsed
                logger.debug("%s: pacing, sleeping %.2fs", self.name, wait)
                self._sleep(wait)
            self._last_call = self._clock()
