"""
Sliding-window rate limiter for external data providers.

Permits at most ``max_calls`` within any rolling ``window_seconds``. A caller
that would exceed the limit blocks until the oldest call in the window ages
out. One limiter instance is shared by every thread talking to the same
provider.

Usage:
    limiter = SlidingWindowRateLimiter(max_calls=250, window_seconds=60)
    limiter.acquire()
    provider_call()
"""

import logging
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, Optional

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Blocking N-calls-per-rolling-window limiter."""

    def __init__(
        self,
        max_calls: int = 250,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_calls < 1:
            raise ValueError(f"max_calls must be >= 1, got {max_calls}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")

        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._timestamps: Deque[float] = deque()
        self._lock = Lock()

    def _prune(self, now: float) -> None:
        """Drop timestamps that have left the window."""
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    def try_acquire(self) -> Optional[float]:
        """
        Take a slot without blocking.

        Returns:
            None if the slot was taken, otherwise seconds to wait before retrying
        """
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._timestamps) < self.max_calls:
                self._timestamps.append(now)
                return None
            return self.window_seconds - (now - self._timestamps[0])

    def acquire(self) -> float:
        """
        Block until a slot is free, then take it.

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        while True:
            wait_time = self.try_acquire()
            if wait_time is None:
                return waited
            if wait_time > 0:
                logger.warning(f"Rate limit reached, waiting {wait_time:.1f}s")
                self._sleep(wait_time)
                waited += wait_time

    @property
    def calls_in_window(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._timestamps)
