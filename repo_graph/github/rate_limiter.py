"""Client-side throttle for outgoing upstream calls."""

from __future__ import annotations

import asyncio
import threading
import time
from collections import defaultdict, deque
from typing import Callable


class RateLimiter:
    """Sliding-window throttle keyed by caller.

    A key identifies one access token, so callers sharing a process draw on
    separate windows. :meth:`acquire` waits for a free slot instead of
    rejecting the call.

    Args:
        max_requests: Calls allowed per key within ``window_seconds``.
        window_seconds: Length of the sliding window.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._calls: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def _window(self, key: str, now: float) -> deque[float]:
        calls = self._calls[key]
        while calls and calls[0] <= now - self.window_seconds:
            calls.popleft()
        return calls

    def try_acquire(self, key: str) -> float:
        """Take a slot for ``key`` if one is free.

        Returns 0 when the slot was taken, otherwise the seconds until the
        oldest call in the window expires.
        """
        now = self._clock()
        with self._lock:
            calls = self._window(key, now)
            if len(calls) < self.max_requests:
                calls.append(now)
                return 0.0
            return max(0.0, calls[0] + self.window_seconds - now)

    def remaining(self, key: str) -> int:
        with self._lock:
            return max(0, self.max_requests - len(self._window(key, self._clock())))

    async def acquire(self, key: str) -> None:
        """Wait until a slot is free for ``key`` and take it."""
        while True:
            wait = self.try_acquire(key)
            if not wait:
                return
            await asyncio.sleep(wait)
