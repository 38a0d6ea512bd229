"""In-memory per-user rate limiter with a sliding window."""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from collections.abc import Callable

from .errors import SyncError


class RateLimitedError(SyncError):
    """Caller exceeded its request budget for a route."""

    def __init__(self, message: str, retry_after: int, limit: int) -> None:
        super().__init__(
            message,
            code="RATE_LIMITED",
            details={"retry_after": retry_after, "limit": limit},
        )
        self.retry_after = retry_after
        self.limit = limit

    @property
    def retryable(self) -> bool:
        return True


class SlidingWindowRateLimiter:
    """Sliding window of request timestamps per (user, route) key.

    Keys whose window has emptied are dropped, either when the key is next
    seen or by a sweep that runs at most once per window.
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.clock = clock
        self._requests: dict[tuple[str, str], deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def is_allowed(self, user_id: str, route: str, limit: int) -> bool:
        """Record a request if it fits under the limit."""
        now = self.clock()
        cutoff = now - self.window_seconds
        key = (user_id, route)
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now

            window = self._requests.get(key)
            if window is not None:
                while window and window[0] <= cutoff:
                    window.popleft()
                if not window:
                    del self._requests[key]
                    window = None

            if len(window or ()) >= limit:
                return False
            if window is None:
                window = self._requests[key] = deque()
            window.append(now)
            return True

    def get_retry_after(self, user_id: str, route: str) -> int:
        """Seconds until the next request is allowed (for the 429 header)."""
        with self._lock:
            window = self._requests.get((user_id, route))
            if not window:
                return 1
            remaining = window[0] + self.window_seconds - self.clock()
        return max(1, math.ceil(remaining))

    def check(self, user_id: str, route: str, limit: int) -> None:
        """Raise RateLimitedError if the request does not fit under the limit."""
        if self.is_allowed(user_id, route, limit):
            return
        raise RateLimitedError(
            f"Too many {route} requests. Limit: {limit} per {int(self.window_seconds)} seconds.",
            retry_after=self.get_retry_after(user_id, route),
            limit=limit,
        )

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._requests)

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()

    def _sweep(self, cutoff: float) -> None:
        # The newest timestamp is last; once it has expired the key is idle
        idle = [key for key, window in self._requests.items() if window[-1] <= cutoff]
        for key in idle:
            del self._requests[key]
