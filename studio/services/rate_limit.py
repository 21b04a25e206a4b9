"""Fixed-window request counting for admission control.

Counters live in process memory, so limits apply per worker process.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class _Window:
    started_at: float
    count: int


class FixedWindowRateLimiter:
    """
    Allow at most ``max_requests`` per key in each window of ``window_seconds``.

    The window starts at a key's first request and resets once it has elapsed.
    """

    def __init__(
        self,
        window_seconds: int,
        max_requests: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def hit(self, key: str) -> tuple[bool, int]:
        """
        Count one request for ``key``.

        Returns (allowed, retry_after_seconds); retry_after is 0 when allowed.
        """
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now - window.started_at >= self.window_seconds:
            self._prune(now)
            self._windows[key] = _Window(started_at=now, count=1)
            return True, 0
        if window.count >= self.max_requests:
            retry_after = max(1, int(window.started_at + self.window_seconds - now + 0.999))
            return False, retry_after
        window.count += 1
        return True, 0

    def reset(self) -> None:
        self._windows.clear()

    def _prune(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now - w.started_at >= self.window_seconds]
        for k in expired:
            del self._windows[k]
