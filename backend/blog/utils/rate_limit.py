"""In-memory rate limiter guarding the login endpoint."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque


class InMemoryRateLimiter:
    """Sliding-window attempt counter per key (client host + path).

    State lives in process memory, so limits are per worker.
    """

    def __init__(self, clock=time.monotonic):
        self._attempts: dict[str, deque] = defaultdict(deque)
        self._lock = threading.Lock()
        self._clock = clock

    def allow(self, key: str, max_attempts: int, window_seconds: int) -> tuple[bool, int]:
        """Record an attempt for `key`; return (allowed, retry_after_seconds)."""
        now = self._clock()
        with self._lock:
            attempts = self._attempts[key]
            while attempts and attempts[0] <= now - window_seconds:
                attempts.popleft()
            if len(attempts) >= max_attempts:
                return False, max(1, int(window_seconds - (now - attempts[0])))
            attempts.append(now)
        return True, 0

    def reset(self, key: str) -> None:
        """Forget recorded attempts, e.g. after a successful login."""
        with self._lock:
            self._attempts.pop(key, None)
