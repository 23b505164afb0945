"""Sliding-window rate limiter keyed by user id."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class SlidingWindowRateLimiter:
    """Keep per-user request timestamps inside the last ``window_ms``.

    A request is admitted while fewer than ``max_requests`` timestamps remain in
    the window. Rejected requests leave no trace. ``max_requests <= 0`` disables
    the check entirely.
    """

    def __init__(
        self,
        *,
        max_requests: int,
        window_ms: int,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock
        self._timestamps: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0

    def admit(self, user_id: str) -> bool:
        """Return True and record the request if the user is within the limit."""

        if not self.enabled:
            return True

        now = self._clock()
        window_start = now - self.window_ms
        with self._lock:
            recent = [stamp for stamp in self._timestamps.get(user_id, ()) if stamp > window_start]
            if len(recent) >= self.max_requests:
                self._timestamps[user_id] = recent
                return False
            recent.append(now)
            self._timestamps[user_id] = recent
            return True

    def sweep(self) -> int:
        """Drop users whose timestamps have all aged out; return how many were removed."""

        window_start = self._clock() - self.window_ms
        with self._lock:
            expired = [
                user_id
                for user_id, stamps in self._timestamps.items()
                if not any(stamp > window_start for stamp in stamps)
            ]
            for user_id in expired:
                del self._timestamps[user_id]
        return len(expired)

    def tracked_users(self) -> int:
        with self._lock:
            return len(self._timestamps)

    def reset(self) -> None:
        with self._lock:
            self._timestamps.clear()
