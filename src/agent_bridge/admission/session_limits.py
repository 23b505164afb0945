"""Per-thread turn and duration limits checked before a job is created."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import datetime

from agent_bridge.storage.common import to_utc_aware_datetime, utc_now


class SessionLimits:
    """Turn and duration gate.

    The turn counter is in-memory and advisory; it only short-circuits dispatch
    before the persistent store is touched. ``created_at`` of the session record
    is authoritative for the duration check.
    """

    def __init__(
        self,
        *,
        max_turns: int,
        max_duration_ms: int,
        counter_ttl_seconds: float = 86_400,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.max_turns = max_turns
        self.max_duration_ms = max_duration_ms
        self.counter_ttl_seconds = counter_ttl_seconds
        self._clock = clock
        self._now = now
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def check_limits(
        self,
        thread_id: str,
        created_at: datetime | None = None,
        recorded_turns: int = 0,
    ) -> bool:
        """Count this turn and return False once the thread is over a limit.

        ``recorded_turns`` seeds a cold counter from the session record, so a
        process that starts fresh (or a one-shot CLI call) still sees earlier turns.
        """

        if self.max_turns > 0:
            with self._lock:
                turns, _ = self._counters.get(thread_id, (recorded_turns, 0.0))
                turns += 1
                self._counters[thread_id] = (turns, self._clock())
            if turns > self.max_turns:
                return False

        if self.max_duration_ms > 0 and created_at is not None:
            age = self._now() - to_utc_aware_datetime(created_at)
            if age.total_seconds() * 1000 > self.max_duration_ms:
                return False

        return True

    def turns(self, thread_id: str) -> int:
        with self._lock:
            return self._counters.get(thread_id, (0, 0.0))[0]

    def reset(self, thread_id: str | None = None) -> None:
        with self._lock:
            if thread_id is None:
                self._counters.clear()
            else:
                self._counters.pop(thread_id, None)

    def sweep(self) -> int:
        """Forget counters idle for longer than the TTL."""

        cutoff = self._clock() - self.counter_ttl_seconds
        with self._lock:
            stale = [key for key, (_, last) in self._counters.items() if last < cutoff]
            for key in stale:
                del self._counters[key]
        return len(stale)
