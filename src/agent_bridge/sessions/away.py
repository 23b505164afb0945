"""In-memory "be right back" state per thread.

Away state lives in memory only; after a restart every user counts as back.
"""

from __future__ import annotations

import threading

AWAY_PHRASES: frozenset[str] = frozenset({"brb", "be right back", "afk", "stepping away"})
BACK_PHRASES: frozenset[str] = frozenset({"back", "im back", "i'm back", "here"})

AWAY_GUIDANCE = (
    "IMPORTANT: The user is currently away from this conversation.\n"
    "Do not block waiting for an interactive answer or approval.\n"
    "If you need their input, finish what you can, state your question clearly at the end "
    "of your reply, and they will answer when they return."
)


def is_away_message(content: str) -> bool:
    return content.strip().lower() in AWAY_PHRASES


def is_back_message(content: str) -> bool:
    return content.strip().lower() in BACK_PHRASES


def wrap_away_guidance(prompt: str, *, thread_id: str) -> str:
    """Prefix ``prompt`` with the away-mode instruction block."""

    return (
        '<system_instruction source="agent-bridge" purpose="away_guidance">\n'
        f"{AWAY_GUIDANCE}\n"
        f"Thread ID for this conversation: {thread_id}\n"
        "</system_instruction>\n\n"
        f"{prompt}"
    )


class AwayTracker:
    """Thread-safe set of thread ids whose user is away."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._away: set[str] = set()

    def set_away(self, thread_id: str) -> None:
        with self._lock:
            self._away.add(thread_id)

    def set_back(self, thread_id: str) -> bool:
        with self._lock:
            if thread_id not in self._away:
                return False
            self._away.discard(thread_id)
            return True

    def is_away(self, thread_id: str) -> bool:
        with self._lock:
            return thread_id in self._away

    def away_threads(self) -> list[str]:
        with self._lock:
            return sorted(self._away)
