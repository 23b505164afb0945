"""Domain views for thread sessions and pause state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class SessionRecord:
    """One thread's agent session."""

    thread_id: str
    session_id: str
    working_dir: str | None
    project_name: str | None
    turn_count: int
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class PauseState:
    thread_id: str
    paused_by: str
    paused_at: datetime


@dataclass(slots=True)
class HeldMessageView:
    """Message captured while its thread was paused."""

    thread_id: str
    author_id: str
    content: str
    created_at: datetime


@dataclass(slots=True)
class SessionStatus:
    """Diagnostics snapshot for the management API."""

    thread_id: str
    record: SessionRecord | None
    pause: PauseState | None
    held_count: int
