"""Domain models for the durable agent job queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    DEAD = "dead"


class FailureClass(str, Enum):
    """Normalized failure classes recorded for retry and inspection."""

    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    SESSION_RESUME_FAILED = "session_resume_failed"
    BINARY_NOT_FOUND = "binary_not_found"
    SPAWN_FAILED = "spawn_failed"
    TIMEOUT = "timeout"
    DELIVERY_FAILED = "delivery_failed"


@dataclass(slots=True)
class JobCreate:
    """Input payload for enqueuing one conversational turn."""

    thread_id: str
    prompt: str
    session_id: str
    resume: bool
    user_id: str
    working_dir: str | None = None
    project_name: str | None = None
    channel_context: str | None = None
    job_id: str | None = None
    max_attempts: int = 3
    run_after: datetime | None = None


@dataclass(slots=True)
class JobView:
    """Readable job view for the worker, CLI and management API."""

    job_id: str
    thread_id: str
    session_id: str
    resume: bool
    user_id: str
    prompt: str
    working_dir: str | None
    project_name: str | None
    channel_context: str | None
    status: JobStatus
    attempt: int
    max_attempts: int
    run_after: datetime
    started_at: datetime | None
    heartbeat_at: datetime | None
    finished_at: datetime | None
    failure_class: FailureClass | None
    last_exit_code: int | None
    error_summary: str | None
    worker_id: str | None
    result_session_id: str | None
    used_fallback: bool
    output_chars: int | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class JobEventView:
    """Job event entry for the audit trail."""

    event_id: int
    job_id: str
    event_type: str
    status_from: JobStatus | None
    status_to: JobStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class JobDetails:
    """Job with its event stream."""

    job: JobView
    events: list[JobEventView]


@dataclass(slots=True)
class JobCompletion:
    """What a successful attempt produced."""

    result_session_id: str
    used_fallback: bool
    output_chars: int
    turn_count: int
