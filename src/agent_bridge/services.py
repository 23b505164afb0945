"""Use-case services for the management API (CLI, HTTP)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from agent_bridge.admission.session_limits import SessionLimits
from agent_bridge.errors import AdmissionDenied
from agent_bridge.projects.service import ProjectService
from agent_bridge.queue.models import JobCreate, JobView
from agent_bridge.queue.repository import JobRepository
from agent_bridge.sessions.locks import KeyedLocks
from agent_bridge.sessions.models import SessionStatus
from agent_bridge.sessions.repository import SessionRepository
from agent_bridge.sessions.resolution import SessionResolver

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EnqueueSyntheticJob:
    """High-level command to enqueue a turn on behalf of an operator."""

    thread_id: str
    prompt: str
    user_id: str = "management"
    working_dir: str | None = None
    project: str | None = None


class BridgeService:
    """Coordinates session resolution and job insert for management callers.

    Synthetic jobs skip the chat-side allowlist and rate limit but still respect
    the pause gate and the turn/duration limits.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        sessions: SessionRepository,
        jobs: JobRepository,
        locks: KeyedLocks,
        limits: SessionLimits | None = None,
        max_attempts: int = 3,
        default_working_dir: Path | None = None,
        projects: ProjectService | None = None,
    ) -> None:
        self.sessions = sessions
        self.jobs = jobs
        self.resolver = SessionResolver(sessions, locks)
        self.limits = limits or SessionLimits(max_turns=0, max_duration_ms=0)
        self.max_attempts = max_attempts
        self.default_working_dir = default_working_dir
        self.projects = projects

    def enqueue_synthetic_job(self, command: EnqueueSyntheticJob) -> JobView:
        prompt = command.prompt.strip()
        if not prompt:
            raise ValueError("Prompt must not be empty.")
        if self.sessions.is_paused(command.thread_id):
            raise AdmissionDenied(f"Thread {command.thread_id} is paused.", reason="paused")

        working_dir, project_name = self._working_dir_for(command)
        existing = self.sessions.get_session(command.thread_id)
        created_at = existing.created_at if existing is not None else None
        recorded_turns = existing.turn_count if existing is not None else 0
        if not self.limits.check_limits(command.thread_id, created_at, recorded_turns):
            raise AdmissionDenied(
                f"Session limit reached for thread {command.thread_id}.",
                reason="limit_reached",
            )

        resolved = self.resolver.resolve(
            command.thread_id,
            working_dir=working_dir,
            project_name=project_name,
        )
        job = self.jobs.enqueue_job(
            JobCreate(
                thread_id=command.thread_id,
                prompt=prompt,
                session_id=resolved.session_id,
                resume=resolved.resume,
                user_id=command.user_id,
                working_dir=resolved.record.working_dir,
                project_name=resolved.record.project_name,
                max_attempts=self.max_attempts,
            ),
        )
        logger.info("Enqueued synthetic job %s for thread %s", job.job_id, command.thread_id)
        return job

    def session_status(self, thread_id: str) -> SessionStatus:
        return self.sessions.session_status(thread_id)

    def _working_dir_for(self, command: EnqueueSyntheticJob) -> tuple[str | None, str | None]:
        """Explicit directory, then the named project, then the configured defaults."""

        project_name = None
        working_dir = command.working_dir
        if command.project:
            if self.projects is None:
                raise ValueError("Projects are not enabled.")
            project = self.projects.require_project(command.project)
            project_name = project.name
            working_dir = working_dir or project.path
        if working_dir is None and self.projects is not None:
            working_dir = self.projects.default_working_dir()
        if working_dir is None and self.default_working_dir is not None:
            working_dir = str(self.default_working_dir)
        return working_dir, project_name
