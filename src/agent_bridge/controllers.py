"""Controllers for agent-bridge CLI commands."""

from __future__ import annotations

import logging
import signal
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from agent_bridge.admission.session_limits import SessionLimits
from agent_bridge.agents.binary import BinaryCache, BinaryResolver
from agent_bridge.agents.registry import binary_spec_for
from agent_bridge.config import SUPPORTED_AGENTS, Settings
from agent_bridge.errors import AdmissionDenied, BinaryNotFound
from agent_bridge.frontend import ConsoleFrontend
from agent_bridge.projects.repository import ProjectRepository
from agent_bridge.projects.service import ProjectService
from agent_bridge.queue.models import JobStatus
from agent_bridge.queue.repository import JobRepository
from agent_bridge.queue.worker import WorkerRunSummary
from agent_bridge.runtime import BridgeRuntime
from agent_bridge.services import BridgeService, EnqueueSyntheticJob
from agent_bridge.sessions.locks import KeyedLocks
from agent_bridge.sessions.repository import SessionRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_jobs: int | None
    concurrency: int | None


@dataclass(slots=True)
class JobEnqueueCommand:
    """CLI input for a synthetic job."""

    db_path: Path | None
    thread_id: str
    prompt: str
    user_id: str
    working_dir: str | None
    project: str | None = None


@dataclass(slots=True)
class JobListCommand:
    db_path: Path | None
    status: str | None
    thread_id: str | None
    limit: int


@dataclass(slots=True)
class JobInspectCommand:
    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class SessionShowCommand:
    db_path: Path | None
    thread_id: str


@dataclass(slots=True)
class ProjectAddCommand:
    db_path: Path | None
    name: str
    path: str


@dataclass(slots=True)
class ProjectListCommand:
    db_path: Path | None


@dataclass(slots=True)
class ProjectDefaultCommand:
    db_path: Path | None
    name: str


@dataclass(slots=True)
class ChannelProjectCommand:
    """CLI input binding a channel to a project."""

    db_path: Path | None
    channel_id: str
    name: str


@dataclass(slots=True)
class ChannelDirCommand:
    db_path: Path | None
    channel_id: str
    path: str


@dataclass(slots=True)
class AgentResolveCommand:
    agent: str | None


class BridgeCliController:
    """Coordinates worker, queue and session inspection CLI operations."""

    def __init__(self, emit: Callable[[str], None] | None = None) -> None:
        self._emit = emit

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = _settings(command.db_path)
        if command.concurrency is not None:
            settings.queue.concurrency = command.concurrency
        runtime = BridgeRuntime(settings, frontend=ConsoleFrontend(self._emit))
        try:
            if command.once or command.max_jobs is not None:
                runtime.start(workers=False)
                worker = runtime.build_worker(worker_id="cli-worker")
                summary = worker.run_loop(
                    max_jobs=1 if command.once else command.max_jobs,
                    max_idle_polls=1,
                    install_signal_handlers=True,
                )
                return [_summary_line(summary)]

            runtime.start()
            with _stop_on_signal(runtime):
                runtime.pool.wait()
            return ["Worker pool stopped."]
        finally:
            runtime.close()

    def enqueue_job(self, command: JobEnqueueCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as (sessions, jobs), _projects(settings) as projects:
            service = BridgeService(
                sessions=sessions,
                jobs=jobs,
                locks=KeyedLocks(),
                limits=SessionLimits(
                    max_turns=settings.limits.max_turns,
                    max_duration_ms=settings.limits.max_duration_ms,
                ),
                max_attempts=settings.queue.max_attempts,
                default_working_dir=settings.agent.working_dir,
                projects=projects,
            )
            try:
                job = service.enqueue_synthetic_job(
                    EnqueueSyntheticJob(
                        thread_id=command.thread_id,
                        prompt=command.prompt,
                        user_id=command.user_id,
                        working_dir=command.working_dir,
                        project=command.project,
                    ),
                )
            except AdmissionDenied as error:
                return [f"Job rejected ({error.reason}): {error}"]

        return [
            f"Job enqueued: job_id={job.job_id} thread={job.thread_id} "
            f"session={job.session_id} resume={job.resume} status={job.status.value}",
        ]

    def list_jobs(self, command: JobListCommand) -> list[str]:
        settings = _settings(command.db_path)
        status_filter = _parse_status(command.status)
        with _repositories(settings) as (_, jobs):
            rows = jobs.list_jobs(
                status=status_filter,
                thread_id=command.thread_id,
                limit=command.limit,
            )

        lines = [f"Jobs: {len(rows)}"]
        for job in rows:
            lines.append(
                f"  {job.job_id} thread={job.thread_id} status={job.status.value} "
                f"attempt={job.attempt}/{job.max_attempts} resume={job.resume} "
                f"run_after={job.run_after.isoformat()}",
            )
        return lines

    def inspect_job(self, command: JobInspectCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as (_, jobs):
            details = jobs.get_job_details(job_id=command.job_id)
        if details is None:
            return [f"Job not found: {command.job_id}"]

        job = details.job
        lines = [
            f"Job: {job.job_id}",
            f"Thread: {job.thread_id}",
            f"Session: {job.session_id} (resume={job.resume})",
            f"Status: {job.status.value}",
            f"Attempt: {job.attempt}/{job.max_attempts}",
            f"Failure class: {job.failure_class.value if job.failure_class else '-'}",
            f"Exit code: {job.last_exit_code if job.last_exit_code is not None else '-'}",
            f"Error: {job.error_summary or '-'}",
            f"Result session: {job.result_session_id or '-'}",
            f"Used fallback: {job.used_fallback}",
            f"Prompt chars: {len(job.prompt)}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def retry_job(self, command: JobInspectCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as (_, jobs):
            jobs.retry_job(job_id=command.job_id)
        return [f"Job re-queued: {command.job_id}"]

    def show_session(self, command: SessionShowCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as (sessions, _):
            status = sessions.session_status(command.thread_id)

        lines = [f"Thread: {status.thread_id}"]
        if status.record is None:
            lines.append("Session: -")
        else:
            record = status.record
            lines.extend(
                [
                    f"Session: {record.session_id}",
                    f"Working dir: {record.working_dir or '-'}",
                    f"Project: {record.project_name or '-'}",
                    f"Turns: {record.turn_count}",
                    f"Created: {record.created_at.isoformat()}",
                ],
            )
        if status.pause is None:
            lines.append("Paused: no")
        else:
            lines.append(
                f"Paused: yes (by {status.pause.paused_by} "
                f"at {status.pause.paused_at.isoformat()})",
            )
        lines.append(f"Held messages: {status.held_count}")
        return lines

    def add_project(self, command: ProjectAddCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _projects(settings) as projects:
            project = projects.add_project(command.name, command.path)
        return [f"Project registered: {project.name} -> {project.path}"]

    def list_projects(self, command: ProjectListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _projects(settings) as projects:
            rows = projects.list_projects()

        lines = [f"Projects: {len(rows)}"]
        for project in rows:
            marker = " (default)" if project.is_default else ""
            lines.append(f"  {project.name}{marker} {project.path}")
        return lines

    def set_default_project(self, command: ProjectDefaultCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _projects(settings) as projects:
            project = projects.set_default(command.name)
        return [f"Default project: {project.name}"]

    def use_project(self, command: ChannelProjectCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _projects(settings) as projects:
            project = projects.use_for_channel(command.channel_id, command.name)
        return [f"Channel {command.channel_id} uses project {project.name} ({project.path})"]

    def set_channel_dir(self, command: ChannelDirCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _projects(settings) as projects:
            config = projects.set_channel_dir(command.channel_id, command.path)
        return [f"Channel {config.channel_id} working dir: {config.working_dir}"]

    def resolve_agents(self, command: AgentResolveCommand) -> list[str]:
        settings = Settings.from_env()
        resolver = BinaryResolver(BinaryCache(), overrides=settings.agent.binary_overrides)
        agents = (command.agent,) if command.agent else SUPPORTED_AGENTS
        lines: list[str] = []
        for agent in agents:
            spec = binary_spec_for(agent)
            try:
                resolved = resolver.resolve(spec)
            except BinaryNotFound as error:
                lines.append(f"{agent}: not found ({error})")
                continue
            lines.append(
                f"{agent}: {' '.join(resolved.command())} "
                f"(source={resolved.source.value}, override={spec.env_var})",
            )
        return lines


def _summary_line(summary: WorkerRunSummary) -> str:
    return (
        "Worker summary: "
        f"processed={summary.processed} succeeded={summary.succeeded} "
        f"retried={summary.retried} dead={summary.dead} "
        f"fallbacks={summary.fallbacks} idle_polls={summary.idle_polls}"
    )


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _parse_status(value: str | None) -> JobStatus | None:
    if value is None:
        return None
    return JobStatus(value.strip().lower())


@contextmanager
def _stop_on_signal(runtime: BridgeRuntime) -> Iterator[None]:
    def _handler(signum: int, _: object | None) -> None:
        logger.info("Signal %s received, stopping worker pool", signum)
        runtime.pool.stop_event.set()

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)
    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)


@contextmanager
def _repositories(settings: Settings) -> Iterator[tuple[SessionRepository, JobRepository]]:
    sessions = SessionRepository(settings.db_path)
    jobs = JobRepository(settings.db_path)
    sessions.init_schema()
    try:
        yield sessions, jobs
    finally:
        sessions.close()
        jobs.close()


@contextmanager
def _projects(settings: Settings) -> Iterator[ProjectService]:
    repository = ProjectRepository(settings.db_path)
    repository.init_schema()
    try:
        yield ProjectService(
            repository,
            allowed_dirs=settings.security.allowed_dirs,
            fallback_dir=settings.agent.working_dir,
        )
    finally:
        repository.close()
