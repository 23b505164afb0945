"""Inbound message dispatch: admission, pause gate, session resolution, enqueue."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from agent_bridge.admission.allowlist import Allowlist
from agent_bridge.admission.rate_limiter import SlidingWindowRateLimiter
from agent_bridge.admission.session_limits import SessionLimits
from agent_bridge.errors import FrontendDeliveryError
from agent_bridge.frontend import ChatFrontend, InboundMessage, generate_thread_name
from agent_bridge.projects.models import ProjectView
from agent_bridge.projects.service import ProjectService
from agent_bridge.queue.models import JobCreate, JobView
from agent_bridge.queue.repository import JobRepository
from agent_bridge.sessions.away import AwayTracker, is_away_message, is_back_message
from agent_bridge.sessions.locks import KeyedLocks
from agent_bridge.sessions.models import HeldMessageView
from agent_bridge.sessions.repository import SessionRepository
from agent_bridge.sessions.resolution import SessionResolver

logger = logging.getLogger(__name__)

PAUSE_KEYWORDS: tuple[str, ...] = ("pause", "stop", "hold")
RESUME_KEYWORDS: tuple[str, ...] = ("resume", "continue", "unpause")
RESET_COMMAND = "!reset"
PROJECT_COMMAND = "!project"

REPLY_RESET = "Session reset. Your next message starts a new conversation."
REPLY_AWAY = "Got it. Say **back** when you return."
REPLY_BACK = "Welcome back! Normal prompts from here."
REPLY_PAUSED = "Paused. Messages will be held until you say **resume**."
REPLY_LIMIT = "Session limit reached. Send `!reset` to start a new session."
REPLY_PROJECT_USAGE = (
    "Usage: `!project list`, `!project add <name> <path>`, "
    "`!project default <name>`, `!project use <name>`"
)


class DispatchOutcomeKind(str, Enum):
    DENIED = "denied"
    RATE_LIMITED = "rate_limited"
    IGNORED = "ignored"
    RESET = "reset"
    AWAY = "away"
    BACK = "back"
    PAUSED = "paused"
    HELD = "held"
    RESUMED = "resumed"
    LIMIT_REACHED = "limit_reached"
    PROJECT = "project"
    REJECTED = "rejected"
    ENQUEUED = "enqueued"


@dataclass(slots=True)
class DispatchOutcome:
    """What happened to one inbound message.

    ``reply`` is an optional acknowledgement the front-end may post; admission
    rejections carry none and are dropped silently.
    """

    kind: DispatchOutcomeKind
    thread_id: str
    job: JobView | None = None
    held: list[HeldMessageView] = field(default_factory=list)
    new_conversation: bool = False
    reply: str | None = None


def matches_keyword(content: str, keywords: tuple[str, ...]) -> bool:
    """Exact keyword match, case-insensitive, optionally ``!``-prefixed."""

    normalized = content.strip().lower()
    return any(normalized in (keyword, f"!{keyword}") for keyword in keywords)


class MessageDispatcher:
    """Turn inbound chat messages into queued jobs."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        sessions: SessionRepository,
        jobs: JobRepository,
        frontend: ChatFrontend,
        locks: KeyedLocks,
        allowlist: Allowlist | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        limits: SessionLimits | None = None,
        away: AwayTracker | None = None,
        max_attempts: int = 3,
        default_working_dir: Path | None = None,
        projects: ProjectService | None = None,
    ) -> None:
        self.sessions = sessions
        self.jobs = jobs
        self.frontend = frontend
        self.resolver = SessionResolver(sessions, locks)
        self.allowlist = allowlist or Allowlist()
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(max_requests=0, window_ms=0)
        self.limits = limits or SessionLimits(max_turns=0, max_duration_ms=0)
        self.away = away or AwayTracker()
        self.max_attempts = max_attempts
        self.default_working_dir = default_working_dir
        self.projects = projects

    def handle(self, message: InboundMessage) -> DispatchOutcome:  # noqa: PLR0911
        thread_id = message.thread_id

        if not self.allowlist.check(message.origin()):
            logger.info("Dropped message from %s: not allowlisted", message.author_id)
            return DispatchOutcome(DispatchOutcomeKind.DENIED, thread_id)
        if not self.rate_limiter.admit(message.author_id):
            logger.info("Dropped message from %s: rate limited", message.author_id)
            return DispatchOutcome(DispatchOutcomeKind.RATE_LIMITED, thread_id)

        content = message.content.strip()
        if not content:
            return DispatchOutcome(DispatchOutcomeKind.IGNORED, thread_id)

        if content.lower() == RESET_COMMAND:
            self.sessions.delete_session(thread_id)
            self.limits.reset(thread_id)
            logger.info("Session reset for thread %s", thread_id)
            return DispatchOutcome(DispatchOutcomeKind.RESET, thread_id, reply=REPLY_RESET)

        if content.split(maxsplit=1)[0].lower() == PROJECT_COMMAND:
            return self._project_command(message, content)

        if is_away_message(content):
            self.away.set_away(thread_id)
            return DispatchOutcome(DispatchOutcomeKind.AWAY, thread_id, reply=REPLY_AWAY)
        if is_back_message(content):
            self.away.set_back(thread_id)
            return DispatchOutcome(DispatchOutcomeKind.BACK, thread_id, reply=REPLY_BACK)

        if matches_keyword(content, RESUME_KEYWORDS):
            self.sessions.resume_thread(thread_id)
            held = self.sessions.drain_held_messages(thread_id)
            logger.info("Thread %s resumed with %d held message(s)", thread_id, len(held))
            reply = f"Resuming, {len(held)} held message(s)." if held else "Resumed."
            return DispatchOutcome(DispatchOutcomeKind.RESUMED, thread_id, held=held, reply=reply)
        if matches_keyword(content, PAUSE_KEYWORDS):
            self.sessions.pause_thread(thread_id, paused_by=message.author_id)
            logger.info("Thread %s paused by %s", thread_id, message.author_id)
            return DispatchOutcome(DispatchOutcomeKind.PAUSED, thread_id, reply=REPLY_PAUSED)
        if self.sessions.is_paused(thread_id):
            self.sessions.hold_message(thread_id, author_id=message.author_id, content=content)
            return DispatchOutcome(DispatchOutcomeKind.HELD, thread_id)

        existing = self.sessions.get_session(thread_id)
        working_dir = message.working_dir
        project_name = None
        if existing is None and self.projects is not None:
            try:
                project = self.projects.resolve_message(
                    content,
                    message.parent_channel_id or message.channel_id,
                )
            except ValueError as error:
                logger.info("Rejected new conversation in thread %s: %s", thread_id, error)
                return DispatchOutcome(DispatchOutcomeKind.REJECTED, thread_id, reply=str(error))
            content = project.content.strip()
            if not content:
                return DispatchOutcome(DispatchOutcomeKind.IGNORED, thread_id)
            working_dir = working_dir or project.working_dir
            project_name = project.project_name

        created_at = existing.created_at if existing is not None else None
        recorded_turns = existing.turn_count if existing is not None else 0
        if not self.limits.check_limits(thread_id, created_at, recorded_turns):
            logger.info("Session limit reached for thread %s", thread_id)
            return DispatchOutcome(DispatchOutcomeKind.LIMIT_REACHED, thread_id, reply=REPLY_LIMIT)

        return self._enqueue(
            thread_id=thread_id,
            author_id=message.author_id,
            content=content,
            working_dir=working_dir,
            project_name=project_name,
            channel_context=message.channel_context,
        )

    def replay_held(self, thread_id: str, held: list[HeldMessageView]) -> list[JobView]:
        """Enqueue a drained held batch in its original order."""

        jobs: list[JobView] = []
        for message in held:
            outcome = self._enqueue(
                thread_id=thread_id,
                author_id=message.author_id,
                content=message.content,
                working_dir=None,
                project_name=None,
                channel_context=None,
            )
            if outcome.job is not None:
                jobs.append(outcome.job)
        return jobs

    def _enqueue(
        self,
        *,
        thread_id: str,
        author_id: str,
        content: str,
        working_dir: str | None,
        project_name: str | None,
        channel_context: str | None,
    ) -> DispatchOutcome:
        if working_dir is None and self.default_working_dir is not None:
            working_dir = str(self.default_working_dir)
        resolved = self.resolver.resolve(
            thread_id,
            working_dir=working_dir,
            project_name=project_name,
        )

        if resolved.created:
            self._name_thread(thread_id, content)
        job = self.jobs.enqueue_job(
            JobCreate(
                thread_id=thread_id,
                prompt=content,
                session_id=resolved.session_id,
                resume=resolved.resume,
                user_id=author_id,
                working_dir=resolved.record.working_dir,
                project_name=resolved.record.project_name,
                channel_context=channel_context if resolved.created else None,
                max_attempts=self.max_attempts,
            ),
        )
        logger.info(
            "Enqueued job %s for thread %s (resume=%s, prompt_chars=%d)",
            job.job_id,
            thread_id,
            job.resume,
            len(content),
        )
        return DispatchOutcome(
            DispatchOutcomeKind.ENQUEUED,
            thread_id,
            job=job,
            new_conversation=resolved.created,
        )

    def _project_command(self, message: InboundMessage, content: str) -> DispatchOutcome:
        thread_id = message.thread_id
        if self.projects is None:
            return DispatchOutcome(
                DispatchOutcomeKind.PROJECT,
                thread_id,
                reply="Projects are not enabled.",
            )

        args = content.split()[1:]
        action = args[0].lower() if args else "list"
        try:
            if action == "list" and len(args) <= 1:
                reply = _format_projects(self.projects.list_projects())
            elif action == "add" and len(args) >= 3:  # noqa: PLR2004
                project = self.projects.add_project(args[1], " ".join(args[2:]))
                reply = f"Project **{project.name}** registered at `{project.path}`"
            elif action == "default" and len(args) == 2:  # noqa: PLR2004
                project = self.projects.set_default(args[1])
                reply = f"Project **{project.name}** set as default."
            elif action == "use" and len(args) == 2:  # noqa: PLR2004
                channel_id = message.parent_channel_id or message.channel_id or thread_id
                project = self.projects.use_for_channel(channel_id, args[1])
                reply = f"Channel now uses project **{project.name}** (`{project.path}`)."
            else:
                reply = REPLY_PROJECT_USAGE
        except ValueError as error:
            reply = str(error)
        return DispatchOutcome(DispatchOutcomeKind.PROJECT, thread_id, reply=reply)

    def _name_thread(self, thread_id: str, content: str) -> None:
        try:
            self.frontend.rename_thread(thread_id, generate_thread_name(content))
        except FrontendDeliveryError as error:
            logger.warning("Could not name thread %s: %s", thread_id, error)


def _format_projects(projects: list[ProjectView]) -> str:
    if not projects:
        return "No projects registered. Use `!project add <name> <path>` to add one."
    lines = ["**Registered Projects**"]
    for project in projects:
        marker = " **(default)**" if project.is_default else ""
        lines.append(f"- **{project.name}**{marker}: `{project.path}`")
    return "\n".join(lines)
