"""Process lifecycle: owned state, periodic sweeps and the worker pool."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from uuid import uuid4

from agent_bridge.admission.allowlist import Allowlist
from agent_bridge.admission.rate_limiter import SlidingWindowRateLimiter
from agent_bridge.admission.session_limits import SessionLimits
from agent_bridge.agents.base import AgentAdapter
from agent_bridge.agents.binary import BinaryCache, BinaryResolver
from agent_bridge.agents.registry import create_adapter
from agent_bridge.config import Settings
from agent_bridge.dispatch import MessageDispatcher
from agent_bridge.frontend import ChatFrontend
from agent_bridge.projects.repository import ProjectRepository
from agent_bridge.projects.service import ProjectService
from agent_bridge.queue.repository import JobRepository
from agent_bridge.queue.worker import JobWorker
from agent_bridge.services import BridgeService
from agent_bridge.sessions.away import AwayTracker
from agent_bridge.sessions.locks import KeyedLocks
from agent_bridge.sessions.repository import SessionRepository

logger = logging.getLogger(__name__)


class PeriodicSweeper:
    """Run sweep callables every ``interval_seconds`` on a daemon thread until stopped."""

    def __init__(
        self,
        sweeps: Mapping[str, Callable[[], int]],
        *,
        interval_seconds: float,
    ) -> None:
        self.sweeps = dict(sweeps)
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running or self.interval_seconds <= 0:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="agent-bridge-sweeper")
        self._thread.start()

    def stop(self, *, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=timeout)
        self._thread = None

    def run_once(self) -> dict[str, int]:
        removed = {name: sweep() for name, sweep in self.sweeps.items()}
        if any(removed.values()):
            logger.debug("Sweep removed %s", removed)
        return removed

    def _loop(self) -> None:
        while not self._stop.wait(timeout=self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Periodic sweep error")


class WorkerPool:
    """N worker threads pulling from the shared queue."""

    def __init__(
        self,
        worker_factory: Callable[[str, threading.Event], JobWorker],
        *,
        concurrency: int,
        poll_interval_seconds: float,
    ) -> None:
        self.worker_factory = worker_factory
        self.concurrency = concurrency
        self.poll_interval_seconds = poll_interval_seconds
        self.stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        if self.running:
            return
        self.stop_event.clear()
        prefix = uuid4().hex[:8]
        self._threads = []
        for index in range(self.concurrency):
            worker = self.worker_factory(f"worker-{prefix}-{index}", self.stop_event)
            thread = threading.Thread(
                target=self._worker_loop,
                args=(worker,),
                daemon=True,
                name=f"agent-bridge-worker-{index}",
            )
            thread.start()
            self._threads.append(thread)
        logger.info("Worker pool started with %d worker(s)", self.concurrency)

    def stop(self, *, timeout: float = 15.0) -> None:
        if not self._threads:
            return
        self.stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Worker pool stopped")

    def wait(self) -> None:
        """Block until the pool is stopped, e.g. by a signal handler."""

        while self.running and not self.stop_event.wait(timeout=0.5):
            continue

    def _worker_loop(self, worker: JobWorker) -> None:
        while not self.stop_event.is_set():
            try:
                summary = worker.run_once()
                if summary.processed == 0:
                    self.stop_event.wait(timeout=self.poll_interval_seconds)
            except Exception:
                logger.exception("Worker %s error", worker.worker_id)
                self.stop_event.wait(timeout=5)


class BridgeRuntime:
    """Owns every long-lived object of one bridge process.

    Nothing here is module-global: caches, limiters and locks are built once in
    the constructor and handed to the dispatcher, the management service and each
    worker.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        frontend: ChatFrontend,
        adapter: AgentAdapter | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings
        self.frontend = frontend
        self.sessions = SessionRepository(settings.db_path)
        self.jobs = JobRepository(settings.db_path)
        self.projects_repo = ProjectRepository(settings.db_path)
        self.projects = ProjectService(
            self.projects_repo,
            allowed_dirs=settings.security.allowed_dirs,
            fallback_dir=settings.agent.working_dir,
        )
        self.locks = KeyedLocks()
        self.away = AwayTracker()
        self.binary_cache = BinaryCache()
        self.resolver = BinaryResolver(
            self.binary_cache,
            overrides=settings.agent.binary_overrides,
            environ=environ,
        )
        self.adapter = adapter or create_adapter(
            settings.agent.agent_type,
            resolver=self.resolver,
            timezone=settings.agent.timezone,
        )
        self.rate_limiter = SlidingWindowRateLimiter(
            max_requests=settings.admission.max_requests,
            window_ms=settings.admission.window_ms,
        )
        self.limits = SessionLimits(
            max_turns=settings.limits.max_turns,
            max_duration_ms=settings.limits.max_duration_ms,
            counter_ttl_seconds=settings.limits.turn_counter_ttl_seconds,
        )
        self.allowlist = Allowlist(
            users=settings.security.allowed_users,
            roles=settings.security.allowed_roles,
            channels=settings.security.allowed_channels,
        )
        self.dispatcher = MessageDispatcher(
            sessions=self.sessions,
            jobs=self.jobs,
            frontend=frontend,
            locks=self.locks,
            allowlist=self.allowlist,
            rate_limiter=self.rate_limiter,
            limits=self.limits,
            away=self.away,
            max_attempts=settings.queue.max_attempts,
            default_working_dir=settings.agent.working_dir,
            projects=self.projects,
        )
        self.service = BridgeService(
            sessions=self.sessions,
            jobs=self.jobs,
            locks=self.locks,
            limits=self.limits,
            max_attempts=settings.queue.max_attempts,
            default_working_dir=settings.agent.working_dir,
            projects=self.projects,
        )
        self.sweeper = PeriodicSweeper(
            {
                "rate_limiter": self.rate_limiter.sweep,
                "turn_counters": self.limits.sweep,
            },
            interval_seconds=settings.admission.sweep_interval_seconds,
        )
        self.pool = WorkerPool(
            self.build_worker,
            concurrency=settings.queue.concurrency,
            poll_interval_seconds=settings.queue.poll_interval_seconds,
        )
        self._lifecycle_lock = threading.Lock()
        self._schema_ready = False
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def init_schema(self) -> None:
        if self._schema_ready:
            return
        self.sessions.init_schema()
        self._schema_ready = True

    def build_worker(self, worker_id: str, stop_event: threading.Event | None = None) -> JobWorker:
        queue = self.settings.queue
        return JobWorker(
            jobs=self.jobs,
            sessions=self.sessions,
            adapter=self.adapter,
            frontend=self.frontend,
            worker_id=worker_id,
            locks=self.locks,
            away=self.away,
            default_working_dir=self.settings.agent.working_dir,
            projects=self.projects,
            poll_interval_seconds=queue.poll_interval_seconds,
            retry_base_seconds=queue.retry_base_seconds,
            retry_max_seconds=queue.retry_max_seconds,
            keep_succeeded=queue.keep_succeeded,
            keep_dead=queue.keep_dead,
            stale_job_seconds=queue.stale_job_seconds,
            stop_event=stop_event,
        )

    def start(self, *, workers: bool = True) -> None:
        """Apply migrations and start sweeps (and workers). Safe to call twice."""

        with self._lifecycle_lock:
            if self._started:
                return
            self.init_schema()
            self.sweeper.start()
            if workers:
                self.pool.start()
            self._started = True
            logger.info(
                "agent-bridge runtime started (agent=%s, db=%s)",
                self.adapter.name,
                self.settings.db_path,
            )

    def stop(self) -> None:
        """Stop workers and sweeps. Safe to call twice or before ``start``."""

        with self._lifecycle_lock:
            if not self._started:
                return
            self.pool.stop()
            self.sweeper.stop()
            self._started = False
            logger.info("agent-bridge runtime stopped")

    def close(self) -> None:
        self.stop()
        self.sessions.close()
        self.jobs.close()
        self.projects_repo.close()
