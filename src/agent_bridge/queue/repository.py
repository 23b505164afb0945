"""Persistent queue repository for agent jobs."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy import and_, func, or_
from sqlalchemy import delete as sa_delete
from sqlalchemy import select as sa_select
from sqlalchemy import update as sa_update
from sqlalchemy.orm import aliased
from sqlmodel import Session, col, select

from agent_bridge.queue.models import (
    FailureClass,
    JobCompletion,
    JobCreate,
    JobDetails,
    JobEventView,
    JobStatus,
    JobView,
)
from agent_bridge.storage.alembic_runner import upgrade_head
from agent_bridge.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from agent_bridge.storage.sqlmodel_models import AgentJob, AgentJobEvent

_FINISHED_STATUSES = (JobStatus.SUCCEEDED, JobStatus.DEAD)


class JobRepository:
    """Queue persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue_job(self, payload: JobCreate) -> JobView:
        """Create a queued job."""

        now = utc_now()
        job_id = payload.job_id or str(uuid4())
        with Session(self.engine) as session:
            row = AgentJob(
                job_id=job_id,
                thread_id=payload.thread_id,
                session_id=payload.session_id,
                resume=payload.resume,
                user_id=payload.user_id,
                prompt=payload.prompt,
                working_dir=payload.working_dir,
                project_name=payload.project_name,
                channel_context=payload.channel_context,
                status=JobStatus.QUEUED.value,
                attempt=0,
                max_attempts=payload.max_attempts,
                run_after=to_db_datetime(payload.run_after or now),
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="enqueued",
                status_from=None,
                status_to=JobStatus.QUEUED,
                details={
                    "thread_id": payload.thread_id,
                    "resume": payload.resume,
                    "max_attempts": payload.max_attempts,
                    "prompt_chars": len(payload.prompt),
                },
            )
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def claim_next_job(self, *, worker_id: str) -> JobView | None:
        """Atomically claim the oldest ready job whose thread is free.

        A job is eligible only when its thread has no running job and no older
        queued job, which keeps per-thread execution strictly ordered while
        different threads proceed in parallel.
        """

        while True:
            now = utc_now()
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(AgentJob)
                    .where(
                        AgentJob.status == JobStatus.QUEUED.value,
                        AgentJob.run_after <= to_db_datetime(now),
                        ~_thread_blocked_clause(),
                    )
                    .order_by(
                        col(AgentJob.run_after).asc(),
                        col(AgentJob.created_at).asc(),
                        col(AgentJob.job_id).asc(),
                    )
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(AgentJob)
                    .where(
                        col(AgentJob.job_id) == candidate.job_id,
                        col(AgentJob.status) == JobStatus.QUEUED.value,
                    )
                    .values(
                        status=JobStatus.RUNNING.value,
                        attempt=candidate.attempt + 1,
                        started_at=to_db_datetime(now),
                        heartbeat_at=to_db_datetime(now),
                        finished_at=None,
                        worker_id=worker_id,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                claimed = session.exec(
                    select(AgentJob).where(AgentJob.job_id == candidate.job_id),
                ).one()
                session.refresh(claimed)
                self._add_event(
                    session=session,
                    job_id=claimed.job_id,
                    event_type="claimed",
                    status_from=JobStatus.QUEUED,
                    status_to=JobStatus.RUNNING,
                    details={"worker_id": worker_id, "attempt": claimed.attempt},
                )
                session.commit()
                return _to_job_view(claimed)

    def touch_job(self, *, job_id: str) -> None:
        """Update heartbeat for a running job."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                select(AgentJob).where(
                    AgentJob.job_id == job_id,
                    AgentJob.status == JobStatus.RUNNING.value,
                ),
            ).one_or_none()
            if row is None:
                return
            row.heartbeat_at = to_db_datetime(now)
            row.updated_at = to_db_datetime(now)
            session.add(row)
            session.commit()

    def complete_job(self, *, job_id: str, completion: JobCompletion) -> bool:
        """Mark a running job as succeeded."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(AgentJob)
                .where(
                    col(AgentJob.job_id) == job_id,
                    col(AgentJob.status) == JobStatus.RUNNING.value,
                )
                .values(
                    status=JobStatus.SUCCEEDED.value,
                    finished_at=to_db_datetime(now),
                    heartbeat_at=to_db_datetime(now),
                    result_session_id=completion.result_session_id,
                    used_fallback=completion.used_fallback,
                    output_chars=completion.output_chars,
                    failure_class=None,
                    error_summary=None,
                    last_exit_code=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="succeeded",
                status_from=JobStatus.RUNNING,
                status_to=JobStatus.SUCCEEDED,
                details={
                    "result_session_id": completion.result_session_id,
                    "used_fallback": completion.used_fallback,
                    "output_chars": completion.output_chars,
                    "turn_count": completion.turn_count,
                },
            )
            session.commit()
            return True

    def schedule_retry(  # noqa: PLR0913
        self,
        *,
        job_id: str,
        run_after: datetime,
        failure_class: FailureClass,
        error_summary: str,
        last_exit_code: int | None,
        details: dict[str, object] | None = None,
    ) -> bool:
        """Requeue a running job for automatic retry."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(AgentJob)
                .where(
                    col(AgentJob.job_id) == job_id,
                    col(AgentJob.status) == JobStatus.RUNNING.value,
                )
                .values(
                    status=JobStatus.QUEUED.value,
                    run_after=to_db_datetime(run_after),
                    failure_class=failure_class.value,
                    error_summary=error_summary,
                    last_exit_code=last_exit_code,
                    started_at=None,
                    finished_at=None,
                    heartbeat_at=None,
                    worker_id=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="retry_scheduled",
                status_from=JobStatus.RUNNING,
                status_to=JobStatus.QUEUED,
                details={
                    **(details or {}),
                    "run_after": to_utc_aware_datetime(run_after).isoformat(),
                    "failure_class": failure_class.value,
                    "last_exit_code": last_exit_code,
                },
            )
            session.commit()
            return True

    def dead_letter_job(
        self,
        *,
        job_id: str,
        failure_class: FailureClass,
        error_summary: str,
        last_exit_code: int | None,
        details: dict[str, object] | None = None,
    ) -> bool:
        """Move a running job that exhausted its attempts to the dead set."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(AgentJob)
                .where(
                    col(AgentJob.job_id) == job_id,
                    col(AgentJob.status) == JobStatus.RUNNING.value,
                )
                .values(
                    status=JobStatus.DEAD.value,
                    failure_class=failure_class.value,
                    error_summary=error_summary,
                    last_exit_code=last_exit_code,
                    finished_at=to_db_datetime(now),
                    heartbeat_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="dead_lettered",
                status_from=JobStatus.RUNNING,
                status_to=JobStatus.DEAD,
                details={
                    **(details or {}),
                    "failure_class": failure_class.value,
                    "last_exit_code": last_exit_code,
                    "error_summary": error_summary,
                },
            )
            session.commit()
            return True

    def retry_job(self, *, job_id: str) -> JobView:
        """Manual operator retry for a dead job. The attempt budget starts over."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                select(AgentJob).where(AgentJob.job_id == job_id),
            ).one_or_none()
            if row is None:
                raise RuntimeError(f"Job not found: {job_id}")
            if row.status != JobStatus.DEAD.value:
                raise RuntimeError(f"Only dead jobs can be retried manually, got {row.status}.")

            result = session.exec(
                sa_update(AgentJob)
                .where(
                    col(AgentJob.job_id) == job_id,
                    col(AgentJob.status) == JobStatus.DEAD.value,
                )
                .values(
                    status=JobStatus.QUEUED.value,
                    attempt=0,
                    run_after=to_db_datetime(now),
                    started_at=None,
                    finished_at=None,
                    heartbeat_at=None,
                    worker_id=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise RuntimeError(
                    "Job state changed concurrently while retrying; "
                    f"please retry command (job_id={job_id}).",
                )
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="manual_retry",
                status_from=JobStatus.DEAD,
                status_to=JobStatus.QUEUED,
                details={},
            )
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def recover_stale_jobs(self, *, stale_after: timedelta) -> list[str]:
        """Requeue running jobs whose heartbeat stopped, e.g. after a crash."""

        now = utc_now()
        cutoff = to_db_datetime(now - stale_after)
        recovered: list[str] = []
        with Session(self.engine) as session:
            rows = session.exec(
                select(AgentJob).where(
                    AgentJob.status == JobStatus.RUNNING.value,
                    or_(
                        col(AgentJob.heartbeat_at).is_(None),
                        col(AgentJob.heartbeat_at) < cutoff,
                    ),
                ),
            ).all()
            for row in rows:
                result = session.exec(
                    sa_update(AgentJob)
                    .where(
                        col(AgentJob.job_id) == row.job_id,
                        col(AgentJob.status) == JobStatus.RUNNING.value,
                    )
                    .values(
                        status=JobStatus.QUEUED.value,
                        run_after=to_db_datetime(now),
                        started_at=None,
                        heartbeat_at=None,
                        worker_id=None,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    continue
                self._add_event(
                    session=session,
                    job_id=row.job_id,
                    event_type="stale_recovered",
                    status_from=JobStatus.RUNNING,
                    status_to=JobStatus.QUEUED,
                    details={"worker_id": row.worker_id, "attempt": row.attempt},
                )
                recovered.append(row.job_id)
            session.commit()
        return recovered

    def prune_finished_jobs(self, *, keep_succeeded: int, keep_dead: int) -> int:
        """Delete all but the most recent finished jobs per terminal status."""

        removed = 0
        with Session(self.engine) as session:
            for status, keep in zip(_FINISHED_STATUSES, (keep_succeeded, keep_dead), strict=True):
                stale_ids = session.exec(
                    select(AgentJob.job_id)
                    .where(AgentJob.status == status.value)
                    .order_by(col(AgentJob.finished_at).desc(), col(AgentJob.job_id).desc())
                    .offset(max(0, keep)),
                ).all()
                if not stale_ids:
                    continue
                result = session.exec(
                    sa_delete(AgentJob).where(col(AgentJob.job_id).in_(list(stale_ids))),
                )
                removed += result.rowcount or 0
            session.commit()
        return removed

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        thread_id: str | None = None,
        limit: int = 50,
    ) -> list[JobView]:
        """List recent jobs, optionally filtered by status or thread."""

        with Session(self.engine) as session:
            statement = select(AgentJob)
            if status is not None:
                statement = statement.where(AgentJob.status == status.value)
            if thread_id is not None:
                statement = statement.where(AgentJob.thread_id == thread_id)
            statement = statement.order_by(
                col(AgentJob.created_at).desc(),
                col(AgentJob.job_id).desc(),
            ).limit(limit)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def count_jobs(self, *, status: JobStatus) -> int:
        with Session(self.engine) as session:
            return session.exec(
                select(func.count()).select_from(AgentJob).where(AgentJob.status == status.value),
            ).one()

    def get_job(self, *, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.exec(select(AgentJob).where(AgentJob.job_id == job_id)).one_or_none()
            return _to_job_view(row) if row is not None else None

    def get_job_details(self, *, job_id: str) -> JobDetails | None:
        """Return job details with event stream."""

        with Session(self.engine) as session:
            job = session.exec(select(AgentJob).where(AgentJob.job_id == job_id)).one_or_none()
            if job is None:
                return None

            event_rows = session.exec(
                select(AgentJobEvent)
                .where(AgentJobEvent.job_id == job_id)
                .order_by(col(AgentJobEvent.created_at).asc(), col(AgentJobEvent.id).asc()),
            ).all()

        events: list[JobEventView] = []
        for row in event_rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                JobEventView(
                    event_id=row.id or 0,
                    job_id=row.job_id,
                    event_type=row.event_type,
                    status_from=JobStatus(row.status_from) if row.status_from is not None else None,
                    status_to=JobStatus(row.status_to) if row.status_to is not None else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )

        return JobDetails(job=_to_job_view(job), events=events)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        job_id: str,
        event_type: str,
        status_from: JobStatus | None,
        status_to: JobStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            AgentJobEvent(
                job_id=job_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _thread_blocked_clause():
    """True when an older queued or any running job exists for the same thread."""

    other = aliased(AgentJob)
    return (
        sa_select(other.job_id)
        .where(
            other.thread_id == AgentJob.thread_id,
            other.job_id != AgentJob.job_id,
            or_(
                other.status == JobStatus.RUNNING.value,
                and_(
                    other.status == JobStatus.QUEUED.value,
                    or_(
                        other.created_at < AgentJob.created_at,
                        and_(
                            other.created_at == AgentJob.created_at,
                            other.job_id < AgentJob.job_id,
                        ),
                    ),
                ),
            ),
        )
        .exists()
    )


def _optional_aware(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_job_view(row: AgentJob) -> JobView:
    return JobView(
        job_id=row.job_id,
        thread_id=row.thread_id,
        session_id=row.session_id,
        resume=bool(row.resume),
        user_id=row.user_id,
        prompt=row.prompt,
        working_dir=row.working_dir,
        project_name=row.project_name,
        channel_context=row.channel_context,
        status=JobStatus(row.status),
        attempt=row.attempt,
        max_attempts=row.max_attempts,
        run_after=to_utc_aware_datetime(row.run_after),
        started_at=_optional_aware(row.started_at),
        heartbeat_at=_optional_aware(row.heartbeat_at),
        finished_at=_optional_aware(row.finished_at),
        failure_class=FailureClass(row.failure_class) if row.failure_class is not None else None,
        last_exit_code=row.last_exit_code,
        error_summary=row.error_summary,
        worker_id=row.worker_id,
        result_session_id=row.result_session_id,
        used_fallback=bool(row.used_fallback),
        output_chars=row.output_chars,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
