"""Persistent store for thread sessions, pause flags and held messages."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from agent_bridge.sessions.models import (
    HeldMessageView,
    PauseState,
    SessionRecord,
    SessionStatus,
)
from agent_bridge.storage.alembic_runner import upgrade_head
from agent_bridge.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from agent_bridge.storage.sqlmodel_models import HeldMessage, PausedThread, ThreadSession


class SessionRepository:
    """Session persistence facade backed by SQLModel + SQLite.

    All operations are short single-transaction reads or writes; callers that need
    read-then-write atomicity per thread hold the thread's ``KeyedLocks`` entry.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def get_session(self, thread_id: str) -> SessionRecord | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(ThreadSession).where(ThreadSession.thread_id == thread_id),
            ).one_or_none()
            return _to_record(row) if row is not None else None

    def get_or_create_session(
        self,
        thread_id: str,
        *,
        session_id: str,
        working_dir: str | None,
        project_name: str | None = None,
    ) -> tuple[SessionRecord, bool]:
        """Insert a record for a new thread; return the existing one if it already exists."""

        existing = self.get_session(thread_id)
        if existing is not None:
            return existing, False

        now = utc_now()
        row = ThreadSession(
            thread_id=thread_id,
            session_id=session_id,
            working_dir=working_dir,
            project_name=project_name,
            turn_count=0,
            created_at=now,
            updated_at=now,
        )
        with Session(self.engine) as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                winner = self.get_session(thread_id)
                if winner is None:
                    raise
                return winner, False
            session.refresh(row)
            return _to_record(row), True

    def update_session_id(self, thread_id: str, session_id: str) -> bool:
        """Store an agent-issued session id. Writing the current id is a no-op."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ThreadSession)
                .where(
                    col(ThreadSession.thread_id) == thread_id,
                    col(ThreadSession.session_id) != session_id,
                )
                .values(session_id=session_id, updated_at=to_db_datetime(utc_now())),
            )
            session.commit()
            return result.rowcount == 1

    def increment_turn_count(self, thread_id: str) -> int:
        with Session(self.engine) as session:
            session.exec(
                sa_update(ThreadSession)
                .where(col(ThreadSession.thread_id) == thread_id)
                .values(
                    turn_count=ThreadSession.turn_count + 1,
                    updated_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()
            row = session.exec(
                select(ThreadSession).where(ThreadSession.thread_id == thread_id),
            ).one_or_none()
            if row is None:
                raise RuntimeError(f"Session not found for thread: {thread_id}")
            return row.turn_count

    def delete_session(self, thread_id: str) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(ThreadSession).where(col(ThreadSession.thread_id) == thread_id),
            )
            session.commit()
            return result.rowcount == 1

    def pause_thread(self, thread_id: str, *, paused_by: str) -> PauseState:
        """Set (or refresh) the pause flag for a thread."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.get(PausedThread, thread_id)
            if row is None:
                row = PausedThread(thread_id=thread_id, paused_by=paused_by, paused_at=now)
            else:
                row.paused_by = paused_by
                row.paused_at = now
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_pause(row)

    def get_pause(self, thread_id: str) -> PauseState | None:
        with Session(self.engine) as session:
            row = session.get(PausedThread, thread_id)
            return _to_pause(row) if row is not None else None

    def is_paused(self, thread_id: str) -> bool:
        return self.get_pause(thread_id) is not None

    def resume_thread(self, thread_id: str) -> bool:
        """Clear the pause flag. Held messages stay until drained."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(PausedThread).where(col(PausedThread.thread_id) == thread_id),
            )
            session.commit()
            return result.rowcount == 1

    def hold_message(self, thread_id: str, *, author_id: str, content: str) -> HeldMessageView:
        with Session(self.engine) as session:
            row = HeldMessage(
                thread_id=thread_id,
                author_id=author_id,
                content=content,
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_held(row)

    def drain_held_messages(self, thread_id: str) -> list[HeldMessageView]:
        """Return held messages in arrival order and delete them in the same transaction."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(HeldMessage)
                .where(HeldMessage.thread_id == thread_id)
                .order_by(col(HeldMessage.id).asc()),
            ).all()
            if not rows:
                return []
            drained = [_to_held(row) for row in rows]
            session.exec(
                sa_delete(HeldMessage).where(
                    col(HeldMessage.id).in_([row.id for row in rows]),
                ),
            )
            session.commit()
        return drained

    def count_held_messages(self, thread_id: str) -> int:
        with Session(self.engine) as session:
            return session.exec(
                select(func.count()).select_from(HeldMessage).where(
                    HeldMessage.thread_id == thread_id,
                ),
            ).one()

    def session_status(self, thread_id: str) -> SessionStatus:
        return SessionStatus(
            thread_id=thread_id,
            record=self.get_session(thread_id),
            pause=self.get_pause(thread_id),
            held_count=self.count_held_messages(thread_id),
        )


def _to_record(row: ThreadSession) -> SessionRecord:
    return SessionRecord(
        thread_id=row.thread_id,
        session_id=row.session_id,
        working_dir=row.working_dir,
        project_name=row.project_name,
        turn_count=row.turn_count,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_pause(row: PausedThread) -> PauseState:
    return PauseState(
        thread_id=row.thread_id,
        paused_by=row.paused_by,
        paused_at=to_utc_aware_datetime(row.paused_at),
    )


def _to_held(row: HeldMessage) -> HeldMessageView:
    return HeldMessageView(
        thread_id=row.thread_id,
        author_id=row.author_id,
        content=row.content,
        created_at=to_utc_aware_datetime(row.created_at),
    )
