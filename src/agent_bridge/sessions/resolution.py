"""Thread-to-session resolution under the per-thread lock."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import uuid4

from agent_bridge.sessions.locks import KeyedLocks
from agent_bridge.sessions.models import SessionRecord
from agent_bridge.sessions.repository import SessionRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ResolvedSession:
    """Session to use for the next turn and whether it must be resumed."""

    record: SessionRecord
    created: bool

    @property
    def session_id(self) -> str:
        return self.record.session_id

    @property
    def resume(self) -> bool:
        return not self.created


class SessionResolver:
    """Look up or create the Session Record for a thread.

    A brand-new thread gets a pre-generated UUID session id which the adapter
    passes to the backend; every later turn resumes it. Resolution runs while
    holding the thread's lock so concurrent messages for one thread see exactly
    one ``created=True``.
    """

    def __init__(self, repository: SessionRepository, locks: KeyedLocks) -> None:
        self.repository = repository
        self.locks = locks

    def resolve(
        self,
        thread_id: str,
        *,
        working_dir: str | None = None,
        project_name: str | None = None,
        session_id: str | None = None,
    ) -> ResolvedSession:
        with self.locks.hold(thread_id):
            record, created = self.repository.get_or_create_session(
                thread_id,
                session_id=session_id or str(uuid4()),
                working_dir=working_dir,
                project_name=project_name,
            )
        if created:
            logger.info("Created session %s for thread %s", record.session_id, thread_id)
        return ResolvedSession(record=record, created=created)
