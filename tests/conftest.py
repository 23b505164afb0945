"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from agent_bridge.agents.base import SpawnRequest, SpawnResult
from agent_bridge.errors import FrontendDeliveryError
from agent_bridge.projects.repository import ProjectRepository
from agent_bridge.queue.repository import JobRepository
from agent_bridge.sessions.repository import SessionRepository


class FakeAdapter:
    """Adapter double: pops scripted results (or raises scripted errors) per spawn."""

    name = "fake"
    binary_env_var = "FAKE_BIN"

    def __init__(self) -> None:
        self.script: list[SpawnResult | Exception] = []
        self.calls: list[tuple[SpawnRequest, bool]] = []

    def spawn(self, request: SpawnRequest, *, continue_latest: bool = False) -> SpawnResult:
        self.calls.append((request, continue_latest))
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return SpawnResult(output=f"echo: {request.prompt}", session_id=request.session_id)


class RecordingFrontend:
    """Chat front-end double that records every call."""

    def __init__(self) -> None:
        self.typing: list[str] = []
        self.replies: list[tuple[str, str]] = []
        self.failures: list[tuple[str, str]] = []
        self.renames: list[tuple[str, str]] = []
        self.deliver_errors: list[FrontendDeliveryError] = []
        self.rename_error: FrontendDeliveryError | None = None

    def send_typing(self, thread_id: str) -> None:
        self.typing.append(thread_id)

    def deliver_reply(self, thread_id: str, text: str) -> None:
        if self.deliver_errors:
            raise self.deliver_errors.pop(0)
        self.replies.append((thread_id, text))

    def notify_failure(self, thread_id: str, text: str) -> None:
        self.failures.append((thread_id, text))

    def rename_thread(self, thread_id: str, name: str) -> None:
        if self.rename_error is not None:
            raise self.rename_error
        self.renames.append((thread_id, name))


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "bridge.db"


@pytest.fixture()
def sessions(db_path: Path) -> Iterator[SessionRepository]:
    repository = SessionRepository(db_path)
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture()
def jobs(sessions: SessionRepository, db_path: Path) -> Iterator[JobRepository]:
    repository = JobRepository(db_path)
    yield repository
    repository.close()


@pytest.fixture()
def project_repo(sessions: SessionRepository, db_path: Path) -> Iterator[ProjectRepository]:
    repository = ProjectRepository(db_path)
    yield repository
    repository.close()


@pytest.fixture()
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture()
def frontend() -> RecordingFrontend:
    return RecordingFrontend()
