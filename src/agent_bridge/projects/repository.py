"""Persistent store for named projects and per-channel configuration."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from agent_bridge.projects.models import ChannelConfigView, ProjectView
from agent_bridge.storage.alembic_runner import upgrade_head
from agent_bridge.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from agent_bridge.storage.sqlmodel_models import ChannelConfig, Project


class ProjectRepository:
    """Project persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def create_project(self, name: str, path: str) -> ProjectView:
        now = utc_now()
        row = Project(name=name, path=path, is_default=False, created_at=now, updated_at=now)
        with Session(self.engine) as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise ValueError(f"Project {name!r} already exists.") from error
            session.refresh(row)
            return _to_project(row)

    def get_project(self, name: str) -> ProjectView | None:
        with Session(self.engine) as session:
            row = session.get(Project, name)
            return _to_project(row) if row is not None else None

    def list_projects(self) -> list[ProjectView]:
        with Session(self.engine) as session:
            rows = session.exec(select(Project).order_by(col(Project.name).asc())).all()
            return [_to_project(row) for row in rows]

    def get_default_project(self) -> ProjectView | None:
        with Session(self.engine) as session:
            row = session.exec(select(Project).where(col(Project.is_default).is_(True))).first()
            return _to_project(row) if row is not None else None

    def set_default_project(self, name: str) -> bool:
        """Make ``name`` the only default project. Returns False for an unknown name."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            session.exec(
                sa_update(Project)
                .where(col(Project.is_default).is_(True), col(Project.name) != name)
                .values(is_default=False, updated_at=now),
            )
            result = session.exec(
                sa_update(Project)
                .where(col(Project.name) == name)
                .values(is_default=True, updated_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def get_channel_config(self, channel_id: str) -> ChannelConfigView | None:
        with Session(self.engine) as session:
            row = session.get(ChannelConfig, channel_id)
            return _to_channel_config(row) if row is not None else None

    def get_channel_project(self, channel_id: str) -> ProjectView | None:
        config = self.get_channel_config(channel_id)
        if config is None or config.project_name is None:
            return None
        return self.get_project(config.project_name)

    def set_channel_project(self, channel_id: str, project_name: str) -> ChannelConfigView:
        return self._upsert_channel(channel_id, project_name=project_name)

    def set_channel_working_dir(self, channel_id: str, working_dir: str) -> ChannelConfigView:
        return self._upsert_channel(channel_id, working_dir=working_dir)

    def _upsert_channel(self, channel_id: str, **values: str) -> ChannelConfigView:
        with Session(self.engine) as session:
            row = session.get(ChannelConfig, channel_id)
            if row is None:
                row = ChannelConfig(channel_id=channel_id, updated_at=utc_now())
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = utc_now()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_channel_config(row)


def _to_project(row: Project) -> ProjectView:
    return ProjectView(
        name=row.name,
        path=row.path,
        is_default=bool(row.is_default),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_channel_config(row: ChannelConfig) -> ChannelConfigView:
    return ChannelConfigView(
        channel_id=row.channel_id,
        project_name=row.project_name,
        working_dir=row.working_dir,
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
