"""SQLModel ORM tables for session, pause and job storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlmodel import Field, SQLModel


class ThreadSession(SQLModel, table=True):
    __tablename__ = "thread_sessions"  # type: ignore[bad-override]

    thread_id: str = Field(primary_key=True)
    session_id: str = Field(index=True)
    working_dir: str | None = None
    project_name: str | None = None
    turn_count: int = Field(default=0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class PausedThread(SQLModel, table=True):
    __tablename__ = "paused_threads"  # type: ignore[bad-override]

    thread_id: str = Field(primary_key=True)
    paused_by: str
    paused_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class HeldMessage(SQLModel, table=True):
    __tablename__ = "held_messages"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_held_messages_thread", "thread_id", "id"),)

    id: int | None = Field(default=None, primary_key=True)
    thread_id: str
    author_id: str
    content: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AgentJob(SQLModel, table=True):
    __tablename__ = "agent_jobs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_agent_jobs_queue", "status", "run_after", "created_at"),
        Index("idx_agent_jobs_thread", "thread_id", "status"),
    )

    job_id: str = Field(primary_key=True)
    thread_id: str
    session_id: str
    resume: bool = Field(default=False)
    user_id: str
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    working_dir: str | None = None
    project_name: str | None = None
    channel_context: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(index=True)
    attempt: int = Field(default=0)
    max_attempts: int = Field(default=3)
    run_after: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    heartbeat_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    failure_class: str | None = None
    last_exit_code: int | None = None
    error_summary: str | None = Field(default=None, sa_column=Column(Text))
    worker_id: str | None = None
    result_session_id: str | None = None
    used_fallback: bool = Field(default=False)
    output_chars: int | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AgentJobEvent(SQLModel, table=True):
    __tablename__ = "agent_job_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_agent_job_events_job_time", "job_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("agent_jobs.job_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Project(SQLModel, table=True):
    __tablename__ = "projects"  # type: ignore[bad-override]

    name: str = Field(primary_key=True)
    path: str
    is_default: bool = Field(default=False)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ChannelConfig(SQLModel, table=True):
    __tablename__ = "channel_configs"  # type: ignore[bad-override]

    channel_id: str = Field(primary_key=True)
    project_name: str | None = Field(
        default=None,
        sa_column=Column(String, ForeignKey("projects.name", ondelete="SET NULL"), nullable=True),
    )
    working_dir: str | None = None
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
