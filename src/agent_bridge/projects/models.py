"""Domain views for projects and channel configuration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class ProjectView:
    """A named working directory agents can run in."""

    name: str
    path: str
    is_default: bool
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ChannelConfigView:
    channel_id: str
    project_name: str | None
    working_dir: str | None
    updated_at: datetime


@dataclass(slots=True)
class ResolvedProject:
    """Working directory chosen for a new conversation.

    ``content`` is the message with any ``[project]`` or ``[/path]`` prefix removed.
    """

    working_dir: str | None
    project_name: str | None
    content: str
