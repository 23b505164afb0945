"""Project commands and working-directory resolution.

A new conversation picks its working directory in this order:

1. a ``[project]`` or ``[/path]`` prefix on the first message,
2. the project linked to the channel,
3. the channel's own working directory,
4. the default project,
5. the configured fallback directory (``AGENT_WORKING_DIR``).

At execution time the worker re-reads the project so a moved project path takes
effect without touching existing sessions.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from agent_bridge.projects.models import ChannelConfigView, ProjectView, ResolvedProject
from agent_bridge.projects.paths import is_project_name, validate_working_dir
from agent_bridge.projects.repository import ProjectRepository

logger = logging.getLogger(__name__)

_BRACKET_PREFIX = re.compile(r"^\[([^\]]+)\]\s*")


class ProjectService:
    def __init__(
        self,
        projects: ProjectRepository,
        *,
        allowed_dirs: tuple[Path, ...] = (),
        fallback_dir: Path | None = None,
    ) -> None:
        self.projects = projects
        self.allowed_dirs = allowed_dirs
        self.fallback_dir = fallback_dir

    def add_project(self, name: str, path: str) -> ProjectView:
        name = name.strip()
        if not name or not is_project_name(name) or "]" in name:
            raise ValueError(f"Invalid project name: {name!r}")
        real_path = validate_working_dir(path, allowed_dirs=self.allowed_dirs)
        project = self.projects.create_project(name, str(real_path))
        logger.info("Project %s registered at %s", name, real_path)
        return project

    def list_projects(self) -> list[ProjectView]:
        return self.projects.list_projects()

    def set_default(self, name: str) -> ProjectView:
        if not self.projects.set_default_project(name):
            raise ValueError(f"Project {name!r} not found.")
        logger.info("Project %s set as default", name)
        return self.require_project(name)

    def use_for_channel(self, channel_id: str, name: str) -> ProjectView:
        project = self.require_project(name)
        self.projects.set_channel_project(channel_id, name)
        logger.info("Channel %s bound to project %s", channel_id, name)
        return project

    def set_channel_dir(self, channel_id: str, path: str) -> ChannelConfigView:
        real_path = validate_working_dir(path, allowed_dirs=self.allowed_dirs)
        return self.projects.set_channel_working_dir(channel_id, str(real_path))

    def resolve_message(self, content: str, channel_id: str | None) -> ResolvedProject:
        """Pick the working directory for a conversation's first message.

        Raises ``ValueError`` when an explicit prefix names a missing or disallowed
        directory; channel and default settings that went stale are skipped instead.
        """

        match = _BRACKET_PREFIX.match(content)
        if match:
            return self._resolve_prefix(match.group(1).strip(), content[match.end() :])

        if channel_id:
            project = self.projects.get_channel_project(channel_id)
            if project is not None:
                if Path(project.path).is_dir():
                    return ResolvedProject(project.path, project.name, content)
                logger.warning(
                    "Channel project %s path not found: %s",
                    project.name,
                    project.path,
                )
            config = self.projects.get_channel_config(channel_id)
            if config is not None and config.working_dir:
                return ResolvedProject(config.working_dir, None, content)

        default = self._usable_default()
        if default is not None:
            return ResolvedProject(default.path, default.name, content)
        fallback = str(self.fallback_dir) if self.fallback_dir is not None else None
        return ResolvedProject(fallback, None, content)

    def working_dir_for_job(self, project_name: str | None, working_dir: str | None) -> str | None:
        """Execution-time directory: live project path > stored directory > defaults."""

        if project_name:
            project = self.projects.get_project(project_name)
            if project is not None and Path(project.path).is_dir():
                return project.path
            logger.warning(
                "Project %s is missing or its path is gone; using stored working dir",
                project_name,
            )
        if working_dir:
            return working_dir
        return self.default_working_dir()

    def default_working_dir(self) -> str | None:
        default = self._usable_default()
        if default is not None:
            return default.path
        return str(self.fallback_dir) if self.fallback_dir is not None else None

    def _resolve_prefix(self, value: str, remainder: str) -> ResolvedProject:
        if is_project_name(value):
            project = self.projects.get_project(value)
            if project is not None:
                if not Path(project.path).is_dir():
                    raise ValueError(f"Project {value!r} path not found: {project.path}")
                return ResolvedProject(project.path, project.name, remainder)
        real_path = validate_working_dir(value, allowed_dirs=self.allowed_dirs)
        return ResolvedProject(str(real_path), None, remainder)

    def _usable_default(self) -> ProjectView | None:
        default = self.projects.get_default_project()
        if default is not None and Path(default.path).is_dir():
            return default
        return None

    def require_project(self, name: str) -> ProjectView:
        project = self.projects.get_project(name)
        if project is None:
            raise ValueError(f"Project {name!r} not found.")
        return project
