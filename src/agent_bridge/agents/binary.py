"""Executable lookup for agent CLIs.

Resolution order: explicit override, cached result, ``PATH``, well-known install
directories, the npm global prefix and finally an ``npx`` runner for backends that
publish one.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from agent_bridge.errors import BinaryNotFound

logger = logging.getLogger(__name__)

SYSTEM_CANDIDATE_DIRS: tuple[str, ...] = ("/opt/homebrew/bin", "/usr/local/bin", "/usr/bin")
HOME_CANDIDATE_DIRS: tuple[str, ...] = (
    ".claude/bin",
    ".local/bin",
    ".codex/bin",
    ".opencode/bin",
)


class BinarySource(str, Enum):
    """Where a resolved executable came from."""

    ENV = "env"
    CACHE = "cache"
    PATH = "path"
    CANDIDATE = "candidate"
    NPM = "npm"
    NPX = "npx"
    NONE = "none"


@dataclass(slots=True, frozen=True)
class BinarySpec:
    """Static lookup data for one backend."""

    agent: str
    executable: str
    env_var: str
    npx_package: str | None = None


@dataclass(slots=True, frozen=True)
class ResolvedBinary:
    path: str
    source: BinarySource
    prefix_args: tuple[str, ...] = ()

    def command(self) -> list[str]:
        return [self.path, *self.prefix_args]


class BinaryCache:
    """Process-wide cache of resolved executables, injectable for tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, ResolvedBinary] = {}

    def get(self, agent: str) -> ResolvedBinary | None:
        with self._lock:
            return self._entries.get(agent)

    def put(self, agent: str, resolved: ResolvedBinary) -> None:
        with self._lock:
            self._entries[agent] = resolved

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()


class BinaryResolver:
    """Resolve agent executables with an injectable environment and filesystem view."""

    def __init__(  # noqa: PLR0913
        self,
        cache: BinaryCache,
        *,
        overrides: Mapping[str, str] | None = None,
        environ: Mapping[str, str] | None = None,
        which: Callable[[str], str | None] = shutil.which,
        home: Path | None = None,
        system_dirs: tuple[str, ...] = SYSTEM_CANDIDATE_DIRS,
        npm_prefix: Callable[[], str | None] | None = None,
    ) -> None:
        self._cache = cache
        self._overrides = dict(overrides or {})
        self._environ = os.environ if environ is None else environ
        self._which = which
        self._home = home
        self._system_dirs = system_dirs
        self._npm_prefix = npm_prefix if npm_prefix is not None else _npm_global_prefix

    def resolve(self, spec: BinarySpec) -> ResolvedBinary:
        override = self._environ.get(spec.env_var) or self._overrides.get(spec.agent)
        if override:
            resolved = ResolvedBinary(path=override, source=BinarySource.ENV)
            self._cache.put(spec.agent, resolved)
            logger.debug("Resolved %s from %s: %s", spec.agent, spec.env_var, override)
            return resolved

        cached = self._cache.get(spec.agent)
        if cached is not None:
            return ResolvedBinary(
                path=cached.path,
                source=BinarySource.CACHE,
                prefix_args=cached.prefix_args,
            )

        resolved = self._lookup(spec)
        if resolved is None:
            logger.debug("Binary not found: %s", spec.executable)
            raise BinaryNotFound(
                f"{spec.agent} CLI not found. Install it or set {spec.env_var} "
                "to the binary path.",
                agent=spec.agent,
                env_var=spec.env_var,
            )
        self._cache.put(spec.agent, resolved)
        logger.info(
            "Resolved %s binary: %s (source=%s)",
            spec.agent,
            resolved.path,
            resolved.source.value,
        )
        return resolved

    def _lookup(self, spec: BinarySpec) -> ResolvedBinary | None:
        on_path = self._which(spec.executable)
        if on_path:
            return ResolvedBinary(path=on_path, source=BinarySource.PATH)

        for directory in self._candidate_dirs():
            candidate = directory / spec.executable
            if _is_executable(candidate):
                return ResolvedBinary(path=str(candidate), source=BinarySource.CANDIDATE)

        prefix = self._npm_prefix()
        if prefix:
            candidate = Path(prefix) / "bin" / spec.executable
            if _is_executable(candidate):
                return ResolvedBinary(path=str(candidate), source=BinarySource.NPM)

        if spec.npx_package:
            npx = self._which("npx")
            if npx:
                return ResolvedBinary(
                    path=npx,
                    source=BinarySource.NPX,
                    prefix_args=(spec.npx_package,),
                )
        return None

    def _candidate_dirs(self) -> list[Path]:
        home = self._home if self._home is not None else Path.home()
        return [Path(entry) for entry in self._system_dirs] + [
            home / entry for entry in HOME_CANDIDATE_DIRS
        ]


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def _npm_global_prefix() -> str | None:
    npm = shutil.which("npm")
    if npm is None:
        return None
    try:
        completed = subprocess.run(  # noqa: S603
            [npm, "prefix", "-g"],
            capture_output=True,
            text=True,
            timeout=10,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as error:
        logger.debug("npm prefix lookup failed: %s", error)
        return None
    if completed.returncode != 0:
        return None
    return completed.stdout.strip() or None
