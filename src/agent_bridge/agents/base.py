"""Adapter interface shared by every agent backend."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol
from zoneinfo import ZoneInfo

if TYPE_CHECKING:
    from agent_bridge.agents.binary import ResolvedBinary

_MARKUP = re.compile(r"<[A-Za-z_][\w.-]*(?:\s[^<>]*)?/?>")


@dataclass(slots=True)
class SpawnRequest:
    """Inputs for one agent invocation."""

    prompt: str
    session_id: str
    resume: bool
    system_prompt: str | None = None
    working_dir: Path | None = None


@dataclass(slots=True)
class SpawnResult:
    output: str
    session_id: str
    degraded: bool = False


@dataclass(slots=True)
class Invocation:
    """Argument vector plus optional stdin payload for one process start."""

    argv: list[str]
    stdin_text: str | None = None
    env: dict[str, str] = field(default_factory=dict)


class AgentAdapter(Protocol):
    """Protocol implemented by the claude, codex and opencode adapters."""

    name: str
    binary_env_var: str

    def build_invocation(
        self,
        binary: ResolvedBinary,
        request: SpawnRequest,
        *,
        now: datetime,
        continue_latest: bool = False,
    ) -> Invocation:
        """Build argv, stdin and environment for one process start."""

    def spawn(self, request: SpawnRequest, *, continue_latest: bool = False) -> SpawnResult:
        """Run the agent once and return its parsed reply."""


def needs_stdin(prompt: str) -> bool:
    """Prompts with markup, multiple lines or a leading dash cannot travel as an argument."""

    return "\n" in prompt or prompt.startswith("-") or _MARKUP.search(prompt) is not None


def format_datetime_context(now: datetime) -> str:
    hour = now.hour % 12 or 12
    return (
        f"Current date/time: {now:%A}, {now:%B} {now.day}, {now.year}, "
        f"{hour}:{now:%M} {now:%p}"
    )


def current_time(timezone: str) -> datetime:
    return datetime.now(ZoneInfo(timezone))


def build_system_context(now: datetime, system_prompt: str | None) -> str:
    context = format_datetime_context(now)
    if system_prompt:
        return f"{context}\n\n{system_prompt}"
    return context


def build_child_env(timezone: str, base: Mapping[str, str] | None = None) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    env["TZ"] = timezone
    return env


def prepend_system_context(prompt: str, context: str) -> str:
    """Carry system context inside the prompt for CLIs without a system-prompt flag."""

    return f"<system_context>\n{context}\n</system_context>\n\n{prompt}"
