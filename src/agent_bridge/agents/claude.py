"""Claude Code CLI adapter.

New sessions pin the id up front with ``--session-id``; follow-ups use
``--resume``. Sessions are scoped to the working directory, so ``--continue``
(latest session in the cwd) is the fallback when a resume is rejected.
"""

from __future__ import annotations

import logging
import subprocess
from datetime import datetime

from agent_bridge.agents.base import (
    Invocation,
    SpawnRequest,
    SpawnResult,
    build_child_env,
    build_system_context,
    current_time,
    needs_stdin,
)
from agent_bridge.agents.binary import BinaryResolver, BinarySpec, ResolvedBinary
from agent_bridge.agents.process import execute_invocation

logger = logging.getLogger(__name__)

CLAUDE_BINARY = BinarySpec(
    agent="claude",
    executable="claude",
    env_var="CLAUDE_BIN",
    npx_package="@anthropic-ai/claude-code",
)
RESUME_FAILURE_SIGNATURES: tuple[str, ...] = ("No conversation found", "Session not found")
KNOWN_BUGGY_VERSIONS: tuple[str, ...] = ("1.0.67",)


class ClaudeAdapter:
    name = "claude"
    binary_env_var = CLAUDE_BINARY.env_var

    def __init__(
        self,
        *,
        resolver: BinaryResolver,
        timezone: str = "UTC",
        timeout_seconds: float | None = None,
        check_version: bool = True,
    ) -> None:
        self.resolver = resolver
        self.timezone = timezone
        self.timeout_seconds = timeout_seconds
        self._check_version = check_version
        self._version: str | None = None

    def spawn(self, request: SpawnRequest, *, continue_latest: bool = False) -> SpawnResult:
        binary = self.resolver.resolve(CLAUDE_BINARY)
        if self._check_version and self._version is None:
            self._version = detect_version(binary)
        invocation = self.build_invocation(
            binary,
            request,
            now=current_time(self.timezone),
            continue_latest=continue_latest,
        )
        logger.info(
            "[claude] spawning session=%s resume=%s continue=%s stdin=%s",
            request.session_id,
            request.resume,
            continue_latest,
            invocation.stdin_text is not None,
        )
        return execute_invocation(
            agent=self.name,
            binary=binary,
            invocation=invocation,
            request=request,
            env_var=self.binary_env_var,
            resume_failure_signatures=RESUME_FAILURE_SIGNATURES,
            continue_latest=continue_latest,
            timeout_seconds=self.timeout_seconds,
        )

    def build_invocation(
        self,
        binary: ResolvedBinary,
        request: SpawnRequest,
        *,
        now: datetime,
        continue_latest: bool = False,
    ) -> Invocation:
        argv = [*binary.command(), "--print", "--output-format", "json"]
        if continue_latest:
            argv.append("--continue")
        elif request.resume:
            argv.extend(["--resume", request.session_id])
        else:
            argv.extend(["--session-id", request.session_id])

        argv.extend(
            ["--append-system-prompt", build_system_context(now, request.system_prompt)],
        )

        stdin_text: str | None = None
        if needs_stdin(request.prompt):
            stdin_text = request.prompt
        else:
            argv.append(request.prompt)
        return Invocation(argv=argv, stdin_text=stdin_text, env=build_child_env(self.timezone))


def detect_version(binary: ResolvedBinary) -> str:
    """Return ``claude --version`` output, warning on releases with a broken ``--resume``."""

    try:
        completed = subprocess.run(  # noqa: S603
            [*binary.command(), "--version"],
            capture_output=True,
            text=True,
            timeout=15,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as error:
        logger.warning("[claude] Could not determine CLI version: %s", error)
        return "unknown"
    if completed.returncode != 0:
        return "unknown"

    version = completed.stdout.strip()
    logger.info("[claude] CLI version: %s", version)
    if any(buggy in version for buggy in KNOWN_BUGGY_VERSIONS):
        logger.warning("[claude] Version %s has known issues with --resume", version)
    return version
