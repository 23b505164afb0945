"""OpenCode CLI adapter (``opencode run``)."""

from __future__ import annotations

import logging
from datetime import datetime

from agent_bridge.agents.base import (
    Invocation,
    SpawnRequest,
    SpawnResult,
    build_child_env,
    build_system_context,
    current_time,
    needs_stdin,
    prepend_system_context,
)
from agent_bridge.agents.binary import BinaryResolver, BinarySpec, ResolvedBinary
from agent_bridge.agents.process import execute_invocation

logger = logging.getLogger(__name__)

OPENCODE_BINARY = BinarySpec(agent="opencode", executable="opencode", env_var="OPENCODE_BIN")
RESUME_FAILURE_SIGNATURES: tuple[str, ...] = ("session not found", "NotFoundError")


class OpenCodeAdapter:
    name = "opencode"
    binary_env_var = OPENCODE_BINARY.env_var

    def __init__(
        self,
        *,
        resolver: BinaryResolver,
        timezone: str = "UTC",
        timeout_seconds: float | None = None,
    ) -> None:
        self.resolver = resolver
        self.timezone = timezone
        self.timeout_seconds = timeout_seconds

    def spawn(self, request: SpawnRequest, *, continue_latest: bool = False) -> SpawnResult:
        binary = self.resolver.resolve(OPENCODE_BINARY)
        invocation = self.build_invocation(
            binary,
            request,
            now=current_time(self.timezone),
            continue_latest=continue_latest,
        )
        logger.info(
            "[opencode] spawning session=%s resume=%s continue=%s",
            request.session_id or "-",
            request.resume,
            continue_latest,
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
        argv = [*binary.command(), "run", "--format", "json"]
        if continue_latest:
            argv.append("--continue")
        elif request.resume:
            argv.extend(["--session", request.session_id])

        prompt = prepend_system_context(
            request.prompt,
            build_system_context(now, request.system_prompt),
        )
        stdin_text: str | None = None
        if needs_stdin(prompt):
            stdin_text = prompt
        else:
            argv.append(prompt)
        return Invocation(argv=argv, stdin_text=stdin_text, env=build_child_env(self.timezone))
