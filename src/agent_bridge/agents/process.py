"""Subprocess runner for agent CLIs."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from agent_bridge.agents.base import Invocation, SpawnRequest, SpawnResult
from agent_bridge.agents.binary import ResolvedBinary
from agent_bridge.agents.diagnostics import format_spawn_failure
from agent_bridge.agents.output import parse_agent_output
from agent_bridge.errors import AgentProcessError, SessionResumeFailed

logger = logging.getLogger(__name__)

_STDERR_SUMMARY_CHARS = 1_200


@dataclass(slots=True)
class ProcessResult:
    exit_code: int
    stdout: str
    stderr: str


def run_agent_process(  # noqa: PLR0913
    *,
    agent: str,
    binary: ResolvedBinary,
    argv: list[str],
    cwd: Path | None,
    env: dict[str, str],
    stdin_text: str | None,
    env_var: str,
    timeout_seconds: float | None = None,
) -> ProcessResult:
    """Run one agent process to completion and capture its output."""

    logger.debug("Spawning %s: %s (cwd=%s)", agent, argv[0], cwd)
    try:
        process = subprocess.Popen(  # noqa: S603
            argv,
            cwd=cwd,
            env=env,
            stdin=subprocess.PIPE if stdin_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as error:
        message = format_spawn_failure(
            agent=agent,
            binary=binary,
            argv=argv,
            cwd=cwd,
            error=error,
            env_var=env_var,
        )
        logger.error("%s", message)
        raise AgentProcessError(message, agent=agent) from error

    try:
        stdout, stderr = process.communicate(input=stdin_text, timeout=timeout_seconds)
    except subprocess.TimeoutExpired as error:
        _terminate_process(process)
        raise AgentProcessError(
            f"{agent} timed out after {timeout_seconds}s",
            agent=agent,
            exit_code=124,
        ) from error
    return ProcessResult(exit_code=process.returncode, stdout=stdout, stderr=stderr)


def execute_invocation(  # noqa: PLR0913
    *,
    agent: str,
    binary: ResolvedBinary,
    invocation: Invocation,
    request: SpawnRequest,
    env_var: str,
    resume_failure_signatures: tuple[str, ...],
    continue_latest: bool = False,
    timeout_seconds: float | None = None,
) -> SpawnResult:
    """Run an adapter invocation, map failures to the error taxonomy and parse stdout."""

    completed = run_agent_process(
        agent=agent,
        binary=binary,
        argv=invocation.argv,
        cwd=request.working_dir,
        env=invocation.env,
        stdin_text=invocation.stdin_text,
        env_var=env_var,
        timeout_seconds=timeout_seconds,
    )
    logger.info("[%s] exit code %s", agent, completed.exit_code)

    if completed.exit_code != 0:
        stderr = completed.stderr.strip()
        summary = stderr[:_STDERR_SUMMARY_CHARS] or "Unknown error"
        if (
            request.resume
            and not continue_latest
            and matches_resume_failure(stderr, resume_failure_signatures)
        ):
            raise SessionResumeFailed(
                f"{agent} could not resume session {request.session_id}: {summary}",
                agent=agent,
                session_id=request.session_id,
                exit_code=completed.exit_code,
                stderr=stderr,
            )
        raise AgentProcessError(
            f"{agent} CLI failed (exit {completed.exit_code}): {summary}",
            agent=agent,
            exit_code=completed.exit_code,
            stderr=stderr,
        )

    parsed = parse_agent_output(completed.stdout, request.session_id)
    return SpawnResult(
        output=parsed.output,
        session_id=parsed.session_id,
        degraded=parsed.degraded,
    )


def matches_resume_failure(stderr: str, signatures: tuple[str, ...]) -> bool:
    haystack = stderr.lower()
    return any(signature.lower() in haystack for signature in signatures)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.communicate(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.communicate(timeout=2)
