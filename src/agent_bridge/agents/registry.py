"""Adapter factory keyed on the configured backend name."""

from __future__ import annotations

from agent_bridge.agents.base import AgentAdapter
from agent_bridge.agents.binary import BinaryResolver, BinarySpec
from agent_bridge.agents.claude import CLAUDE_BINARY, ClaudeAdapter
from agent_bridge.agents.codex import CODEX_BINARY, CodexAdapter
from agent_bridge.agents.opencode import OPENCODE_BINARY, OpenCodeAdapter
from agent_bridge.config import SUPPORTED_AGENTS

BINARY_SPECS: dict[str, BinarySpec] = {
    "claude": CLAUDE_BINARY,
    "codex": CODEX_BINARY,
    "opencode": OPENCODE_BINARY,
}


def create_adapter(
    agent_type: str,
    *,
    resolver: BinaryResolver,
    timezone: str = "UTC",
    timeout_seconds: float | None = None,
) -> AgentAdapter:
    """Instantiate the adapter for ``agent_type`` (case-insensitive)."""

    normalized = agent_type.strip().lower()
    if normalized == "claude":
        return ClaudeAdapter(resolver=resolver, timezone=timezone, timeout_seconds=timeout_seconds)
    if normalized == "codex":
        return CodexAdapter(resolver=resolver, timezone=timezone, timeout_seconds=timeout_seconds)
    if normalized == "opencode":
        return OpenCodeAdapter(
            resolver=resolver,
            timezone=timezone,
            timeout_seconds=timeout_seconds,
        )
    raise ValueError(
        f"Unknown adapter type: {agent_type!r}. Supported: {', '.join(SUPPORTED_AGENTS)}.",
    )


def binary_spec_for(agent_type: str) -> BinarySpec:
    try:
        return BINARY_SPECS[agent_type.strip().lower()]
    except KeyError as error:
        raise ValueError(f"Unknown adapter type: {agent_type!r}") from error
