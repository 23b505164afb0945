"""CLI coding-agent adapters."""

from agent_bridge.agents.base import AgentAdapter, SpawnRequest, SpawnResult
from agent_bridge.agents.registry import create_adapter
from agent_bridge.agents.resume import FallbackOutcome, FallbackState, ResumeFallback

__all__ = [
    "AgentAdapter",
    "FallbackOutcome",
    "FallbackState",
    "ResumeFallback",
    "SpawnRequest",
    "SpawnResult",
    "create_adapter",
]
