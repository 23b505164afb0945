"""One-shot fallback from a failed session resume to "continue latest".

Some agent CLIs have shipped releases where resuming by session id fails even
though the session exists. When a resume is rejected with a "session not found"
signature the spawn is repeated once in the backend's continue-latest mode. That
mode attaches to the most recent session in the working directory, which may not
be the thread's session when several threads share a directory, so a reply
produced this way is flagged with ``used_fallback``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from agent_bridge.agents.base import AgentAdapter, SpawnRequest, SpawnResult
from agent_bridge.errors import SessionResumeFailed

logger = logging.getLogger(__name__)


class FallbackState(str, Enum):
    NEW = "new"
    RESUMING = "resuming"
    FALLBACK = "fallback"


@dataclass(slots=True)
class FallbackOutcome:
    result: SpawnResult
    state: FallbackState
    used_fallback: bool = False


class ResumeFallback:
    """Wrap ``adapter.spawn`` with at most one continue-latest retry."""

    def spawn(self, adapter: AgentAdapter, request: SpawnRequest) -> FallbackOutcome:
        state = FallbackState.RESUMING if request.resume else FallbackState.NEW
        try:
            result = adapter.spawn(request)
        except SessionResumeFailed as error:
            if state is not FallbackState.RESUMING:
                raise
            logger.warning(
                "[%s] resume failed for session %s (exit %s); retrying with continue-latest",
                adapter.name,
                error.session_id,
                error.exit_code,
            )
            # The fallback result, success or failure, is final.
            result = adapter.spawn(request, continue_latest=True)
            return FallbackOutcome(result=result, state=FallbackState.FALLBACK, used_fallback=True)
        return FallbackOutcome(result=result, state=state)
