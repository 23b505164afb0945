"""Pre-dispatch admission checks."""

from agent_bridge.admission.allowlist import Allowlist, MessageOrigin
from agent_bridge.admission.rate_limiter import SlidingWindowRateLimiter
from agent_bridge.admission.session_limits import SessionLimits

__all__ = [
    "Allowlist",
    "MessageOrigin",
    "SessionLimits",
    "SlidingWindowRateLimiter",
]
