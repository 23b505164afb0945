"""Deterministic classification of agent failures for the job audit trail."""

from __future__ import annotations

from dataclasses import dataclass

from agent_bridge.errors import (
    AgentBridgeError,
    AgentProcessError,
    BinaryNotFound,
    FrontendDeliveryError,
    SessionResumeFailed,
)
from agent_bridge.queue.models import FailureClass

AGENT_FAILURE_CLASSIFIER_VERSION = 1
TIMEOUT_EXIT_CODE = 124

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "invalid api key",
    "authentication",
    "not logged in",
    "please run /login",
)
_RATE_LIMIT_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "overloaded",
    "please retry",
    "try again later",
)
_GENERIC_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "network error",
    "could not resolve host",
    "timed out",
)


@dataclass(slots=True)
class AgentFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    def to_event_details(self, *, agent: str) -> dict[str, object]:
        """Serialize classifier diagnostics for job events."""

        return {
            "classifier_version": AGENT_FAILURE_CLASSIFIER_VERSION,
            "agent": agent,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_agent_failure(  # noqa: PLR0911
    error: AgentBridgeError,
    *,
    transient_exit_codes: tuple[int, ...] = (137, 143),
) -> AgentFailureClassification:
    """Map an adapter or delivery error onto a failure class."""

    agent = getattr(error, "agent", "frontend")

    if isinstance(error, FrontendDeliveryError):
        return _classified(FailureClass.DELIVERY_FAILED, "frontend", "delivery_failed")
    if isinstance(error, BinaryNotFound):
        return _classified(FailureClass.BINARY_NOT_FOUND, agent, "binary_not_found")
    if isinstance(error, SessionResumeFailed):
        return _classified(FailureClass.SESSION_RESUME_FAILED, agent, "session_resume_failed")
    if not isinstance(error, AgentProcessError):
        return _classified(FailureClass.BACKEND_TRANSIENT, agent, "unclassified")
    if error.exit_code is None:
        return _classified(FailureClass.SPAWN_FAILED, agent, "spawn_failed")
    if error.exit_code == TIMEOUT_EXIT_CODE:
        return _classified(FailureClass.TIMEOUT, agent, "timeout")

    haystack = error.stderr.lower()
    for failure_class, rule, patterns in (
        (FailureClass.BILLING_OR_QUOTA, "billing_or_quota", _BILLING_OR_QUOTA_PATTERNS),
        (FailureClass.ACCESS_OR_AUTH, "access_or_auth", _ACCESS_OR_AUTH_PATTERNS),
        (FailureClass.BACKEND_TRANSIENT, "rate_limit_transient", _RATE_LIMIT_TRANSIENT_PATTERNS),
        (FailureClass.BACKEND_TRANSIENT, "generic_transient", _GENERIC_TRANSIENT_PATTERNS),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return _classified(failure_class, agent, rule, pattern)

    if error.exit_code in transient_exit_codes:
        return _classified(FailureClass.BACKEND_TRANSIENT, agent, "transient_exit_code")
    return _classified(FailureClass.BACKEND_NON_RETRYABLE, agent, "fallback_non_retryable")


def _classified(
    failure_class: FailureClass,
    agent: str,
    rule: str,
    pattern: str | None = None,
) -> AgentFailureClassification:
    return AgentFailureClassification(
        failure_class=failure_class,
        reason_code=f"{agent}_{failure_class.value}",
        matched_rule=rule,
        matched_pattern=pattern,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
