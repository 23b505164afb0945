"""Error taxonomy shared by admission, adapters and the worker."""

from __future__ import annotations


class AgentBridgeError(RuntimeError):
    """Base error with retryability hint."""

    def __init__(self, message: str, *, transient: bool = True) -> None:
        super().__init__(message)
        self.transient = transient


class AdmissionDenied(AgentBridgeError):
    """Inbound message rejected by allowlist, rate limit or session limits."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message, transient=False)
        self.reason = reason


class AgentProcessError(AgentBridgeError):
    """Agent process failed to start or exited non-zero."""

    def __init__(
        self,
        message: str,
        *,
        agent: str,
        exit_code: int | None = None,
        stderr: str = "",
        transient: bool = True,
    ) -> None:
        super().__init__(message, transient=transient)
        self.agent = agent
        self.exit_code = exit_code
        self.stderr = stderr


class SessionResumeFailed(AgentProcessError):
    """Resume by session id was rejected with a "session not found" signature."""

    def __init__(
        self,
        message: str,
        *,
        agent: str,
        session_id: str,
        exit_code: int,
        stderr: str,
    ) -> None:
        super().__init__(message, agent=agent, exit_code=exit_code, stderr=stderr)
        self.session_id = session_id


class BinaryNotFound(AgentProcessError):
    """No executable could be resolved for a backend.

    Retryable: the operator may fix the environment between attempts.
    """

    def __init__(self, message: str, *, agent: str, env_var: str) -> None:
        super().__init__(message, agent=agent)
        self.env_var = env_var


class FrontendDeliveryError(AgentBridgeError):
    """Chat front-end could not accept a reply."""
