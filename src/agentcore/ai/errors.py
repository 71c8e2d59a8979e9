"""Engine-level exceptions raised across the chat session boundary."""

from __future__ import annotations


class AgentError(Exception):
    """Base error for the orchestration engine."""

    def __init__(self, message: str, *, session_id: str | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class ConfigurationError(AgentError):
    """Raised when a provider adapter cannot be constructed.

    Covers missing credentials, unknown providers and malformed model ids.
    Never retried.
    """

    def __init__(
        self,
        message: str,
        *,
        model_id: str | None = None,
        session_id: str | None = None,
    ) -> None:
        super().__init__(message, session_id=session_id)
        self.model_id = model_id


class ProviderTransportError(AgentError):
    """Raised when the model API call fails after retries are exhausted."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        cause: BaseException | None = None,
        session_id: str | None = None,
    ) -> None:
        super().__init__(message, session_id=session_id)
        self.provider = provider
        self.cause = cause


class OperationCancelled(AgentError):
    """Raised when a cancellation token fires or its deadline passes."""

    def __init__(
        self,
        message: str = "Operation cancelled",
        *,
        reason: str = "cancelled",
        session_id: str | None = None,
    ) -> None:
        super().__init__(message, session_id=session_id)
        self.reason = reason

    @property
    def timed_out(self) -> bool:
        return self.reason == "deadline"


__all__ = [
    "AgentError",
    "ConfigurationError",
    "ProviderTransportError",
    "OperationCancelled",
]
