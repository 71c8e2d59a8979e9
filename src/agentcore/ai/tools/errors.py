"""Standardized error types for tool resolution and execution.

Tool-level failures never cross the tool call loop as exceptions. They are
raised (or returned) here as :class:`ToolError` instances and converted into
data on the :class:`~agentcore.ai.orchestration.types.ToolCallRecord`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for error codes used in tool results."""

    # Resolution errors
    INVALID_TOOL_ID_FORMAT = "invalid_tool_id_format"
    SERVER_NOT_FOUND = "server_not_found"
    TOOL_NOT_FOUND = "tool_not_found"

    # Execution errors
    TOOL_EXECUTION_FAILED = "tool_execution_failed"
    TIMEOUT = "timeout"
    NOT_CONNECTED = "not_connected"

    # General errors
    INTERNAL_ERROR = "internal_error"
    INVALID_PARAMETER = "invalid_parameter"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class ToolError(Exception):
    """Base exception class for all tool errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for JSON tool responses."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Resolution Errors
# -----------------------------------------------------------------------------

@dataclass
class InvalidToolIdFormat(ToolError):
    """Raised when a tool identifier carries no ``_`` server delimiter."""

    error_code: str = field(default=ErrorCode.INVALID_TOOL_ID_FORMAT)
    message: str = field(default="Invalid tool name format. Expected format: serverName_toolName")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Call tools by the namespaced name they were offered under")

    tool_id: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.tool_id is not None:
            result["tool_id"] = self.tool_id
        return result


@dataclass
class ServerNotFound(ToolError):
    """Raised when the server part of a tool identifier is not registered."""

    error_code: str = field(default=ErrorCode.SERVER_NOT_FOUND)
    message: str = field(default="Tool server not found")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    server_name: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.server_name is not None:
            result["server_name"] = self.server_name
        return result


@dataclass
class ToolNotFound(ToolError):
    """Raised when a registered server does not expose the requested tool."""

    error_code: str = field(default=ErrorCode.TOOL_NOT_FOUND)
    message: str = field(default="Tool not found")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    server_name: str | None = field(default=None)
    tool_name: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.server_name is not None:
            result["server_name"] = self.server_name
        if self.tool_name is not None:
            result["tool_name"] = self.tool_name
        return result


# -----------------------------------------------------------------------------
# Execution Errors
# -----------------------------------------------------------------------------

@dataclass
class ToolExecutionError(ToolError):
    """Wraps any transport or runtime failure raised by a tool server."""

    error_code: str = field(default=ErrorCode.TOOL_EXECUTION_FAILED)
    message: str = field(default="Tool execution failed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    tool_id: str | None = field(default=None)
    cause: BaseException | None = field(default=None, repr=False)

    @classmethod
    def from_exception(cls, tool_id: str, exc: BaseException) -> "ToolExecutionError":
        """Wrap ``exc`` keeping it reachable as ``cause`` and ``__cause__``."""
        text = str(exc) or type(exc).__name__
        error = cls(message=text, tool_id=tool_id, cause=exc)
        error.__cause__ = exc
        return error

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.tool_id is not None:
            result["tool_id"] = self.tool_id
        if self.cause is not None:
            result["cause"] = type(self.cause).__name__
        return result


@dataclass
class ToolTimeoutError(ToolExecutionError):
    """Raised when a tool invocation exceeds its deadline."""

    error_code: str = field(default=ErrorCode.TIMEOUT)
    message: str = field(default="Tool execution timed out")

    timeout_seconds: float | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.timeout_seconds is not None:
            result["timeout_seconds"] = self.timeout_seconds
        return result


__all__ = [
    "ErrorCode",
    "ToolError",
    "InvalidToolIdFormat",
    "ServerNotFound",
    "ToolNotFound",
    "ToolExecutionError",
    "ToolTimeoutError",
]
