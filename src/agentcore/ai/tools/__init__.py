"""Tool servers and the registry that routes namespaced tool ids to them."""

from .errors import (
    ErrorCode,
    InvalidToolIdFormat,
    ServerNotFound,
    ToolError,
    ToolExecutionError,
    ToolNotFound,
    ToolTimeoutError,
)
from .registry import Resolution, ToolInvocation, ToolRegistry, split_tool_id
from .servers import LocalToolServer, ToolServer

__all__ = [
    "ErrorCode",
    "InvalidToolIdFormat",
    "LocalToolServer",
    "Resolution",
    "ServerNotFound",
    "ToolError",
    "ToolExecutionError",
    "ToolInvocation",
    "ToolNotFound",
    "ToolRegistry",
    "ToolServer",
    "ToolTimeoutError",
    "split_tool_id",
]
