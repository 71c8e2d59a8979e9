"""Tool server contract and the in-process server implementation."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol, Sequence, runtime_checkable

from jsonschema import Draft7Validator
from jsonschema.exceptions import best_match

from ..orchestration.types import Tool
from .errors import ErrorCode, ToolError, ToolNotFound

__all__ = [
    "ToolServer",
    "ToolHandler",
    "LocalToolServer",
    "format_tool_result_content",
]

LOGGER = logging.getLogger(__name__)

ToolHandler = Callable[..., Any]


# -----------------------------------------------------------------------------
# Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class ToolServer(Protocol):
    """A connected provider of named, schema-described tools.

    Implementations must tolerate concurrent ``call_tool`` invocations and may
    raise any exception from ``call_tool``; the registry wraps failures.
    """

    name: str

    @property
    def tools(self) -> Sequence[Tool]:
        """Ordered tools exposed by the server."""
        ...

    async def connect(self) -> None:
        """Open the connection and load the tool list."""
        ...

    async def call_tool(self, tool_name: str, args: Mapping[str, Any]) -> str:
        """Invoke ``tool_name`` and return its output as text."""
        ...

    async def aclose(self) -> None:
        """Release the connection."""
        ...


# -----------------------------------------------------------------------------
# Local Server
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class _LocalTool:
    tool: Tool
    handler: ToolHandler
    validator: Draft7Validator | None


class LocalToolServer:
    """Tool server backed by in-process Python callables.

    Handlers are invoked with keyword arguments and may be sync or async.
    Arguments are validated against the tool's JSON schema before dispatch.

    Example:
        server = LocalToolServer("math")
        server.add_tool("add", lambda a, b: a + b, parameters={...})
    """

    def __init__(self, name: str, *, validate_args: bool = True) -> None:
        self.name = name
        self._validate_args = validate_args
        self._tools: dict[str, _LocalTool] = {}
        self._connected = False

    @property
    def tools(self) -> Sequence[Tool]:
        return [entry.tool for entry in self._tools.values()]

    @property
    def connected(self) -> bool:
        return self._connected

    def add_tool(
        self,
        name: str,
        handler: ToolHandler,
        *,
        description: str = "",
        parameters: Mapping[str, Any] | None = None,
    ) -> Tool:
        """Register ``handler`` under ``name``; replaces an existing tool."""
        schema = dict(parameters or {"type": "object", "properties": {}})
        Draft7Validator.check_schema(schema)
        tool = Tool(name=name, description=description or (inspect.getdoc(handler) or ""), parameters=schema)
        validator = Draft7Validator(schema) if self._validate_args else None
        self._tools[name] = _LocalTool(tool=tool, handler=handler, validator=validator)
        LOGGER.debug("Local tool registered: %s.%s", self.name, name)
        return tool

    def tool(
        self,
        name: str | None = None,
        *,
        description: str = "",
        parameters: Mapping[str, Any] | None = None,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of :meth:`add_tool`."""

        def decorator(handler: ToolHandler) -> ToolHandler:
            self.add_tool(
                name or handler.__name__,
                handler,
                description=description,
                parameters=parameters,
            )
            return handler

        return decorator

    async def connect(self) -> None:
        self._connected = True

    async def call_tool(self, tool_name: str, args: Mapping[str, Any]) -> str:
        entry = self._tools.get(tool_name)
        if entry is None:
            raise ToolNotFound(
                message=f"Tool '{tool_name}' not found on server '{self.name}'",
                server_name=self.name,
                tool_name=tool_name,
            )
        if entry.validator is not None:
            errors = list(entry.validator.iter_errors(dict(args)))
            if errors:
                first = best_match(errors)
                location = "/".join(str(part) for part in first.path) or "arguments"
                raise ToolError(
                    error_code=ErrorCode.INVALID_PARAMETER,
                    message=f"Invalid {location}: {first.message}",
                    details={"tool": tool_name, "errors": [err.message for err in errors]},
                )
        result = entry.handler(**dict(args))
        if inspect.isawaitable(result):
            result = await result
        return format_tool_result_content(result)

    async def aclose(self) -> None:
        self._connected = False

    def __repr__(self) -> str:
        return f"LocalToolServer(name={self.name!r}, tools={list(self._tools)!r})"


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def format_tool_result_content(result: Any) -> str:
    """Format a tool result for inclusion in a message.

    Args:
        result: The raw tool result.

    Returns:
        String representation of the result.
    """
    if result is None:
        return "null"

    if isinstance(result, str):
        return result

    if isinstance(result, bool):
        return "true" if result else "false"

    if isinstance(result, (int, float)):
        return str(result)

    if isinstance(result, (dict, list, tuple)):
        try:
            return json.dumps(result, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            return str(result)

    if hasattr(result, "to_dict") and callable(result.to_dict):
        try:
            return json.dumps(result.to_dict(), ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            pass

    return str(result)

