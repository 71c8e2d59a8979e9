"""Model Context Protocol tool server client (stdio and SSE transports)."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack
from typing import Any, Literal, Mapping, Sequence

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client

from ..orchestration.types import Tool
from .errors import ErrorCode, ToolError, ToolExecutionError, ToolNotFound

__all__ = ["McpToolServer", "McpTransport", "serialize_call_result"]

LOGGER = logging.getLogger(__name__)

McpTransport = Literal["stdio", "sse"]


class McpToolServer:
    """Tool server backed by an external MCP server process or endpoint.

    The connection is opened by :meth:`connect`, which also loads the tool list,
    and released by :meth:`aclose`. Tools listed in ``disabled_tools`` are hidden
    from the model and rejected on call.
    """

    def __init__(
        self,
        name: str,
        *,
        transport: McpTransport = "stdio",
        command: str | None = None,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        url: str | None = None,
        headers: Mapping[str, str] | None = None,
        disabled_tools: Sequence[str] = (),
    ) -> None:
        if transport == "stdio" and not command:
            raise ValueError(f"MCP server '{name}' requires a command for stdio transport")
        if transport == "sse" and not url:
            raise ValueError(f"MCP server '{name}' requires a url for SSE transport")
        self.name = name
        self.transport = transport
        self._command = command
        self._args = list(args)
        self._env = dict(env) if env else None
        self._cwd = cwd
        self._url = url
        self._headers = dict(headers) if headers else None
        self._disabled = frozenset(disabled_tools)
        self._tools: list[Tool] = []
        self._session: ClientSession | None = None
        self._exit_stack: AsyncExitStack | None = None

    @property
    def tools(self) -> Sequence[Tool]:
        return list(self._tools)

    @property
    def connected(self) -> bool:
        return self._session is not None

    async def connect(self) -> None:
        if self._session is not None:
            return
        stack = AsyncExitStack()
        try:
            if self.transport == "stdio":
                params = StdioServerParameters(
                    command=self._command or "",
                    args=self._args,
                    env=self._env,
                    cwd=self._cwd,
                )
                read, write = await stack.enter_async_context(stdio_client(params))
            else:
                read, write = await stack.enter_async_context(
                    sse_client(self._url or "", headers=self._headers)
                )
            session = await stack.enter_async_context(ClientSession(read, write))
            await session.initialize()
            listed = await session.list_tools()
        except BaseException:
            await stack.aclose()
            raise
        self._exit_stack = stack
        self._session = session
        self._tools = [
            Tool(
                name=tool.name,
                description=tool.description or "",
                parameters=dict(tool.inputSchema or {"type": "object", "properties": {}}),
            )
            for tool in listed.tools
            if tool.name not in self._disabled
        ]
        LOGGER.info("Connected to MCP server %s (%d tools)", self.name, len(self._tools))

    async def call_tool(self, tool_name: str, args: Mapping[str, Any]) -> str:
        if self._session is None:
            raise ToolError(
                error_code=ErrorCode.NOT_CONNECTED,
                message=f"MCP server '{self.name}' is not connected",
            )
        if tool_name in self._disabled:
            raise ToolNotFound(
                message=f"Tool '{tool_name}' is disabled on server '{self.name}'",
                server_name=self.name,
                tool_name=tool_name,
            )
        result = await self._session.call_tool(tool_name, arguments=dict(args))
        text = serialize_call_result(result)
        if getattr(result, "isError", False):
            raise ToolExecutionError(
                message=text or f"Tool '{tool_name}' reported an error",
                tool_id=f"{self.name}_{tool_name}",
            )
        return text

    async def aclose(self) -> None:
        stack, self._exit_stack = self._exit_stack, None
        self._session = None
        self._tools = []
        if stack is not None:
            await stack.aclose()
            LOGGER.debug("Disconnected MCP server %s", self.name)

    def __repr__(self) -> str:
        target = self._url if self.transport == "sse" else self._command
        return f"McpToolServer(name={self.name!r}, transport={self.transport!r}, target={target!r})"


def serialize_call_result(result: Any) -> str:
    """Flatten an MCP ``CallToolResult`` into text for the model."""
    text_chunks = []
    for item in getattr(result, "content", None) or ():
        chunk = getattr(item, "text", None)
        if chunk is not None:
            text_chunks.append(str(chunk))
    if text_chunks:
        return "\n".join(text_chunks)
    structured = getattr(result, "structuredContent", None)
    if structured is not None:
        try:
            return json.dumps(structured, ensure_ascii=False)
        except (TypeError, ValueError):
            return str(structured)
    return ""
