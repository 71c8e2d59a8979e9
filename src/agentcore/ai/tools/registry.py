"""Tool registry: server aggregation, namespaced resolution and dispatch.

Tools are exposed to models as ``{serverName}_{toolName}``. Server names may
not contain ``_`` so the first underscore always separates the two parts.

Resolution never raises. :meth:`ToolRegistry.resolve` and
:meth:`ToolRegistry.lookup` return a tagged :class:`Resolution`;
:meth:`ToolRegistry.invoke` returns a :class:`ToolInvocation` carrying either
the output or a :class:`~agentcore.ai.tools.errors.ToolError`.

Example:
    shared = ToolRegistry()
    shared.register(LocalToolServer("math"))
    session_tools = ToolRegistry(parent=shared)
    result = await session_tools.invoke("math_add", {"a": 1, "b": 2})
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from ..orchestration.types import TOOL_ID_DELIMITER, Tool, ToolCallRecord
from .context_tools import build_references_server, build_rules_server
from .errors import (
    InvalidToolIdFormat,
    ServerNotFound,
    ToolError,
    ToolExecutionError,
    ToolNotFound,
    ToolTimeoutError,
)
from .mcp_server import McpToolServer
from .servers import ToolServer

if TYPE_CHECKING:
    from ...context.store import ContextStore
    from ...services.settings import ToolServerSettings

__all__ = [
    "PermissionPolicy",
    "Resolution",
    "ToolInvocation",
    "ToolRegistry",
    "DuplicateServerError",
    "split_tool_id",
    "build_tool_server",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Result Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Resolution:
    """Tagged outcome of resolving a tool identifier.

    Exactly one of ``tool`` or ``error`` is set.
    """

    server_name: str
    tool_name: str
    server: ToolServer | None = None
    tool: Tool | None = None
    error: ToolError | None = None

    @property
    def found(self) -> bool:
        return self.error is None and self.server is not None and self.tool is not None


@dataclass(slots=True, frozen=True)
class ToolInvocation:
    """Structured result of :meth:`ToolRegistry.invoke`.

    Attributes:
        tool_id: Identifier as requested by the caller.
        server_name: Server part of the identifier (empty when unparseable).
        tool_name: Tool part of the identifier.
        output: Tool output, or the error text on failure.
        elapsed_time_ms: Duration of the dispatch in milliseconds.
        error: Structured error when resolution or execution failed.
    """

    tool_id: str
    server_name: str
    tool_name: str
    output: str = ""
    elapsed_time_ms: float = 0.0
    error: ToolError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_record(
        self,
        args: Mapping[str, Any] | None = None,
        *,
        tool_call_id: str | None = None,
    ) -> ToolCallRecord:
        return ToolCallRecord(
            server_name=self.server_name,
            tool_name=self.tool_name,
            args=dict(args or {}),
            output=self.output,
            elapsed_time_ms=self.elapsed_time_ms,
            error=None if self.error is None else self.error.message,
            tool_call_id=tool_call_id,
        )


@dataclass(slots=True, frozen=True)
class PermissionPolicy:
    """Whether calls to a server's tools need user approval.

    ``tools`` overrides ``required`` for individual tool names.
    """

    required: bool = False
    tools: Mapping[str, bool] = field(default_factory=dict)

    def requires(self, tool_name: str) -> bool:
        return bool(self.tools.get(tool_name, self.required))


class DuplicateServerError(ValueError):
    """Raised when a server name is already registered."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def split_tool_id(tool_id: str) -> tuple[str, str] | None:
    """Split ``tool_id`` at the first underscore, or return ``None``."""
    server_name, sep, tool_name = tool_id.partition(TOOL_ID_DELIMITER)
    if not sep:
        return None
    return server_name, tool_name


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Aggregates connected tool servers and routes namespaced tool calls.

    A registry created with ``parent`` holds session-scoped servers and falls
    back to the parent for resolution; closing it never closes parent servers.
    """

    def __init__(self, *, parent: ToolRegistry | None = None) -> None:
        self._parent = parent
        self._servers: dict[str, ToolServer] = {}
        self._permissions: dict[str, PermissionPolicy] = {}
        self._lock = threading.RLock()

    @property
    def parent(self) -> ToolRegistry | None:
        return self._parent

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, server: ToolServer, *, permission: PermissionPolicy | None = None) -> None:
        """Register ``server`` under its name.

        ``permission`` marks tools whose calls need approval in interactive
        sessions; servers registered without one never do.

        Raises:
            ValueError: If the name is empty or contains ``_``.
            DuplicateServerError: If the name is already registered here or in a parent.
        """
        name = server.name
        if not name or TOOL_ID_DELIMITER in name:
            raise ValueError(f"Invalid tool server name '{name}': must be non-empty and contain no '_'")
        with self._lock:
            if name in self._servers or (self._parent is not None and self._parent.get_server(name) is not None):
                raise DuplicateServerError(f"Tool server '{name}' is already registered")
            self._servers[name] = server
            if permission is not None:
                self._permissions[name] = permission
        LOGGER.debug("Registered tool server: %s (%d tools)", name, len(server.tools))

    def unregister(self, name: str) -> ToolServer | None:
        """Remove and return the server named ``name`` without closing it."""
        with self._lock:
            server = self._servers.pop(name, None)
            self._permissions.pop(name, None)
        if server is not None:
            LOGGER.debug("Unregistered tool server: %s", name)
        return server

    def get_server(self, name: str) -> ToolServer | None:
        with self._lock:
            server = self._servers.get(name)
        if server is None and self._parent is not None:
            return self._parent.get_server(name)
        return server

    def server_names(self) -> list[str]:
        """Return every visible server name, parents first."""
        names = self._parent.server_names() if self._parent is not None else []
        with self._lock:
            names.extend(name for name in self._servers if name not in names)
        return names

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def lookup(self, server_name: str, tool_name: str) -> Resolution:
        """Find ``tool_name`` on ``server_name``."""
        server = self.get_server(server_name)
        if server is None:
            return Resolution(
                server_name=server_name,
                tool_name=tool_name,
                error=ServerNotFound(
                    message=f"Tool server '{server_name}' not found",
                    server_name=server_name,
                ),
            )
        for tool in server.tools:
            if tool.name == tool_name:
                return Resolution(server_name=server_name, tool_name=tool_name, server=server, tool=tool)
        return Resolution(
            server_name=server_name,
            tool_name=tool_name,
            server=server,
            error=ToolNotFound(
                message=f"Tool '{tool_name}' not found on server '{server_name}'",
                server_name=server_name,
                tool_name=tool_name,
            ),
        )

    def resolve(self, tool_id: str) -> Resolution:
        """Resolve a namespaced ``{serverName}_{toolName}`` identifier."""
        parts = split_tool_id(tool_id)
        if parts is None:
            return Resolution(
                server_name="",
                tool_name=tool_id,
                error=InvalidToolIdFormat(
                    message=f"Invalid tool name format: '{tool_id}'. Expected format: serverName_toolName",
                    tool_id=tool_id,
                ),
            )
        return self.lookup(*parts)

    def list_all(self) -> list[Tool]:
        """Return every visible tool namespaced as ``{serverName}_{toolName}``."""
        tools: list[Tool] = []
        for name in self.server_names():
            server = self.get_server(name)
            if server is None:
                continue
            tools.extend(tool.namespaced(name) for tool in server.tools)
        return tools

    def permission_required(self, tool_id: str) -> bool:
        """Return whether calls to ``tool_id`` need approval under the ``tool`` mode."""
        parts = split_tool_id(tool_id)
        if parts is None:
            return False
        server_name, tool_name = parts
        with self._lock:
            if server_name in self._servers:
                policy = self._permissions.get(server_name)
                return policy is not None and policy.requires(tool_name)
        if self._parent is not None:
            return self._parent.permission_required(tool_id)
        return False

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def invoke(
        self,
        tool_id: str,
        args: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> ToolInvocation:
        """Invoke ``tool_id`` and return a structured result.

        Never raises for tool failures. Cancellation of the awaiting task
        propagates unchanged.

        Args:
            tool_id: Namespaced tool identifier.
            args: Keyword arguments for the tool.
            timeout: Optional deadline in seconds for the server call.
        """
        start_time = time.perf_counter()
        resolution = self.resolve(tool_id)
        server = resolution.server
        if resolution.error is not None or server is None:
            failure = resolution.error or ServerNotFound(
                message=f"Tool server '{resolution.server_name}' not found",
                server_name=resolution.server_name,
            )
            LOGGER.warning("Tool %s could not be resolved: %s", tool_id, failure)
            return ToolInvocation(
                tool_id=tool_id,
                server_name=resolution.server_name,
                tool_name=resolution.tool_name,
                output=failure.message,
                elapsed_time_ms=(time.perf_counter() - start_time) * 1000,
                error=failure,
            )

        payload = dict(args or {})
        error: ToolError | None = None
        output = ""
        try:
            if timeout is not None and timeout > 0:
                output = await asyncio.wait_for(server.call_tool(resolution.tool_name, payload), timeout=timeout)
            else:
                output = await server.call_tool(resolution.tool_name, payload)
        except asyncio.TimeoutError:
            LOGGER.warning("Tool %s timed out after %.1fs", tool_id, timeout)
            error = ToolTimeoutError(
                message=f"Tool execution timed out after {timeout}s",
                tool_id=tool_id,
                timeout_seconds=timeout,
            )
        except ToolError as exc:
            LOGGER.warning("Tool %s failed: %s", tool_id, exc)
            error = exc
        except Exception as exc:
            LOGGER.warning("Tool %s failed: %s", tool_id, exc, exc_info=LOGGER.isEnabledFor(logging.DEBUG))
            error = ToolExecutionError.from_exception(tool_id, exc)

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        if error is not None:
            output = error.message
        else:
            LOGGER.debug("Tool %s completed in %.1fms", tool_id, elapsed_ms)
        return ToolInvocation(
            tool_id=tool_id,
            server_name=resolution.server_name,
            tool_name=resolution.tool_name,
            output=output if isinstance(output, str) else str(output),
            elapsed_time_ms=elapsed_ms,
            error=error,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect_all(
        self,
        configs: Iterable[ToolServerSettings],
        *,
        context_store: ContextStore | None = None,
    ) -> list[str]:
        """Build, connect and register a server per enabled config.

        A server that fails to build or connect is logged and skipped.

        Returns:
            Names of the servers that were registered.
        """
        connected: list[str] = []
        for config in configs:
            if not config.enabled:
                LOGGER.debug("Skipping disabled tool server %s", config.name)
                continue
            server: ToolServer | None = None
            try:
                server = build_tool_server(config, context_store=context_store)
                await server.connect()
                self.register(
                    server,
                    permission=PermissionPolicy(config.permission_required, dict(config.tool_permissions)),
                )
            except Exception as exc:
                LOGGER.error("Failed to load tool server %s: %s", config.name, exc)
                if server is not None:
                    await self._close_server(server)
                continue
            connected.append(config.name)
        return connected

    async def aclose(self) -> None:
        """Close and drop every server owned by this registry."""
        with self._lock:
            servers = list(self._servers.values())
            self._servers.clear()
            self._permissions.clear()
        for server in servers:
            await self._close_server(server)

    async def _close_server(self, server: ToolServer) -> None:
        try:
            await server.aclose()
        except Exception:
            LOGGER.error("Failed to close tool server %s", server.name, exc_info=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._servers)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get_server(name) is not None


# -----------------------------------------------------------------------------
# Server Factory
# -----------------------------------------------------------------------------


def build_tool_server(
    config: ToolServerSettings,
    *,
    context_store: ContextStore | None = None,
) -> ToolServer:
    """Instantiate the server described by ``config`` without connecting it."""
    if config.type in ("stdio", "sse"):
        return McpToolServer(
            config.name,
            transport=config.type,
            command=config.command,
            args=config.args,
            env=config.env,
            cwd=config.cwd,
            url=config.url,
            headers=config.headers,
            disabled_tools=config.disabled_tools,
        )
    if config.type == "internal":
        if context_store is None:
            raise ValueError(f"Internal tool server '{config.name}' requires a context store")
        if config.tool == "rules":
            server = build_rules_server(context_store)
        elif config.tool == "references":
            server = build_references_server(context_store)
        else:
            raise ValueError(f"Unknown internal tool '{config.tool}'")
        server.name = config.name
        return server
    raise ValueError(f"Unknown tool server type '{config.type}'")
