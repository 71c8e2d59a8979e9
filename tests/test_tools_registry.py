"""Tests for ai/tools/registry.py."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Sequence

import pytest

from agentcore.ai.orchestration.types import Tool
from agentcore.ai.tools.errors import (
    ErrorCode,
    InvalidToolIdFormat,
    ServerNotFound,
    ToolExecutionError,
    ToolNotFound,
    ToolTimeoutError,
)
from agentcore.ai.tools.registry import (
    DuplicateServerError,
    PermissionPolicy,
    ToolRegistry,
    build_tool_server,
    split_tool_id,
)
from agentcore.ai.tools.servers import LocalToolServer
from agentcore.services.settings import ToolServerSettings


# -----------------------------------------------------------------------------
# Test Fixtures and Helpers
# -----------------------------------------------------------------------------


class RecordingServer:
    """Tool server double that records calls and lifecycle events."""

    def __init__(self, name: str, tools: Sequence[str] = ("ping",), *, fail_connect: bool = False) -> None:
        self.name = name
        self._tools = [Tool(name=tool) for tool in tools]
        self.fail_connect = fail_connect
        self.connected = False
        self.closed = False
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.delay = 0.0

    @property
    def tools(self) -> Sequence[Tool]:
        return self._tools

    async def connect(self) -> None:
        if self.fail_connect:
            raise ConnectionError(f"{self.name} refused")
        self.connected = True

    async def call_tool(self, tool_name: str, args: Mapping[str, Any]) -> str:
        self.calls.append((tool_name, dict(args)))
        if self.delay:
            await asyncio.sleep(self.delay)
        return f"{self.name}:{tool_name}"

    async def aclose(self) -> None:
        self.closed = True


# -----------------------------------------------------------------------------
# Tests: Registration
# -----------------------------------------------------------------------------


class TestRegistration:
    """Tests for registering and unregistering servers."""

    def test_register_and_lookup(self, registry: ToolRegistry) -> None:
        assert "math" in registry
        assert len(registry) == 1
        assert registry.server_names() == ["math"]

    def test_duplicate_name_rejected(self, registry: ToolRegistry) -> None:
        with pytest.raises(DuplicateServerError):
            registry.register(LocalToolServer("math"))

    @pytest.mark.parametrize("name", ["", "my_server"])
    def test_invalid_names_rejected(self, name: str) -> None:
        with pytest.raises(ValueError):
            ToolRegistry().register(LocalToolServer(name))

    def test_unregister_returns_server(self, registry: ToolRegistry, math_server: LocalToolServer) -> None:
        assert registry.unregister("math") is math_server
        assert registry.unregister("math") is None
        assert "math" not in registry

    def test_list_all_namespaces_tools(self, registry: ToolRegistry) -> None:
        names = [tool.name for tool in registry.list_all()]

        assert names == ["math_add", "math_explode"]


# -----------------------------------------------------------------------------
# Tests: Resolution
# -----------------------------------------------------------------------------


class TestResolution:
    """Tests for tool id resolution."""

    def test_split_at_first_underscore(self) -> None:
        assert split_tool_id("fs_read_file") == ("fs", "read_file")
        assert split_tool_id("nounderscore") is None

    def test_resolve_found(self, registry: ToolRegistry, math_server: LocalToolServer) -> None:
        resolution = registry.resolve("math_add")

        assert resolution.found
        assert resolution.server is math_server
        assert resolution.tool is not None and resolution.tool.name == "add"

    def test_resolve_keeps_underscores_in_tool_name(self) -> None:
        registry = ToolRegistry()
        registry.register(RecordingServer("fs", tools=("read_file",)))

        resolution = registry.resolve("fs_read_file")

        assert resolution.found
        assert resolution.tool_name == "read_file"

    def test_resolve_invalid_format(self, registry: ToolRegistry) -> None:
        resolution = registry.resolve("nounderscore")

        assert not resolution.found
        assert isinstance(resolution.error, InvalidToolIdFormat)

    def test_resolve_unknown_server(self, registry: ToolRegistry) -> None:
        resolution = registry.resolve("unknown_tool")

        assert isinstance(resolution.error, ServerNotFound)
        assert resolution.server_name == "unknown"

    def test_resolve_unknown_tool(self, registry: ToolRegistry) -> None:
        resolution = registry.resolve("math_divide")

        assert isinstance(resolution.error, ToolNotFound)
        assert resolution.tool_name == "divide"


# -----------------------------------------------------------------------------
# Tests: Invocation
# -----------------------------------------------------------------------------


class TestInvoke:
    """Tests for invoking tools through the registry."""

    @pytest.mark.asyncio
    async def test_invoke_success(self, registry: ToolRegistry) -> None:
        invocation = await registry.invoke("math_add", {"a": 2, "b": 3})

        assert invocation.ok
        assert invocation.output == "5"
        assert invocation.server_name == "math"
        assert invocation.tool_name == "add"
        assert invocation.elapsed_time_ms >= 0

    @pytest.mark.asyncio
    async def test_invoke_unknown_tool_does_not_raise(self, registry: ToolRegistry) -> None:
        invocation = await registry.invoke("nounderscore", {})

        assert not invocation.ok
        assert isinstance(invocation.error, InvalidToolIdFormat)
        assert invocation.output == invocation.error.message

    @pytest.mark.asyncio
    async def test_invoke_wraps_runtime_failure(self, registry: ToolRegistry) -> None:
        invocation = await registry.invoke("math_explode", {})

        assert isinstance(invocation.error, ToolExecutionError)
        assert isinstance(invocation.error.cause, RuntimeError)
        assert invocation.output == "kaboom"

    @pytest.mark.asyncio
    async def test_invoke_invalid_arguments(self, registry: ToolRegistry) -> None:
        invocation = await registry.invoke("math_add", {"a": "two", "b": 3})

        assert invocation.error is not None
        assert invocation.error.error_code == ErrorCode.INVALID_PARAMETER

    @pytest.mark.asyncio
    async def test_invoke_timeout(self) -> None:
        server = RecordingServer("slow")
        server.delay = 1.0
        registry = ToolRegistry()
        registry.register(server)

        invocation = await registry.invoke("slow_ping", {}, timeout=0.01)

        assert isinstance(invocation.error, ToolTimeoutError)
        assert invocation.error.timeout_seconds == 0.01

    @pytest.mark.asyncio
    async def test_record_conversion(self, registry: ToolRegistry) -> None:
        invocation = await registry.invoke("math_explode", {})

        record = invocation.to_record({}, tool_call_id="call-1")

        assert record.tool_id == "math_explode"
        assert record.error == "kaboom"
        assert record.tool_call_id == "call-1"

    @pytest.mark.asyncio
    async def test_concurrent_invocations(self) -> None:
        server = RecordingServer("echo")
        server.delay = 0.01
        registry = ToolRegistry()
        registry.register(server)

        results = await asyncio.gather(*(registry.invoke("echo_ping", {"i": i}) for i in range(5)))

        assert all(result.ok for result in results)
        assert sorted(args["i"] for _, args in server.calls) == [0, 1, 2, 3, 4]


# -----------------------------------------------------------------------------
# Tests: Child registries and lifecycle
# -----------------------------------------------------------------------------


class TestChildRegistry:
    """Tests for session-scoped child registries."""

    @pytest.mark.asyncio
    async def test_child_falls_back_to_parent(self, registry: ToolRegistry) -> None:
        child = ToolRegistry(parent=registry)
        child.register(RecordingServer("local"))

        assert child.resolve("math_add").found
        assert child.resolve("local_ping").found
        assert not registry.resolve("local_ping").found
        assert [tool.name for tool in child.list_all()] == ["math_add", "math_explode", "local_ping"]

    def test_child_cannot_shadow_parent(self, registry: ToolRegistry) -> None:
        child = ToolRegistry(parent=registry)

        with pytest.raises(DuplicateServerError):
            child.register(RecordingServer("math"))

    @pytest.mark.asyncio
    async def test_child_close_leaves_parent_servers(self) -> None:
        shared = RecordingServer("shared")
        local = RecordingServer("local")
        parent = ToolRegistry()
        parent.register(shared)
        child = ToolRegistry(parent=parent)
        child.register(local)

        await child.aclose()

        assert local.closed
        assert not shared.closed
        assert parent.resolve("shared_ping").found


class TestPermissions:
    """Per-server approval policy lookup."""

    def test_policy_with_tool_override(self) -> None:
        registry = ToolRegistry()
        registry.register(RecordingServer("fs"), permission=PermissionPolicy(required=True, tools={"ping": False}))
        registry.register(RecordingServer("plain"))

        assert not registry.permission_required("fs_ping")
        assert registry.permission_required("fs_write")
        assert not registry.permission_required("plain_ping")
        assert not registry.permission_required("noseparator")
        assert not registry.permission_required("ghost_ping")

    def test_child_defers_to_parent_policy(self) -> None:
        parent = ToolRegistry()
        parent.register(RecordingServer("fs"), permission=PermissionPolicy(required=True))
        child = ToolRegistry(parent=parent)
        child.register(RecordingServer("local"))

        assert child.permission_required("fs_ping")
        assert not child.permission_required("local_ping")

    def test_unregister_drops_policy(self) -> None:
        registry = ToolRegistry()
        registry.register(RecordingServer("fs"), permission=PermissionPolicy(required=True))
        registry.unregister("fs")
        registry.register(RecordingServer("fs"))

        assert not registry.permission_required("fs_ping")


class TestConnectAll:
    """Tests for building servers from settings."""

    @pytest.mark.asyncio
    async def test_failing_server_is_skipped(self, context_store, monkeypatch: pytest.MonkeyPatch) -> None:
        servers = {
            "good": RecordingServer("good"),
            "bad": RecordingServer("bad", fail_connect=True),
        }
        monkeypatch.setattr(
            "agentcore.ai.tools.registry.build_tool_server",
            lambda config, context_store=None: servers[config.name],
        )
        registry = ToolRegistry()

        connected = await registry.connect_all(
            [
                ToolServerSettings(name="bad", command="nope"),
                ToolServerSettings(name="good", command="ok"),
                ToolServerSettings(name="off", command="x", enabled=False),
            ],
            context_store=context_store,
        )

        assert connected == ["good"]
        assert registry.server_names() == ["good"]
        assert servers["bad"].closed

    @pytest.mark.asyncio
    async def test_permission_settings_become_policy(self, context_store) -> None:
        registry = ToolRegistry()

        await registry.connect_all(
            [
                ToolServerSettings(
                    name="rules",
                    type="internal",
                    tool="rules",
                    permission_required=True,
                    tool_permissions={"listRules": False},
                )
            ],
            context_store=context_store,
        )

        assert registry.permission_required("rules_getRule")
        assert not registry.permission_required("rules_listRules")

    @pytest.mark.asyncio
    async def test_internal_rules_server(self, context_store) -> None:
        registry = ToolRegistry()

        connected = await registry.connect_all(
            [ToolServerSettings(name="rules", type="internal", tool="rules")],
            context_store=context_store,
        )
        invocation = await registry.invoke("rules_getRule", {"name": "cite"})

        assert connected == ["rules"]
        assert "Cite your sources." in invocation.output

    def test_build_rejects_unknown_type(self) -> None:
        with pytest.raises(ValueError):
            build_tool_server(ToolServerSettings(name="x", type="carrier-pigeon"))  # type: ignore[arg-type]

    def test_build_stdio_requires_command(self) -> None:
        with pytest.raises(ValueError):
            build_tool_server(ToolServerSettings(name="x", type="stdio"))
