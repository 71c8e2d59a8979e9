"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from agentcore.ai.tools.registry import ToolRegistry
from agentcore.ai.tools.servers import LocalToolServer
from agentcore.context.store import InMemoryContextStore, Reference, Rule


@pytest.fixture
def context_store() -> InMemoryContextStore:
    return InMemoryContextStore(
        rules=[
            Rule(name="be-brief", description="Keep answers short", priority_level=100, text="Answer briefly."),
            Rule(name="cite", priority_level=200, text="Cite your sources."),
            Rule(name="off", priority_level=50, enabled=False, text="Disabled rule."),
        ],
        references=[
            Reference(name="readme", description="Project readme", priority_level=300, text="README body"),
            Reference(name="api", priority_level=100, text="API notes"),
        ],
    )


@pytest.fixture
def math_server() -> LocalToolServer:
    server = LocalToolServer("math")

    @server.tool(
        description="Add two integers",
        parameters={
            "type": "object",
            "properties": {"a": {"type": "integer"}, "b": {"type": "integer"}},
            "required": ["a", "b"],
        },
    )
    def add(a: int, b: int) -> int:
        return a + b

    @server.tool(description="Always fails")
    def explode() -> str:
        raise RuntimeError("kaboom")

    return server


@pytest.fixture
def registry(math_server: LocalToolServer) -> ToolRegistry:
    tools = ToolRegistry()
    tools.register(math_server)
    return tools
