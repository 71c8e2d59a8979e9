"""Tests for the protocol-facing SessionManager."""

from __future__ import annotations

import logging
import re

import pytest

from agentcore.ai.ai_types import ToolCallRequest, TurnResponse
from agentcore.ai.errors import ProviderTransportError
from agentcore.ai.orchestration.cancellation import CancellationToken
from agentcore.ai.orchestration.chat_session import ChatSession
from agentcore.ai.orchestration.session_manager import (
    SessionManager,
    SessionNotFoundError,
    new_session_id,
)

from helpers import ScriptedAdapter


class SingleAdapterFactory:
    """Hands the same scripted adapter to every session."""

    def __init__(self, adapter: ScriptedAdapter) -> None:
        self.adapter = adapter

    def create(self, model_id: str) -> ScriptedAdapter:
        return self.adapter


@pytest.fixture
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter()


@pytest.fixture
def manager(adapter, context_store, registry) -> SessionManager:
    factory = SingleAdapterFactory(adapter)

    def build(session_id: str) -> ChatSession:
        return ChatSession(session_id, factory=factory, store=context_store, tools=registry, model_id="test:scripted")

    return SessionManager(build)


def test_new_session_id_format() -> None:
    assert re.fullmatch(r"session-\d+-[0-9a-f]{9}", new_session_id())


class TestLifecycle:
    """Creation, lookup and disposal."""

    def test_create_generates_id(self, manager: SessionManager) -> None:
        session = manager.create_session()

        assert session.id.startswith("session-")
        assert session.chat_session.id == session.id
        assert manager.get_session(session.id) is session

    def test_create_is_idempotent(self, manager: SessionManager, caplog: pytest.LogCaptureFixture) -> None:
        first = manager.create_session("abc")

        with caplog.at_level(logging.WARNING):
            second = manager.create_session("abc")

        assert first is second
        assert len(manager) == 1
        assert "Session abc already exists, reusing existing session" in caplog.text

    @pytest.mark.asyncio
    async def test_close_session(self, manager: SessionManager) -> None:
        session = manager.create_session("abc")

        await manager.close_session("abc")
        await manager.close_session("abc")

        assert manager.get_session("abc") is None
        assert session.chat_session.closed

    @pytest.mark.asyncio
    async def test_close_all_continues_past_failures(self, manager: SessionManager) -> None:
        broken = manager.create_session("broken")
        healthy = manager.create_session("healthy")

        async def fail() -> None:
            raise RuntimeError("cannot close")

        broken.aclose = fail  # type: ignore[method-assign]

        errors = await manager.close_all_sessions()

        assert [str(error) for error in errors] == ["cannot close"]
        assert healthy.chat_session.closed
        assert len(manager) == 0


class TestPrompt:
    """Prompt dispatch and stop reasons."""

    @pytest.mark.asyncio
    async def test_end_turn(self, manager: SessionManager, adapter) -> None:
        adapter.queue(TurnResponse(text_fragments=("hello",)))
        session = manager.create_session("a")

        response = await manager.prompt("a", "hi")

        assert response.stop_reason == "end_turn"
        assert response.last_sync_id == session.chat_session.last_sync_id == 1
        assert response.to_dict()["stopReason"] == "end_turn"

    @pytest.mark.asyncio
    async def test_max_turn_requests(self, manager: SessionManager, adapter) -> None:
        adapter.queue(*[TurnResponse(tool_calls=(ToolCallRequest("math_add", {"a": 1, "b": 1}),))] * 5)
        manager.create_session("a")

        response = await manager.prompt("a", "loop")

        assert response.stop_reason == "max_turn_requests"

    @pytest.mark.asyncio
    async def test_max_tokens(self, manager: SessionManager, adapter) -> None:
        adapter.queue(TurnResponse(text_fragments=("cut",), finish_reason="length"))
        manager.create_session("a")

        response = await manager.prompt("a", "long")

        assert response.stop_reason == "max_tokens"

    @pytest.mark.asyncio
    async def test_cancelled(self, manager: SessionManager, adapter) -> None:
        token = CancellationToken()
        token.cancel()
        manager.create_session("a")

        response = await manager.prompt("a", "hi", cancel_token=token)

        assert response.stop_reason == "cancelled"
        assert response.updates == ()
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, manager: SessionManager, adapter) -> None:
        adapter.queue(ConnectionError("down"))
        manager.create_session("a")

        with pytest.raises(ProviderTransportError):
            await manager.prompt("a", "hi")

    @pytest.mark.asyncio
    async def test_unknown_session(self, manager: SessionManager) -> None:
        with pytest.raises(SessionNotFoundError):
            await manager.prompt("missing", "hi")

    def test_cancel_without_prompt(self, manager: SessionManager) -> None:
        manager.create_session("a")

        assert not manager.cancel("a")
        assert not manager.cancel("missing")
