"""Tests for the retrying AI client."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import httpx
import pytest
from openai import APIConnectionError, BadRequestError, InternalServerError

from agentcore.ai.client import AIClient, ClientSettings
from agentcore.ai.errors import ProviderTransportError

_REQUEST = httpx.Request("POST", "http://localhost/v1/chat/completions")


def _status_error(cls, status: int):
    response = httpx.Response(status, request=_REQUEST)
    return cls(f"status {status}", response=response, body=None)


class _Completions:
    def __init__(self, outcomes: list[Any]) -> None:
        self.outcomes = outcomes
        self.calls: list[dict[str, Any]] = []

    async def create(self, **payload: Any) -> Any:
        self.calls.append(payload)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeOpenAI:
    """Replays outcomes for ``chat.completions.create``."""

    def __init__(self, *outcomes: Any) -> None:
        self.chat = SimpleNamespace(completions=_Completions(list(outcomes)))


def _client(fake: FakeOpenAI, **overrides: Any) -> AIClient:
    settings = ClientSettings(
        base_url="http://localhost/v1",
        api_key="sk-test",
        model="gpt-test",
        max_retries=3,
        retry_min_seconds=0,
        retry_max_seconds=0,
        **overrides,
    )
    return AIClient(settings, client=fake)


class TestCompleteChat:
    """Retry and error wrapping."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        sentinel = object()
        fake = FakeOpenAI(sentinel)

        result = await _client(fake).complete_chat(
            [{"role": "user", "content": "hi"}],
            max_tokens=10,
            user="s1",
        )

        (payload,) = fake.chat.completions.calls
        assert result is sentinel
        assert payload["model"] == "gpt-test"
        assert payload["user"] == "s1"
        assert payload["max_tokens"] == 10
        assert "temperature" not in payload

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self) -> None:
        sentinel = object()
        fake = FakeOpenAI(
            APIConnectionError(request=_REQUEST),
            _status_error(InternalServerError, 503),
            sentinel,
        )

        result = await _client(fake).complete_chat([{"role": "user", "content": "hi"}])

        assert result is sentinel
        assert len(fake.chat.completions.calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_transport_error(self) -> None:
        fake = FakeOpenAI(*[APIConnectionError(request=_REQUEST) for _ in range(3)])

        with pytest.raises(ProviderTransportError) as excinfo:
            await _client(fake).complete_chat([{"role": "user", "content": "hi"}])

        assert len(fake.chat.completions.calls) == 3
        assert str(excinfo.value).startswith("Error: Failed to generate response from openai - ")
        assert isinstance(excinfo.value.cause, APIConnectionError)

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self) -> None:
        fake = FakeOpenAI(_status_error(BadRequestError, 400))

        with pytest.raises(ProviderTransportError) as excinfo:
            await _client(fake, provider="ollama").complete_chat([{"role": "user", "content": "hi"}])

        assert len(fake.chat.completions.calls) == 1
        assert excinfo.value.provider == "ollama"

    @pytest.mark.asyncio
    async def test_empty_messages_rejected(self) -> None:
        with pytest.raises(ValueError):
            await _client(FakeOpenAI()).complete_chat([])


@pytest.mark.asyncio
async def test_aclose_tolerates_clients_without_close() -> None:
    await _client(FakeOpenAI()).aclose()
