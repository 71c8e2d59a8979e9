"""Provider adapter for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, List, Mapping, Sequence

from openai.types.chat import ChatCompletion

from ..ai_types import ToolCallRequest, TurnResponse
from ..client import AIClient
from ..orchestration.types import GenerationSettings, ProviderMessage, Tool

__all__ = ["OpenAIAdapter", "to_openai_messages", "to_openai_tools", "parse_completion"]

LOGGER = logging.getLogger(__name__)


class OpenAIAdapter:
    """Adapter translating provider-agnostic history into chat completions.

    Role mapping: ``system`` and ``user`` pass through. ``function_call``
    entries merge into the preceding assistant message as ``tool_calls``, and
    each ``function_result`` becomes a ``tool`` message.
    """

    def __init__(self, client: AIClient, *, provider: str | None = None) -> None:
        self._client = client
        self.provider = provider or client.settings.provider
        self.model = client.settings.model

    @property
    def client(self) -> AIClient:
        return self._client

    async def send_turn(
        self,
        history: Sequence[ProviderMessage],
        prompt_parts: Sequence[ProviderMessage],
        tool_defs: Sequence[Tool],
        *,
        settings: GenerationSettings | None = None,
    ) -> TurnResponse:
        settings = settings or GenerationSettings()
        messages = to_openai_messages([*history, *prompt_parts])
        completion = await self._client.complete_chat(
            messages,
            tools=to_openai_tools(tool_defs),
            temperature=settings.temperature,
            top_p=settings.top_p,
            max_tokens=settings.max_output_tokens,
        )
        return parse_completion(completion)

    async def aclose(self) -> None:
        await self._client.aclose()

    def __repr__(self) -> str:
        return f"OpenAIAdapter(provider={self.provider!r}, model={self.model!r})"


def to_openai_messages(entries: Sequence[ProviderMessage]) -> List[Dict[str, Any]]:
    """Convert provider-agnostic entries into chat completion messages."""

    messages: List[Dict[str, Any]] = []
    for entry in entries:
        if entry.role == "function_call":
            call_id = entry.tool_call_id or _new_call_id()
            tool_call = {
                "id": call_id,
                "type": "function",
                "function": {
                    "name": entry.tool_name or "",
                    "arguments": json.dumps(dict(entry.args or {}), ensure_ascii=False),
                },
            }
            previous = messages[-1] if messages else None
            if previous is not None and previous["role"] == "assistant":
                previous.setdefault("tool_calls", []).append(tool_call)
            else:
                messages.append({"role": "assistant", "content": None, "tool_calls": [tool_call]})
            continue
        if entry.role == "function_result":
            call_id = entry.tool_call_id or _match_pending_id(entry, messages)
            messages.append({"role": "tool", "tool_call_id": call_id, "content": entry.content})
            continue
        messages.append({"role": entry.role, "content": entry.content})
    return messages


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def _match_pending_id(entry: ProviderMessage, messages: Sequence[Mapping[str, Any]]) -> str:
    """Find the call id of the earliest unanswered call to the same tool."""

    answered = {message.get("tool_call_id") for message in messages if message.get("role") == "tool"}
    for message in messages:
        for call in message.get("tool_calls") or ():
            if call["function"]["name"] == entry.tool_name and call["id"] not in answered:
                return call["id"]
    LOGGER.debug("No matching call found for tool result %s", entry.tool_name)
    return _new_call_id()


def to_openai_tools(tool_defs: Sequence[Tool]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": dict(tool.parameters),
            },
        }
        for tool in tool_defs
    ]


def parse_completion(completion: ChatCompletion) -> TurnResponse:
    """Decode the first choice of ``completion`` into a :class:`TurnResponse`."""

    usage = completion.usage
    input_tokens = usage.prompt_tokens if usage is not None else 0
    output_tokens = usage.completion_tokens if usage is not None else 0
    if not completion.choices:
        return TurnResponse(input_tokens=input_tokens, output_tokens=output_tokens)

    choice = completion.choices[0]
    message = choice.message
    fragments = (message.content,) if message.content else ()
    requests: List[ToolCallRequest] = []
    for call in message.tool_calls or ():
        function = getattr(call, "function", None)
        if function is None:
            continue
        requests.append(
            ToolCallRequest(
                tool_id=function.name,
                args=_decode_arguments(function.arguments, function.name),
                call_id=call.id,
            )
        )
    return TurnResponse(
        text_fragments=fragments,
        tool_calls=tuple(requests),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        finish_reason=choice.finish_reason,
    )


def _decode_arguments(raw: str | None, tool_name: str) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.warning("Tool %s received arguments that are not valid JSON: %s", tool_name, raw)
        return {}
    if not isinstance(decoded, dict):
        LOGGER.warning("Tool %s received non-object arguments: %r", tool_name, decoded)
        return {}
    return decoded
