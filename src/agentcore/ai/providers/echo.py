"""Offline adapter behind the ``test`` provider."""

from __future__ import annotations

import logging
from typing import Sequence

from ..ai_types import ToolCallRequest, TurnResponse
from ..orchestration.types import GenerationSettings, ProviderMessage, Tool

__all__ = ["EchoAdapter"]

LOGGER = logging.getLogger(__name__)


class EchoAdapter:
    """Echoes the user's text back.

    A prompt of the form ``call <tool_id> [key=value ...]`` requests that tool
    once, after which the tool output is echoed.
    """

    def __init__(self, *, provider: str = "test", model: str = "echo") -> None:
        self.provider = provider
        self.model = model

    async def send_turn(
        self,
        history: Sequence[ProviderMessage],
        prompt_parts: Sequence[ProviderMessage],
        tool_defs: Sequence[Tool],
        *,
        settings: GenerationSettings | None = None,
    ) -> TurnResponse:
        results = [part for part in prompt_parts if part.role == "function_result"]
        if results:
            return TurnResponse(text_fragments=tuple(part.content for part in results))
        text = next((part.content for part in reversed(prompt_parts) if part.role == "user"), "")
        words = text.split()
        if len(words) >= 2 and words[0] == "call":
            args = dict(word.split("=", 1) for word in words[2:] if "=" in word)
            LOGGER.debug("Echo adapter requesting tool %s", words[1])
            return TurnResponse(tool_calls=(ToolCallRequest(tool_id=words[1], args=args, call_id="echo-1"),))
        return TurnResponse(text_fragments=(text,), input_tokens=len(text.split()), output_tokens=len(words))

    async def aclose(self) -> None:
        return None
