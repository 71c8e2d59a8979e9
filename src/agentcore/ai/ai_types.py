"""Shared typing contracts for provider adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from .orchestration.types import GenerationSettings, ProviderMessage, Tool

__all__ = ["ToolCallRequest", "TurnResponse", "ProviderAdapter"]


@dataclass(slots=True, frozen=True)
class ToolCallRequest:
    """A tool invocation requested by the model in one turn.

    Attributes:
        tool_id: Namespaced ``{serverName}_{toolName}`` identifier.
        args: Decoded arguments.
        call_id: Provider-issued id used to correlate the result.
    """

    tool_id: str
    args: Mapping[str, Any] = field(default_factory=dict)
    call_id: str | None = None


@dataclass(slots=True, frozen=True)
class TurnResponse:
    """What a provider returned for one call to :meth:`ProviderAdapter.send_turn`."""

    text_fragments: tuple[str, ...] = ()
    tool_calls: tuple[ToolCallRequest, ...] = ()
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str | None = None

    @property
    def text(self) -> str:
        return "".join(self.text_fragments)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@runtime_checkable
class ProviderAdapter(Protocol):
    """Minimal interface every model provider implements.

    Adapters translate the provider-agnostic history into vendor requests and
    must follow batched resumption: all tool results of a turn arrive together
    in the next ``prompt_parts``.
    """

    provider: str
    model: str

    async def send_turn(
        self,
        history: Sequence[ProviderMessage],
        prompt_parts: Sequence[ProviderMessage],
        tool_defs: Sequence[Tool],
        *,
        settings: GenerationSettings | None = None,
    ) -> TurnResponse:
        """Send one request and return the decoded response."""
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        ...
