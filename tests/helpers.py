"""Shared test helpers and stub classes.

Import from here instead of duplicating these stubs in individual test files::

    from helpers import ScriptedAdapter
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence, Union

from agentcore.ai.ai_types import TurnResponse
from agentcore.ai.orchestration.types import GenerationSettings, ProviderMessage, Tool


@dataclass(slots=True, frozen=True)
class RecordedCall:
    """Arguments of one :meth:`ScriptedAdapter.send_turn` call."""

    history: tuple[ProviderMessage, ...]
    prompt_parts: tuple[ProviderMessage, ...]
    tool_defs: tuple[Tool, ...]
    settings: GenerationSettings | None


ScriptStep = Union[TurnResponse, BaseException, Callable[[RecordedCall], TurnResponse]]


class ScriptedAdapter:
    """Provider adapter stub that replays a queue of prepared responses.

    Each step is a :class:`TurnResponse`, an exception to raise, or a callable
    receiving the recorded call. When the script runs dry the adapter repeats
    ``fallback`` (a plain ``"done"`` reply unless given).
    """

    def __init__(
        self,
        script: Iterable[ScriptStep] = (),
        *,
        provider: str = "test",
        model: str = "scripted",
        fallback: TurnResponse | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self._script: deque[ScriptStep] = deque(script)
        self._fallback = fallback or TurnResponse(text_fragments=("done",))
        self.calls: list[RecordedCall] = []
        self.closed = False

    def queue(self, *steps: ScriptStep) -> None:
        self._script.extend(steps)

    async def send_turn(
        self,
        history: Sequence[ProviderMessage],
        prompt_parts: Sequence[ProviderMessage],
        tool_defs: Sequence[Tool],
        *,
        settings: GenerationSettings | None = None,
    ) -> TurnResponse:
        call = RecordedCall(tuple(history), tuple(prompt_parts), tuple(tool_defs), settings)
        self.calls.append(call)
        step = self._script.popleft() if self._script else self._fallback
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return step(call)
        return step

    async def aclose(self) -> None:
        self.closed = True
