"""Tool call loop: the bounded model/tool exchange for one user message.

The loop drives a :class:`~agentcore.ai.ai_types.ProviderAdapter` and a
:class:`~agentcore.ai.tools.registry.ToolRegistry` through the states::

    AWAITING_MODEL -> MODEL_RESPONDED -> DONE
                                      -> EXECUTING_TOOLS -> AWAITING_MODEL
                                                         -> ERROR_MAX_TURNS

All tool calls requested in one turn run sequentially in the order returned
and their results are sent back together in the next request. When an
approver is given, each call is offered to it first and a declined call is
recorded as failed without reaching the registry.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Literal, Sequence

from ..ai_types import ProviderAdapter, ToolCallRequest, TurnResponse
from ..errors import OperationCancelled, ProviderTransportError
from .cancellation import CancellationToken
from .types import (
    TOOL_ID_DELIMITER,
    GenerationSettings,
    ModelReply,
    ProviderMessage,
    Tool,
    ToolCallRecord,
    Turn,
)

if TYPE_CHECKING:
    from ..tools.registry import ToolRegistry

__all__ = [
    "MAX_TURNS",
    "MAX_TURNS_MESSAGE",
    "MAX_TOKENS_MESSAGE",
    "TOOL_DENIED_MESSAGE",
    "LoopState",
    "LoopConfig",
    "LoopOutcome",
    "ToolApprover",
    "ToolCallLoop",
]

LOGGER = logging.getLogger(__name__)

MAX_TURNS = 5
MAX_TURNS_MESSAGE = "Maximum number of tool uses reached"
MAX_TOKENS_MESSAGE = (
    "Maximum number of tokens reached for this response.  "
    "Increase the Maximum Output Tokens setting if desired."
)
TOOL_DENIED_MESSAGE = "Tool call denied by user"

ToolApprover = Callable[[ToolCallRequest], Awaitable[bool]]


# -----------------------------------------------------------------------------
# Loop Types
# -----------------------------------------------------------------------------


class LoopState(str, Enum):
    """States of the tool call loop."""

    AWAITING_MODEL = "awaiting_model"
    MODEL_RESPONDED = "model_responded"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ERROR_MAX_TURNS = "error_max_turns"


@dataclass(slots=True, frozen=True)
class LoopConfig:
    """Configuration for the tool call loop.

    Attributes:
        max_turns: Model calls allowed per message; capped at ``MAX_TURNS``.
        tool_timeout: Per-invocation timeout in seconds, ``None`` for unbounded.
    """

    max_turns: int = MAX_TURNS
    tool_timeout: float | None = 30.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "max_turns", max(1, min(int(self.max_turns), MAX_TURNS)))


@dataclass(slots=True, frozen=True)
class LoopOutcome:
    """Tagged result of :meth:`ToolCallLoop.run`.

    Attributes:
        status: ``ok`` when a reply was produced, ``cancelled`` or ``error`` otherwise.
        reply: The model reply; set only for ``ok``.
        error: The exception behind a ``cancelled`` or ``error`` outcome.
        final_state: State the loop stopped in.
        iterations: Number of adapter calls made.
    """

    status: Literal["ok", "cancelled", "error"]
    reply: ModelReply | None = None
    error: Exception | None = None
    final_state: LoopState = LoopState.DONE
    iterations: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def max_turns_reached(self) -> bool:
        return self.final_state is LoopState.ERROR_MAX_TURNS


@dataclass(slots=True)
class _LoopRun:
    history: list[ProviderMessage]
    prompt_parts: list[ProviderMessage]
    turns: list[Turn] = field(default_factory=list)
    state: LoopState = LoopState.AWAITING_MODEL
    iterations: int = 0


# -----------------------------------------------------------------------------
# Tool Call Loop
# -----------------------------------------------------------------------------


class ToolCallLoop:
    """Runs the bounded model/tool exchange for one user message.

    Example:
        >>> loop = ToolCallLoop(adapter, registry)
        >>> outcome = await loop.run(history, [ProviderMessage.user("hi")])
        >>> outcome.reply.text
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        registry: ToolRegistry,
        *,
        config: LoopConfig | None = None,
        approver: ToolApprover | None = None,
    ) -> None:
        self._adapter = adapter
        self._registry = registry
        self._config = config or LoopConfig()
        self._approver = approver

    @property
    def config(self) -> LoopConfig:
        return self._config

    async def run(
        self,
        history: Sequence[ProviderMessage],
        prompt_parts: Sequence[ProviderMessage],
        *,
        settings: GenerationSettings | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> LoopOutcome:
        """Drive the loop until a tool-free response or the turn ceiling.

        Args:
            history: Built conversation history, system prompt first.
            prompt_parts: Current prompt entries (context plus user text).
            settings: Sampling settings forwarded to the adapter.
            cancel_token: Token guarding every adapter call and tool invocation.

        Returns:
            ``ok`` with the reply (including a max-turns or late provider error
            turn), ``cancelled`` when the token fired, or ``error`` when the very
            first adapter call failed.
        """
        token = cancel_token or CancellationToken()
        run = _LoopRun(history=list(history), prompt_parts=list(prompt_parts))
        tool_defs = self._registry.list_all()
        started = time.perf_counter()

        try:
            while run.iterations < self._config.max_turns:
                run.iterations += 1
                run.state = LoopState.AWAITING_MODEL
                LOGGER.debug(
                    "Tool loop iteration %d/%d (%s)",
                    run.iterations,
                    self._config.max_turns,
                    self._adapter.model,
                )

                try:
                    response = await self._send(run, tool_defs, settings, token)
                except ProviderTransportError as exc:
                    if not run.turns:
                        LOGGER.error("Provider call failed before any reply: %s", exc)
                        return LoopOutcome(status="error", error=exc, final_state=run.state, iterations=run.iterations)
                    LOGGER.error("Provider call failed after %d turn(s): %s", len(run.turns), exc)
                    run.turns.append(Turn(error=str(exc)))
                    run.state = LoopState.DONE
                    break

                run.state = LoopState.MODEL_RESPONDED
                length_error = MAX_TOKENS_MESSAGE if response.finish_reason == "length" else None
                if length_error:
                    LOGGER.warning("Maximum number of tokens reached for this response")

                if not response.has_tool_calls:
                    run.turns.append(
                        Turn(
                            message=response.text,
                            error=length_error,
                            input_tokens=response.input_tokens,
                            output_tokens=response.output_tokens,
                        )
                    )
                    run.state = LoopState.DONE
                    break

                run.state = LoopState.EXECUTING_TOOLS
                records = await self._execute_tools(response.tool_calls, token)
                run.turns.append(
                    Turn(
                        message=response.text or None,
                        tool_calls=tuple(records),
                        error=length_error,
                        input_tokens=response.input_tokens,
                        output_tokens=response.output_tokens,
                    )
                )
                self._advance(run, response, records)
            else:
                LOGGER.warning("Tool loop reached max turns (%d)", self._config.max_turns)
                run.turns.append(Turn(error=MAX_TURNS_MESSAGE))
                run.state = LoopState.ERROR_MAX_TURNS
        except OperationCancelled as exc:
            LOGGER.info("Tool loop cancelled after %d iteration(s): %s", run.iterations, exc)
            return LoopOutcome(status="cancelled", error=exc, final_state=run.state, iterations=run.iterations)

        reply = ModelReply.from_turns(run.turns)
        LOGGER.debug(
            "Tool loop finished in %.1fms: %d turn(s), %d in / %d out tokens",
            (time.perf_counter() - started) * 1000,
            len(reply.turns),
            reply.input_tokens,
            reply.output_tokens,
        )
        return LoopOutcome(status="ok", reply=reply, final_state=run.state, iterations=run.iterations)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _send(
        self,
        run: _LoopRun,
        tool_defs: Sequence[Tool],
        settings: GenerationSettings | None,
        token: CancellationToken,
    ) -> TurnResponse:
        try:
            return await token.guard(
                self._adapter.send_turn(run.history, run.prompt_parts, tool_defs, settings=settings)
            )
        except (OperationCancelled, ProviderTransportError):
            raise
        except Exception as exc:
            raise ProviderTransportError(
                f"Error: Failed to generate response from {self._adapter.provider} - {exc}",
                provider=self._adapter.provider,
                cause=exc,
            ) from exc

    async def _execute_tools(
        self,
        requests: Sequence[ToolCallRequest],
        token: CancellationToken,
    ) -> list[ToolCallRecord]:
        records: list[ToolCallRecord] = []
        for request in requests:
            if self._approver is not None and not await token.guard(self._approver(request)):
                LOGGER.info("Tool call %s denied", request.tool_id)
                records.append(_denied_record(request))
                continue
            timeout = _effective_timeout(self._config.tool_timeout, token.remaining())
            LOGGER.info("Calling tool %s", request.tool_id)
            invocation = await token.guard(self._registry.invoke(request.tool_id, request.args, timeout=timeout))
            records.append(invocation.to_record(request.args, tool_call_id=request.call_id))
        return records

    @staticmethod
    def _advance(run: _LoopRun, response: TurnResponse, records: Sequence[ToolCallRecord]) -> None:
        """Fold the finished turn into history; tool results become the next prompt."""
        run.history.extend(run.prompt_parts)
        if response.text:
            run.history.append(ProviderMessage.assistant(response.text))
        run.history.extend(
            ProviderMessage.function_call(record.tool_id, record.args, record.tool_call_id) for record in records
        )
        run.prompt_parts = [
            ProviderMessage.function_result(record.tool_id, record.output, record.tool_call_id) for record in records
        ]


def _effective_timeout(configured: float | None, remaining: float | None) -> float | None:
    if configured is None:
        return remaining
    if remaining is None:
        return configured
    return min(configured, remaining)


def _denied_record(request: ToolCallRequest) -> ToolCallRecord:
    server_name, sep, tool_name = request.tool_id.partition(TOOL_ID_DELIMITER)
    if not sep:
        server_name, tool_name = "", request.tool_id
    return ToolCallRecord(
        server_name=server_name,
        tool_name=tool_name,
        args=dict(request.args),
        output=TOOL_DENIED_MESSAGE,
        error=TOOL_DENIED_MESSAGE,
        tool_call_id=request.call_id,
    )
