"""Core type definitions for the conversation engine.

This module defines the dataclasses that flow between the curator, history
builder, tool call loop and chat session. Records produced by the loop are
frozen so they can be shared safely between the session history and the
updates handed back to callers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

__all__ = [
    # Tool surface
    "Tool",
    "ToolCallRecord",
    # Replies
    "Turn",
    "ModelReply",
    # Session messages
    "ChatRole",
    "ChatMessage",
    "ProviderRole",
    "ProviderMessage",
    # Session results
    "GenerationSettings",
    "ToolPermission",
    "TOOL_PERMISSIONS",
    "MessageUpdate",
    "ChatState",
    "TOOL_ID_DELIMITER",
]

TOOL_ID_DELIMITER = "_"

ToolPermission = Literal["always", "never", "tool"]
TOOL_PERMISSIONS: tuple[str, ...] = ("always", "never", "tool")


# -----------------------------------------------------------------------------
# Helper
# -----------------------------------------------------------------------------


def _now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# -----------------------------------------------------------------------------
# Tool Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Tool:
    """A named, schema-described callable exposed by a tool server.

    Attributes:
        name: Tool name, unique within its owning server.
        description: Human readable summary offered to the model.
        parameters: JSON-Schema object describing the arguments.
    """

    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def namespaced(self, server_name: str) -> Tool:
        """Return a copy named ``{server_name}_{name}`` for presentation to a model."""
        return Tool(
            name=f"{server_name}{TOOL_ID_DELIMITER}{self.name}",
            description=self.description,
            parameters=self.parameters,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": dict(self.parameters),
        }


@dataclass(slots=True, frozen=True)
class ToolCallRecord:
    """Record of one executed tool call.

    Attributes:
        server_name: Server the call was routed to (may be unresolved).
        tool_name: Base tool name without the server prefix.
        args: Arguments passed to the tool.
        output: Text produced by the tool, or the error text.
        elapsed_time_ms: Wall-clock duration of the invocation.
        error: Error string when resolution or execution failed.
        tool_call_id: Provider-issued id correlating call and result.
    """

    server_name: str
    tool_name: str
    args: Mapping[str, Any] = field(default_factory=dict)
    output: str = ""
    elapsed_time_ms: float = 0.0
    error: str | None = None
    tool_call_id: str | None = None

    @property
    def tool_id(self) -> str:
        if not self.server_name:
            return self.tool_name
        return f"{self.server_name}{TOOL_ID_DELIMITER}{self.tool_name}"

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "serverName": self.server_name,
            "toolName": self.tool_name,
            "args": dict(self.args),
            "output": self.output,
            "elapsedTimeMs": self.elapsed_time_ms,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


# -----------------------------------------------------------------------------
# Reply Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Turn:
    """One model response cycle within the tool call loop."""

    message: str | None = None
    tool_calls: tuple[ToolCallRecord, ...] = ()
    error: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.message is not None:
            payload["message"] = self.message
        if self.tool_calls:
            payload["toolCalls"] = [record.to_dict() for record in self.tool_calls]
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True, frozen=True)
class ModelReply:
    """The complete multi-turn result of processing a single user message.

    Attributes:
        turns: Ordered turns produced by the loop.
        timestamp: Epoch milliseconds when the reply was produced.
        input_tokens: Prompt tokens summed over all turns.
        output_tokens: Completion tokens summed over all turns.
    """

    turns: tuple[Turn, ...] = ()
    timestamp: int = field(default_factory=_now_ms)
    input_tokens: int = 0
    output_tokens: int = 0

    @classmethod
    def from_turns(cls, turns: Sequence[Turn], *, timestamp: int | None = None) -> ModelReply:
        """Build a reply, summing token usage over ``turns``."""
        return cls(
            turns=tuple(turns),
            timestamp=_now_ms() if timestamp is None else timestamp,
            input_tokens=sum(turn.input_tokens for turn in turns),
            output_tokens=sum(turn.output_tokens for turn in turns),
        )

    @property
    def last_turn(self) -> Turn | None:
        return self.turns[-1] if self.turns else None

    @property
    def text(self) -> str:
        """Join every turn message, skipping empty ones."""
        return "\n\n".join(turn.message for turn in self.turns if turn.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "timestamp": self.timestamp,
            "turns": [turn.to_dict() for turn in self.turns],
        }


# -----------------------------------------------------------------------------
# Message Types
# -----------------------------------------------------------------------------

ChatRole = Literal["system", "user", "assistant", "error"]


@dataclass(slots=True, frozen=True)
class ChatMessage:
    """Stored conversation entry.

    Non-assistant messages carry plain ``content``; assistant messages embed the
    :class:`ModelReply` produced for the preceding user message.
    """

    role: ChatRole
    content: str = ""
    model_reply: ModelReply | None = None

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role="user", content=content)

    @classmethod
    def error(cls, content: str) -> ChatMessage:
        return cls(role="error", content=content)

    @classmethod
    def assistant(cls, reply: ModelReply) -> ChatMessage:
        return cls(role="assistant", model_reply=reply)

    def to_dict(self) -> dict[str, Any]:
        if self.role == "assistant" and self.model_reply is not None:
            return {"role": self.role, "modelReply": self.model_reply.to_dict()}
        return {"role": self.role, "content": self.content}


ProviderRole = Literal["system", "user", "assistant", "function_call", "function_result"]


@dataclass(slots=True, frozen=True)
class ProviderMessage:
    """Provider-agnostic history entry consumed by adapters.

    Attributes:
        role: Entry role; ``function_call`` and ``function_result`` carry tool data.
        content: Text for plain entries, tool output for function results.
        tool_name: Namespaced tool id for function entries.
        args: Arguments of a function call.
        tool_call_id: Id correlating a function call with its result.
    """

    role: ProviderRole
    content: str = ""
    tool_name: str | None = None
    args: Mapping[str, Any] | None = None
    tool_call_id: str | None = None

    @classmethod
    def system(cls, content: str) -> ProviderMessage:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> ProviderMessage:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> ProviderMessage:
        return cls(role="assistant", content=content)

    @classmethod
    def function_call(
        cls,
        tool_name: str,
        args: Mapping[str, Any] | None = None,
        tool_call_id: str | None = None,
    ) -> ProviderMessage:
        return cls(
            role="function_call",
            tool_name=tool_name,
            args=dict(args or {}),
            tool_call_id=tool_call_id,
        )

    @classmethod
    def function_result(
        cls,
        tool_name: str,
        output: str,
        tool_call_id: str | None = None,
    ) -> ProviderMessage:
        return cls(
            role="function_result",
            content=output,
            tool_name=tool_name,
            tool_call_id=tool_call_id,
        )


# -----------------------------------------------------------------------------
# Session Results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class GenerationSettings:
    """Per-session sampling settings forwarded to the provider adapter.

    ``tool_permission`` decides which tool calls an interactive session asks
    the user to approve: ``always``, ``never`` or ``tool`` (per server config).
    """

    max_output_tokens: int = 1000
    temperature: float = 0.5
    top_p: float = 0.5
    tool_permission: ToolPermission = "tool"

    def to_dict(self) -> dict[str, Any]:
        return {
            "maxOutputTokens": self.max_output_tokens,
            "temperature": self.temperature,
            "topP": self.top_p,
            "toolPermission": self.tool_permission,
        }


@dataclass(slots=True, frozen=True)
class MessageUpdate:
    """Result of a session mutation handed back to the caller.

    Attributes:
        updates: Messages appended to the history by this call.
        last_sync_id: Session version after the call.
        active_references: Active reference names after the call.
        active_rules: Active rule names after the call.
        error: Set when the operation failed without mutating history.
    """

    updates: tuple[ChatMessage, ...]
    last_sync_id: int
    active_references: tuple[str, ...] = ()
    active_rules: tuple[str, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def model_reply(self) -> ModelReply | None:
        for message in reversed(self.updates):
            if message.model_reply is not None:
                return message.model_reply
        return None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "updates": [message.to_dict() for message in self.updates],
            "lastSyncId": self.last_sync_id,
            "references": list(self.active_references),
            "rules": list(self.active_rules),
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True, frozen=True)
class ChatState:
    """Read-only snapshot of a chat session."""

    session_id: str
    messages: tuple[ChatMessage, ...]
    current_model: str | None
    active_references: tuple[str, ...]
    active_rules: tuple[str, ...]
    last_sync_id: int
    settings: GenerationSettings = field(default_factory=GenerationSettings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.session_id,
            "messages": [message.to_dict() for message in self.messages],
            "currentModel": self.current_model,
            "references": list(self.active_references),
            "rules": list(self.active_rules),
            "lastSyncId": self.last_sync_id,
            **self.settings.to_dict(),
        }
