"""Conversation orchestration: value types, context curation and history building.

The tool call loop, chat session and session manager live in their own
modules (``tool_loop``, ``chat_session``, ``session_manager``) and are imported
from there, since they depend on the tool registry.
"""

from .cancellation import CancellationToken
from .curator import ActiveContext, ContextCurator
from .history import HistoryBuilder
from .types import (
    TOOL_ID_DELIMITER,
    ChatMessage,
    ChatState,
    GenerationSettings,
    MessageUpdate,
    ModelReply,
    ProviderMessage,
    Tool,
    ToolCallRecord,
    Turn,
)

__all__ = [
    "ActiveContext",
    "CancellationToken",
    "ChatMessage",
    "ChatState",
    "ContextCurator",
    "GenerationSettings",
    "HistoryBuilder",
    "MessageUpdate",
    "ModelReply",
    "ProviderMessage",
    "TOOL_ID_DELIMITER",
    "Tool",
    "ToolCallRecord",
    "Turn",
]
