"""Chat session: the state of one conversation.

A session owns its ordered message history, the active provider adapter, the
active rule/reference sets and a ``last_sync_id`` version counter that strictly
increases on every mutation. ``handle_message`` is single flight per session:
concurrent calls queue on an asyncio lock.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Awaitable, Callable, Literal, Protocol, Sequence

from ...context.store import ContextStore
from ..ai_types import ProviderAdapter, ToolCallRequest
from ..errors import AgentError, ConfigurationError
from ..tools.context_tools import build_session_context_server
from ..tools.registry import ToolRegistry
from .cancellation import CancellationToken
from .curator import ActiveContext, ContextCurator
from .history import HistoryBuilder
from .tool_loop import LoopConfig, ToolCallLoop
from .types import (
    TOOL_PERMISSIONS,
    ChatMessage,
    ChatState,
    GenerationSettings,
    MessageUpdate,
    ModelReply,
    ProviderMessage,
)

__all__ = ["ChatSession", "AdapterFactory", "ApprovalCallback", "ApprovalDecision", "APP_NAME"]

LOGGER = logging.getLogger(__name__)

APP_NAME = "agentcore"

ApprovalDecision = Literal["allow-once", "allow-session", "deny"]
ApprovalCallback = Callable[[ToolCallRequest], Awaitable[ApprovalDecision]]


class AdapterFactory(Protocol):
    """Builds provider adapters from model identifiers."""

    def create(self, model_id: str) -> ProviderAdapter:
        ...


class ChatSession:
    """One conversation: history, active model, active context and version.

    Args:
        session_id: Identifier, unique within the owning manager.
        factory: Builds provider adapters for :meth:`switch_model`.
        store: Read-only rule/reference store.
        tools: Shared registry; the session registers its own servers in a child.
        model_id: Initial model; an unusable id leaves the session without a model.
        system_prompt: Prompt text or a callable fetched before every model call.
        settings: Sampling settings forwarded to the adapter.
        loop_config: Tool call loop configuration.
        approval: Asked before tool calls that need approval under
            ``settings.tool_permission``; sessions without one run tools
            unattended.
    """

    def __init__(
        self,
        session_id: str,
        *,
        factory: AdapterFactory,
        store: ContextStore,
        tools: ToolRegistry | None = None,
        model_id: str | None = None,
        system_prompt: str | Callable[[], str] = "",
        settings: GenerationSettings | None = None,
        loop_config: LoopConfig | None = None,
        approval: ApprovalCallback | None = None,
    ) -> None:
        self._id = session_id
        self._factory = factory
        self._store = store
        self._settings = settings or GenerationSettings()
        self._loop_config = loop_config or LoopConfig()
        self._approval = approval
        self._approved_tools: set[str] = set()
        self._context = ActiveContext()
        self._curator = ContextCurator(store)
        prompt_provider = system_prompt if callable(system_prompt) else (lambda: system_prompt)
        self._history = HistoryBuilder(prompt_provider, store=store)
        self._registry = ToolRegistry(parent=tools)
        self._registry.register(build_session_context_server(self))
        self._lock = asyncio.Lock()
        self._active_token: CancellationToken | None = None
        self._last_sync_id = 0
        self._closed = False

        self._adapter: ProviderAdapter | None = None
        self._current_model: str | None = None
        if model_id:
            try:
                self._adapter = factory.create(model_id)
                self._current_model = model_id
            except ConfigurationError as exc:
                LOGGER.warning("Session %s starts without a model: %s", session_id, exc)

        self._messages: list[ChatMessage] = [ChatMessage.system(self._welcome_text())]

        for reference in store.list_references():
            if reference.include == "always":
                self.add_reference(reference.name)
        for rule in store.list_rules():
            if rule.include == "always":
                self.add_rule(rule.name)

        LOGGER.info("Created chat session %s with model %s", session_id, self._current_model or "<none>")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self._id

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def current_model(self) -> str | None:
        return self._current_model

    @property
    def adapter(self) -> ProviderAdapter | None:
        return self._adapter

    @property
    def active_references(self) -> tuple[str, ...]:
        return tuple(self._context.references)

    @property
    def active_rules(self) -> tuple[str, ...]:
        return tuple(self._context.rules)

    @property
    def last_sync_id(self) -> int:
        return self._last_sync_id

    @property
    def settings(self) -> GenerationSettings:
        return self._settings

    @property
    def store(self) -> ContextStore:
        return self._store

    @property
    def tools(self) -> ToolRegistry:
        """Registry visible to this session (session servers plus shared ones)."""
        return self._registry

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def closed(self) -> bool:
        return self._closed

    def get_state(self) -> ChatState:
        return ChatState(
            session_id=self._id,
            messages=tuple(self._messages),
            current_model=self._current_model,
            active_references=self.active_references,
            active_rules=self.active_rules,
            last_sync_id=self._last_sync_id,
            settings=self._settings,
        )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def handle_message(
        self,
        text: str,
        *,
        cancel_token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> MessageUpdate:
        """Process one user message through curation, history and the tool loop.

        Mentions are curated into a working copy of the active sets and merged
        only when the reply is committed. On success the raw user message and
        the assistant reply are appended and ``last_sync_id`` is bumped once.
        On failure or cancellation nothing is committed; if tool calls changed
        the active sets meanwhile they are restored and ``last_sync_id`` is
        bumped again.

        Raises:
            ConfigurationError: No model is selected.
            ProviderTransportError: The first provider call failed.
            OperationCancelled: ``cancel_token`` fired or ``timeout`` elapsed.
        """
        async with self._lock:
            if self._closed:
                raise AgentError("Session is closed", session_id=self._id)
            if self._adapter is None:
                raise ConfigurationError("No model selected", session_id=self._id)
            if cancel_token is not None:
                token = cancel_token.child(timeout=timeout)
            else:
                token = CancellationToken(timeout=timeout)
            self._active_token = token
            snapshot = self._context.snapshot()
            working = ActiveContext(list(self._context.references), list(self._context.rules))
            user_message = ChatMessage.user(text)
            try:
                cleaned, _ = self._curator.curate(working, text)
                history = self._history.build([*self._messages, user_message])
                prompt_parts = [
                    *self._history.context_messages(working.references, working.rules),
                    ProviderMessage.user(cleaned),
                ]
                LOGGER.info("Session %s generating response with %s", self._id, self._current_model)
                loop = ToolCallLoop(
                    self._adapter,
                    self._registry,
                    config=self._loop_config,
                    approver=self._approve_tool if self._approval is not None else None,
                )
                outcome = await loop.run(history, prompt_parts, settings=self._settings, cancel_token=token)
            except BaseException:
                self._rollback(snapshot)
                raise
            finally:
                self._active_token = None
                if cancel_token is not None:
                    cancel_token.detach(token)

            if outcome.reply is None or outcome.error is not None:
                self._rollback(snapshot)
                error = outcome.error or AgentError("No reply was produced")
                if isinstance(error, AgentError):
                    error.session_id = self._id
                raise error
            self._merge_mentions(snapshot, working)
            return self._commit(user_message, outcome.reply)

    def _merge_mentions(self, snapshot: tuple[tuple[str, ...], tuple[str, ...]], working: ActiveContext) -> None:
        references, rules = snapshot
        for name in working.references:
            if name not in references:
                self._context.add_reference(name)
        for name in working.rules:
            if name not in rules:
                self._context.add_rule(name)

    def _rollback(self, snapshot: tuple[tuple[str, ...], tuple[str, ...]]) -> None:
        if self._context.snapshot() == snapshot:
            return
        self._context.restore(snapshot)
        self._last_sync_id += 1
        LOGGER.debug("Session %s restored active context (sync %d)", self._id, self._last_sync_id)

    def _commit(self, user_message: ChatMessage, reply: ModelReply) -> MessageUpdate:
        reply_message = ChatMessage.assistant(reply)
        self._messages.extend((user_message, reply_message))
        self._last_sync_id += 1
        LOGGER.debug(
            "Session %s committed reply with %d turn(s) (sync %d)",
            self._id,
            len(reply.turns),
            self._last_sync_id,
        )
        return self._update((user_message, reply_message))

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel the in-flight ``handle_message`` call, if any."""
        token = self._active_token
        if token is None:
            return False
        token.cancel(reason)
        return True

    # ------------------------------------------------------------------
    # Tool approval
    # ------------------------------------------------------------------

    def is_tool_approval_required(self, tool_id: str) -> bool:
        """Return whether calling ``tool_id`` needs the user's approval.

        Tools approved for the session never do. Otherwise ``always`` and
        ``never`` decide outright and ``tool`` defers to the server config.
        """
        if tool_id in self._approved_tools:
            return False
        mode = self._settings.tool_permission
        if mode == "always":
            return True
        if mode == "never":
            return False
        return self._registry.permission_required(tool_id)

    async def _approve_tool(self, request: ToolCallRequest) -> bool:
        if self._approval is None or not self.is_tool_approval_required(request.tool_id):
            return True
        decision = await self._approval(request)
        if decision == "allow-session":
            self._approved_tools.add(request.tool_id)
            LOGGER.info("Session %s approved tool %s for the session", self._id, request.tool_id)
            return True
        if decision == "allow-once":
            return True
        LOGGER.info("Session %s denied tool %s", self._id, request.tool_id)
        return False

    # ------------------------------------------------------------------
    # Model
    # ------------------------------------------------------------------

    async def switch_model(self, model_id: str) -> MessageUpdate:
        """Replace the adapter for subsequent messages.

        On :class:`ConfigurationError` the previous adapter stays active, the
        history is untouched and an update carrying ``error`` is returned.
        """
        async with self._lock:
            try:
                adapter = self._factory.create(model_id)
            except ConfigurationError as exc:
                LOGGER.error("Session %s failed to switch model to %s: %s", self._id, model_id, exc)
                return self._update(
                    (),
                    error=f"Failed to create LLM instance for model {model_id}, error: {exc}",
                )
            previous, self._adapter = self._adapter, adapter
            self._current_model = model_id
            message = ChatMessage.system(f"Switched to the {adapter.provider} provider and the {adapter.model} model")
            self._messages.append(message)
            self._last_sync_id += 1
            LOGGER.info("Session %s switched model to %s", self._id, model_id)
        if previous is not None and previous is not adapter:
            await _close_adapter(previous)
        return self._update((message,))

    async def clear_model(self) -> MessageUpdate:
        """Drop the active adapter; later messages fail until a model is chosen."""
        async with self._lock:
            previous, self._adapter = self._adapter, None
            self._current_model = None
            message = ChatMessage.system("Cleared model, no model currently active")
            self._messages.append(message)
            self._last_sync_id += 1
        if previous is not None:
            await _close_adapter(previous)
        return self._update((message,))

    async def clear(self) -> MessageUpdate:
        """Reset the history to a fresh welcome message."""
        async with self._lock:
            message = ChatMessage.system(self._welcome_text())
            self._messages = [message]
            self._last_sync_id += 1
        return self._update((message,))

    def update_settings(
        self,
        *,
        max_output_tokens: int | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        tool_permission: str | None = None,
    ) -> GenerationSettings:
        """Update sampling and tool permission settings for subsequent messages."""
        updates: dict[str, object] = {}
        if max_output_tokens is not None:
            if max_output_tokens < 1:
                raise ValueError("max_output_tokens must be positive")
            updates["max_output_tokens"] = int(max_output_tokens)
        if temperature is not None:
            if not 0.0 <= temperature <= 2.0:
                raise ValueError("temperature must be between 0 and 2")
            updates["temperature"] = float(temperature)
        if top_p is not None:
            if not 0.0 <= top_p <= 1.0:
                raise ValueError("top_p must be between 0 and 1")
            updates["top_p"] = float(top_p)
        if tool_permission is not None:
            if tool_permission not in TOOL_PERMISSIONS:
                raise ValueError(f"tool_permission must be one of: {', '.join(TOOL_PERMISSIONS)}")
            updates["tool_permission"] = tool_permission
        if updates:
            self._settings = dataclasses.replace(self._settings, **updates)
            LOGGER.info("Session %s updated settings: %s", self._id, updates)
        return self._settings

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def add_reference(self, name: str) -> bool:
        """Activate a known reference; ``False`` if unknown or already active."""
        if name in self._context.references:
            return False
        if self._store.get_reference(name) is None:
            LOGGER.warning("Attempted to add non-existent reference: %s", name)
            return False
        self._context.add_reference(name)
        self._last_sync_id += 1
        LOGGER.info("Added reference '%s' to chat session %s", name, self._id)
        return True

    def remove_reference(self, name: str) -> bool:
        if not self._context.remove_reference(name):
            return False
        self._last_sync_id += 1
        LOGGER.info("Removed reference '%s' from chat session %s", name, self._id)
        return True

    def add_rule(self, name: str) -> bool:
        """Activate a known rule; ``False`` if unknown or already active."""
        if name in self._context.rules:
            return False
        if self._store.get_rule(name) is None:
            LOGGER.warning("Attempted to add non-existent rule: %s", name)
            return False
        self._context.add_rule(name)
        self._last_sync_id += 1
        LOGGER.info("Added rule '%s' to chat session %s", name, self._id)
        return True

    def remove_rule(self, name: str) -> bool:
        if not self._context.remove_rule(name):
            return False
        self._last_sync_id += 1
        LOGGER.info("Removed rule '%s' from chat session %s", name, self._id)
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Cancel in-flight work and release session-scoped resources."""
        if self._closed:
            return
        self._closed = True
        self.cancel("session closed")
        adapter, self._adapter = self._adapter, None
        try:
            await self._registry.aclose()
        finally:
            if adapter is not None:
                await _close_adapter(adapter)
        LOGGER.info("Closed chat session %s", self._id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _welcome_text(self) -> str:
        if self._adapter is None:
            return f"Welcome to {APP_NAME}! No model selected"
        return (
            f"Welcome to {APP_NAME}! You are using the {self._adapter.provider} provider "
            f"and the {self._adapter.model} model"
        )

    def _update(self, updates: Sequence[ChatMessage], *, error: str | None = None) -> MessageUpdate:
        return MessageUpdate(
            updates=tuple(updates),
            last_sync_id=self._last_sync_id,
            active_references=self.active_references,
            active_rules=self.active_rules,
            error=error,
        )

    def __repr__(self) -> str:
        return f"ChatSession(id={self._id!r}, model={self._current_model!r}, sync={self._last_sync_id})"


async def _close_adapter(adapter: ProviderAdapter) -> None:
    try:
        await adapter.aclose()
    except Exception:
        LOGGER.warning("Failed to close provider adapter %s", adapter.provider, exc_info=True)
