"""Protocol-facing session lifecycle.

Maps external session ids to :class:`ChatSession` instances for a transport
such as an ACP server. Every protocol session owns exactly one chat session;
they are created and destroyed together.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Literal

from ..errors import AgentError, OperationCancelled
from .cancellation import CancellationToken
from .chat_session import ChatSession
from .tool_loop import MAX_TOKENS_MESSAGE, MAX_TURNS_MESSAGE
from .types import ChatMessage, MessageUpdate

__all__ = [
    "Session",
    "SessionManager",
    "SessionNotFoundError",
    "PromptResponse",
    "StopReason",
    "new_session_id",
]

LOGGER = logging.getLogger(__name__)

StopReason = Literal["end_turn", "max_tokens", "max_turn_requests", "cancelled"]

ChatSessionFactory = Callable[[str], ChatSession]


class SessionNotFoundError(AgentError):
    """Raised when a prompt targets an unknown session id."""


def new_session_id() -> str:
    """Return an id of the form ``session-<epoch ms>-<random>``."""
    return f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


@dataclass(slots=True, frozen=True)
class PromptResponse:
    """Result of :meth:`SessionManager.prompt`."""

    updates: tuple[ChatMessage, ...]
    stop_reason: StopReason
    last_sync_id: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "updates": [message.to_dict() for message in self.updates],
            "stopReason": self.stop_reason,
            "lastSyncId": self.last_sync_id,
        }


class Session:
    """A protocol session and the chat session it owns."""

    def __init__(self, session_id: str, chat_session: ChatSession) -> None:
        self.id = session_id
        self.chat_session = chat_session

    async def aclose(self) -> None:
        await self.chat_session.aclose()
        LOGGER.debug("Closed protocol session %s", self.id)

    def __repr__(self) -> str:
        return f"Session(id={self.id!r})"


class SessionManager:
    """Creates, looks up and closes protocol sessions.

    The id map is guarded by a re-entrant lock so several protocol connections
    may create, fetch and close sessions concurrently.

    Args:
        chat_session_factory: Builds the chat session for a new session id.
    """

    def __init__(self, chat_session_factory: ChatSessionFactory) -> None:
        self._factory = chat_session_factory
        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()

    def create_session(self, session_id: str | None = None) -> Session:
        """Create a session, or return the existing one for ``session_id``."""
        session_id = session_id or new_session_id()
        with self._lock:
            existing = self._sessions.get(session_id)
            if existing is not None:
                LOGGER.warning("Session %s already exists, reusing existing session", session_id)
                return existing
            session = Session(session_id, self._factory(session_id))
            self._sessions[session_id] = session
        LOGGER.info("Created new session: %s", session_id)
        return session

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def list_sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    async def close_session(self, session_id: str) -> None:
        """Dispose the session and its chat session; unknown ids are ignored."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return
        await session.aclose()
        LOGGER.info("Closed session: %s", session_id)

    async def close_all_sessions(self) -> list[Exception]:
        """Close every session, continuing past failures.

        Returns:
            The exceptions raised while closing, in session order.
        """
        with self._lock:
            session_ids = list(self._sessions)
        errors: list[Exception] = []
        for session_id in session_ids:
            try:
                await self.close_session(session_id)
            except Exception as exc:
                LOGGER.error("Failed to close session %s: %s", session_id, exc, exc_info=True)
                errors.append(exc)
        if errors:
            LOGGER.warning("Closed all sessions with %d failure(s)", len(errors))
        return errors

    async def prompt(
        self,
        session_id: str,
        prompt_text: str,
        *,
        cancel_token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> PromptResponse:
        """Run ``prompt_text`` through the session's chat session.

        Raises:
            SessionNotFoundError: ``session_id`` is unknown.
            AgentError: Configuration or provider failures from the chat session.
        """
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}", session_id=session_id)
        chat = session.chat_session
        try:
            update = await chat.handle_message(prompt_text, cancel_token=cancel_token, timeout=timeout)
        except OperationCancelled as exc:
            LOGGER.info("Prompt for session %s cancelled: %s", session_id, exc)
            return PromptResponse(updates=(), stop_reason="cancelled", last_sync_id=chat.last_sync_id)
        return PromptResponse(
            updates=update.updates,
            stop_reason=_stop_reason(update),
            last_sync_id=update.last_sync_id,
        )

    def cancel(self, session_id: str) -> bool:
        """Cancel the in-flight prompt for ``session_id``."""
        session = self.get_session(session_id)
        if session is None:
            return False
        cancelled = session.chat_session.cancel("cancelled by client")
        if cancelled:
            LOGGER.info("Session %s cancelled by client", session_id)
        return cancelled


def _stop_reason(update: MessageUpdate) -> StopReason:
    reply = update.model_reply
    last_turn = reply.last_turn if reply is not None else None
    if last_turn is not None and last_turn.error == MAX_TURNS_MESSAGE:
        return "max_turn_requests"
    if last_turn is not None and last_turn.error == MAX_TOKENS_MESSAGE:
        return "max_tokens"
    return "end_turn"
