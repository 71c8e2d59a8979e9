"""Cancellation token threaded through provider calls and tool invocations."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, Awaitable, TypeVar

from ..errors import OperationCancelled

__all__ = ["CancellationToken"]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Explicit cancel flag plus an optional monotonic deadline.

    ``cancel()`` may be called from any thread. Awaitables wrapped with
    :meth:`guard` are cancelled as soon as the token fires or the deadline
    passes, and :class:`~agentcore.ai.errors.OperationCancelled` is raised in
    their place.
    """

    def __init__(self, *, timeout: float | None = None) -> None:
        self._deadline = None if timeout is None else time.monotonic() + max(0.0, float(timeout))
        self._cancelled = False
        self._reason = ""
        self._lock = threading.Lock()
        self._event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._children: list[CancellationToken] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def deadline(self) -> float | None:
        """Deadline on the ``time.monotonic`` clock, if any."""
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self._cancelled or self.expired

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def reason(self) -> str:
        if self._cancelled:
            return self._reason
        return "deadline" if self.expired else ""

    def remaining(self) -> float | None:
        """Seconds left before the deadline, ``None`` when unbounded."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the token; idempotent."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self._reason = reason
            event, loop = self._event, self._loop
            children = list(self._children)
        LOGGER.debug("Cancellation requested (%s)", reason)
        for child in children:
            child.cancel(reason)
        if event is None or loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            event.set()
        else:
            loop.call_soon_threadsafe(event.set)

    def child(self, *, timeout: float | None = None) -> CancellationToken:
        """Return a token cancelled with this one, bounded by both deadlines."""
        token = CancellationToken(timeout=timeout)
        if self._deadline is not None and (token._deadline is None or self._deadline < token._deadline):
            token._deadline = self._deadline
        with self._lock:
            self._children.append(token)
            cancelled, reason = self._cancelled, self._reason
        if cancelled:
            token.cancel(reason)
        return token

    def detach(self, child: CancellationToken) -> None:
        """Stop propagating cancellation to ``child``; unknown tokens are ignored."""
        with self._lock:
            try:
                self._children.remove(child)
            except ValueError:
                pass

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise self._error()

    # ------------------------------------------------------------------
    # Guarding
    # ------------------------------------------------------------------

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        Raises:
            OperationCancelled: If the token is cancelled or the deadline passes
                before ``awaitable`` completes. The awaitable's task is cancelled
                and its eventual result discarded.
        """
        if self.cancelled:
            _close_awaitable(awaitable)
            raise self._error()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event_for_loop().wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        task.add_done_callback(_discard_result)
        raise self._error()

    def _event_for_loop(self) -> asyncio.Event:
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._event is None or self._loop is not loop:
                self._event = asyncio.Event()
                self._loop = loop
                if self._cancelled:
                    self._event.set()
            return self._event

    def _error(self) -> OperationCancelled:
        # Only an elapsed wait timeout reaches here without a reason.
        reason = self.reason or "deadline"
        if reason == "deadline":
            return OperationCancelled("Operation timed out", reason="deadline")
        message = "Operation cancelled" if reason == "cancelled" else f"Operation cancelled ({reason})"
        return OperationCancelled(message, reason=reason)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled}, remaining={self.remaining()})"


def _discard_result(task: asyncio.Future[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        LOGGER.debug("Discarded failure from interrupted operation: %s", exc)


def _close_awaitable(awaitable: Awaitable[Any]) -> None:
    close = getattr(awaitable, "close", None)
    if callable(close):
        close()
