"""Async AI client wrapper built around OpenAI-compatible endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from openai.types.chat import ChatCompletion, ChatCompletionMessageParam, ChatCompletionToolParam
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import ProviderTransportError

LOGGER = logging.getLogger(__name__)

_RETRYABLE_ERRORS = (
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False
    provider: str = "openai"


class AIClient:
    """Async client issuing chat completions with retry semantics.

    Transient failures (connection errors, rate limits, timeouts and 5xx
    responses) are retried with exponential backoff. Whatever still fails after
    the final attempt is raised as :class:`ProviderTransportError`.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def complete_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        max_tokens: int | None = None,
        **extra_params: Any,
    ) -> ChatCompletion:
        """Run one non-streamed chat completion for the provided messages.

        Sampling arguments left as ``None`` are omitted so the endpoint applies
        its own defaults.

        Raises:
            ValueError: ``messages`` is empty.
            ProviderTransportError: The request still failed after retries.
        """

        payload: Dict[str, Any] = {"model": self._settings.model, "messages": self._coerce_messages(messages)}
        tool_list = list(tools or ())
        if tool_list:
            payload["tools"] = tool_list
        sampling = {"temperature": temperature, "top_p": top_p, "max_tokens": max_tokens}
        payload.update({key: value for key, value in sampling.items() if value is not None})
        payload.update(extra_params)
        LOGGER.debug(
            "Starting chat completion via %s with %s message(s)",
            self._settings.model,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        try:
            return await self._retrying()(self._client.chat.completions.create, **payload)
        except (APIError, httpx.HTTPError) as exc:
            raise ProviderTransportError(
                f"Error: Failed to generate response from {self._settings.provider} - {exc}",
                provider=self._settings.provider,
                cause=exc,
            ) from exc

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(_RETRYABLE_ERRORS) | retry_if_exception(_is_server_error),
        )

    def _coerce_messages(
        self, messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam]
    ) -> List[Dict[str, Any]]:
        normalized = [dict(message) for message in messages]
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


def _is_server_error(exc: BaseException) -> bool:
    return isinstance(exc, APIStatusError) and exc.status_code >= 500
