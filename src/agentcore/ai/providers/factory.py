"""Builds provider adapters from ``provider:model`` identifiers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict

from ...services.settings import Settings
from ..ai_types import ProviderAdapter
from ..client import AIClient, ClientSettings
from ..errors import ConfigurationError
from .openai_provider import OpenAIAdapter
from .echo import EchoAdapter

__all__ = ["ModelSpec", "ProviderFactory", "KNOWN_PROVIDERS"]

LOGGER = logging.getLogger(__name__)

_OLLAMA_BASE_URL = "http://localhost:11434/v1"


@dataclass(slots=True, frozen=True)
class ModelSpec:
    """A parsed model identifier."""

    provider: str
    model: str

    @property
    def model_id(self) -> str:
        return f"{self.provider}:{self.model}"

    @classmethod
    def parse(cls, model_id: str, *, default_provider: str = "openai") -> ModelSpec:
        """Parse ``provider:model``; a bare ``model`` uses ``default_provider``.

        Raises:
            ConfigurationError: The id is empty or names no model.
        """
        text = (model_id or "").strip()
        if not text:
            raise ConfigurationError("Model id must not be empty", model_id=model_id)
        provider, sep, model = text.partition(":")
        if not sep:
            provider, model = default_provider, text
        provider = provider.strip().lower()
        model = model.strip()
        if not provider or not model:
            raise ConfigurationError(f"Invalid model id '{model_id}'", model_id=model_id)
        return cls(provider=provider, model=model)


class ProviderFactory:
    """Creates adapters using connection details from :class:`Settings`.

    Supported providers are ``openai``, ``ollama`` (an OpenAI-compatible local
    endpoint that needs no key) and ``test``, the offline echo adapter.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._builders: Dict[str, Callable[[ModelSpec], ProviderAdapter]] = {
            "openai": self._build_openai,
            "ollama": self._build_ollama,
            "test": self._build_test,
        }

    @property
    def providers(self) -> list[str]:
        return sorted(self._builders)

    def parse(self, model_id: str) -> ModelSpec:
        return ModelSpec.parse(model_id, default_provider=self._settings.provider)

    def create(self, model_id: str) -> ProviderAdapter:
        """Build an adapter for ``model_id``.

        Raises:
            ConfigurationError: Unknown provider, malformed id or missing credentials.
        """
        spec = self.parse(model_id)
        builder = self._builders.get(spec.provider)
        if builder is None:
            raise ConfigurationError(f"Unknown provider '{spec.provider}'", model_id=model_id)
        adapter = builder(spec)
        LOGGER.info("Created %s adapter for model %s", spec.provider, spec.model)
        return adapter

    def _client_settings(self, spec: ModelSpec, *, api_key: str, base_url: str) -> ClientSettings:
        provider = self._settings.provider_settings(spec.provider)
        return ClientSettings(
            base_url=base_url,
            api_key=api_key,
            model=spec.model,
            organization=provider.organization,
            request_timeout=self._settings.request_timeout,
            max_retries=self._settings.max_retries,
            retry_min_seconds=self._settings.retry_min_seconds,
            retry_max_seconds=self._settings.retry_max_seconds,
            default_headers=self._settings.default_headers or None,
            debug_logging=self._settings.debug_logging,
            provider=spec.provider,
        )

    def _build_openai(self, spec: ModelSpec) -> ProviderAdapter:
        provider = self._settings.provider_settings(spec.provider)
        if not provider.api_key:
            raise ConfigurationError(
                f"Missing API key for provider '{spec.provider}'",
                model_id=spec.model_id,
            )
        settings = self._client_settings(
            spec,
            api_key=provider.api_key,
            base_url=provider.base_url or "https://api.openai.com/v1",
        )
        return OpenAIAdapter(AIClient(settings), provider=spec.provider)

    def _build_ollama(self, spec: ModelSpec) -> ProviderAdapter:
        provider = self._settings.provider_settings(spec.provider)
        settings = self._client_settings(
            spec,
            api_key=provider.api_key or "ollama",
            base_url=provider.base_url or _OLLAMA_BASE_URL,
        )
        return OpenAIAdapter(AIClient(settings), provider=spec.provider)

    @staticmethod
    def _build_test(spec: ModelSpec) -> ProviderAdapter:
        return EchoAdapter(provider=spec.provider, model=spec.model)


KNOWN_PROVIDERS = ("openai", "ollama", "test")
