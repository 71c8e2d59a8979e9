"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Literal, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "Settings",
    "ProviderSettings",
    "ToolServerSettings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".agentcore"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTCORE_API_KEY": "api_key",
    "AGENTCORE_BASE_URL": "base_url",
    "AGENTCORE_PROVIDER": "provider",
    "AGENTCORE_MODEL": "model",
    "AGENTCORE_ORGANIZATION": "organization",
    "AGENTCORE_SYSTEM_PROMPT": "system_prompt",
    "AGENTCORE_TOOL_PERMISSION": "tool_permission",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTCORE_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTCORE_REQUEST_TIMEOUT": "request_timeout",
    "AGENTCORE_TEMPERATURE": "temperature",
    "AGENTCORE_TOP_P": "top_p",
    "AGENTCORE_TOOL_TIMEOUT": "tool_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTCORE_MAX_OUTPUT_TOKENS": "max_output_tokens",
    "AGENTCORE_MAX_RETRIES": "max_retries",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"
ToolServerType = Literal["stdio", "sse", "internal"]


@dataclass(slots=True)
class ProviderSettings:
    """Per-provider connection details overriding the top-level defaults."""

    api_key: str = ""
    base_url: str | None = None
    organization: str | None = None


@dataclass(slots=True)
class ToolServerSettings:
    """Configuration for one tool server.

    ``stdio`` servers are launched from ``command``/``args``; ``sse`` servers
    are reached at ``url``; ``internal`` servers expose the context store
    (``tool`` is ``rules`` or ``references``). ``permission_required`` is the
    server-wide approval default and ``tool_permissions`` overrides it per
    tool name.
    """

    name: str
    type: ToolServerType = "stdio"
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    disabled_tools: list[str] = field(default_factory=list)
    tool: str | None = None
    enabled: bool = True
    permission_required: bool = False
    tool_permissions: dict[str, bool] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ToolServerSettings:
        allowed = {item.name for item in fields(cls)}
        return cls(**{key: value for key, value in payload.items() if key in allowed})


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    provider: str = "openai"
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    system_prompt: str = "You are a helpful assistant."
    max_output_tokens: int = 1000
    temperature: float = 0.5
    top_p: float = 0.5
    max_tool_turns: int = 5
    tool_timeout: float = 30.0
    tool_permission: str = "tool"
    default_headers: dict[str, str] = field(default_factory=dict)
    providers: dict[str, ProviderSettings] = field(default_factory=dict)
    tool_servers: list[ToolServerSettings] = field(default_factory=list)
    rules: list[dict[str, Any]] = field(default_factory=list)
    references: list[dict[str, Any]] = field(default_factory=list)
    debug_logging: bool = False

    @property
    def default_model_id(self) -> str:
        """Model id in ``provider:model`` form."""

        return f"{self.provider}:{self.model}" if self.model else ""

    def provider_settings(self, provider: str) -> ProviderSettings:
        """Return connection details for ``provider``, falling back to the defaults."""

        configured = self.providers.get(provider)
        if provider == self.provider:
            return ProviderSettings(
                api_key=(configured.api_key if configured and configured.api_key else self.api_key),
                base_url=(configured.base_url if configured and configured.base_url else self.base_url),
                organization=(configured.organization if configured else None) or self.organization,
            )
        return configured or ProviderSettings()


class SecretProvider(ABC):
    """Interface for encrypting and decrypting sensitive strings."""

    name: str = "unknown"

    @abstractmethod
    def encrypt(self, secret: str) -> str:
        """Return an encoded representation of ``secret`` suitable for storage."""

    @abstractmethod
    def decrypt(self, token: str) -> str:
        """Return the plaintext representation of ``token``."""


class FernetSecretProvider(SecretProvider):
    """Secret provider that uses a symmetric Fernet key stored on disk."""

    name = "fernet"

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return token.decode("ascii")

    def decrypt(self, token: str) -> str:
        raw = self._get_fernet().decrypt(token.encode("ascii"))
        return raw.decode("utf-8")

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SecretVault:
    """Encrypts and decrypts API keys for settings persistence."""

    def __init__(self, *, key_path: Path | None = None, provider: SecretProvider | None = None) -> None:
        self._provider = provider or FernetSecretProvider(key_path)

    @property
    def strategy(self) -> str:
        return self._provider.name

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return f"{self._provider.name}:{self._provider.encrypt(secret)}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, payload = _split_token(token)
        if prefix not in (None, self._provider.name):
            LOGGER.warning("Unknown secret token prefix %s; returning ciphertext.", prefix)
            return token
        try:
            return self._provider.decrypt(payload)
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc


class SettingsStore:
    """Persistence adapter for :class:`Settings`.

    Settings live in a JSON file; API keys are stored encrypted. CLI overrides
    are applied on top of the file and ``AGENTCORE_*`` environment variables on
    top of both.
    """

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False

        if payload:
            plaintext_key, needs_migration = self._decrypt_api_key(
                payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None)
            )
            data = _filter_fields(payload)
            data["providers"] = self._load_providers(data.get("providers"))
            data["tool_servers"] = _load_tool_servers(data.get("tool_servers"))
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if plaintext_key:
                settings = replace(settings, api_key=plaintext_key)

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        body = json.dumps(self._serialize(settings), indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        ciphertext = self._vault.encrypt(api_key)
        if ciphertext:
            data[_API_KEY_FIELD] = ciphertext
        for provider in data["providers"].values():
            secret = provider.pop("api_key", "") or ""
            if secret:
                provider[_API_KEY_FIELD] = self._vault.encrypt(secret)
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}

    def _load_providers(self, payload: Any) -> dict[str, ProviderSettings]:
        if not isinstance(payload, Mapping):
            return {}
        providers: dict[str, ProviderSettings] = {}
        for name, entry in payload.items():
            if not isinstance(entry, Mapping):
                LOGGER.warning("Ignoring malformed provider settings for %s", name)
                continue
            api_key, _ = self._decrypt_api_key(entry.get(_API_KEY_FIELD), entry.get("api_key"))
            providers[name] = ProviderSettings(
                api_key=api_key,
                base_url=entry.get("base_url"),
                organization=entry.get("organization"),
            )
        return providers

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
        if isinstance(filtered.get("providers"), Mapping):
            filtered["providers"] = {
                name: entry if isinstance(entry, ProviderSettings) else ProviderSettings(**entry)
                for name, entry in filtered["providers"].items()
            }
        if isinstance(filtered.get("tool_servers"), list):
            filtered["tool_servers"] = [
                entry if isinstance(entry, ToolServerSettings) else ToolServerSettings.from_dict(entry)
                for entry in filtered["tool_servers"]
            ]
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    def _decrypt_api_key(self, ciphertext: str | None, legacy_plaintext: str | None) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected plaintext API key; migrating to encrypted storage.")
            return legacy_plaintext, True
        return "", False


def _split_token(token: str) -> tuple[str | None, str]:
    if ":" not in token:
        return None, token
    prefix, payload = token.split(":", 1)
    return (prefix or None), payload


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def _load_tool_servers(payload: Any) -> list[ToolServerSettings]:
    if not isinstance(payload, list):
        return []
    servers: list[ToolServerSettings] = []
    for entry in payload:
        if not isinstance(entry, Mapping) or not entry.get("name"):
            LOGGER.warning("Ignoring tool server entry without a name: %r", entry)
            continue
        servers.append(ToolServerSettings.from_dict(entry))
    return servers


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
