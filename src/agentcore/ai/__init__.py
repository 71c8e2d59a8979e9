"""AI client, provider adapters, orchestration and tool wiring."""

from .client import AIClient, ClientSettings
from .errors import AgentError, ConfigurationError, OperationCancelled, ProviderTransportError

__all__ = [
    "AIClient",
    "ClientSettings",
    "AgentError",
    "ConfigurationError",
    "OperationCancelled",
    "ProviderTransportError",
]
