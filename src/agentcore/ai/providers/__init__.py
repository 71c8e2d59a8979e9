"""Provider adapters and the factory that builds them from model ids."""

from .echo import EchoAdapter
from .factory import ModelSpec, ProviderFactory
from .openai_provider import OpenAIAdapter

__all__ = ["EchoAdapter", "ModelSpec", "OpenAIAdapter", "ProviderFactory"]
