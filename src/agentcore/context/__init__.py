"""Rules and references that can be injected into a conversation."""

from .store import ContextStore, InMemoryContextStore, Reference, Rule

__all__ = ["ContextStore", "InMemoryContextStore", "Reference", "Rule"]
