"""Rule and reference records plus the read-only store contract."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Iterable, Literal, Mapping, Protocol, Sequence, runtime_checkable

__all__ = [
    "IncludeMode",
    "Rule",
    "Reference",
    "ContextStore",
    "InMemoryContextStore",
    "is_valid_name",
    "sort_by_priority",
]

LOGGER = logging.getLogger(__name__)

IncludeMode = Literal["always", "manual", "agent"]

_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
_INCLUDE_MODES = ("always", "manual", "agent")
MAX_PRIORITY_LEVEL = 999


def is_valid_name(name: str) -> bool:
    """Return ``True`` when ``name`` is a legal rule/reference name."""
    return bool(name) and _NAME_RE.match(name) is not None


@dataclass(slots=True, frozen=True)
class _ContextItem:
    name: str
    description: str = ""
    priority_level: int = 500
    enabled: bool = True
    text: str = ""
    include: IncludeMode = "manual"

    def __post_init__(self) -> None:
        if not is_valid_name(self.name):
            raise ValueError(f"Invalid name '{self.name}': only letters, digits, '_' and '-' are allowed")
        if not 0 <= int(self.priority_level) <= MAX_PRIORITY_LEVEL:
            raise ValueError(f"priority_level must be between 0 and {MAX_PRIORITY_LEVEL}")
        if self.include not in _INCLUDE_MODES:
            raise ValueError(f"include must be one of {', '.join(_INCLUDE_MODES)}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "priorityLevel": self.priority_level,
            "enabled": self.enabled,
            "text": self.text,
            "include": self.include,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]):
        return cls(
            name=str(data["name"]),
            description=str(data.get("description", "")),
            priority_level=int(data.get("priorityLevel", data.get("priority_level", 500))),
            enabled=bool(data.get("enabled", True)),
            text=str(data.get("text", "")),
            include=data.get("include", "manual"),
        )


@dataclass(slots=True, frozen=True)
class Rule(_ContextItem):
    """Prioritized instruction snippet injected as ``Rule: <text>``."""


@dataclass(slots=True, frozen=True)
class Reference(_ContextItem):
    """Prioritized knowledge snippet injected as ``Reference: <text>``."""


def sort_by_priority(items: Iterable[_ContextItem]) -> list:
    """Order items by priority level, then by name."""
    return sorted(items, key=lambda item: (item.priority_level, item.name))


@runtime_checkable
class ContextStore(Protocol):
    """Read-only lookup of rules and references by name."""

    def get_rule(self, name: str) -> Rule | None:
        ...

    def get_reference(self, name: str) -> Reference | None:
        ...

    def list_rules(self) -> Sequence[Rule]:
        ...

    def list_references(self) -> Sequence[Reference]:
        ...


class InMemoryContextStore:
    """Thread-safe in-memory :class:`ContextStore`.

    Writers are external collaborators (loaders, tests); the engine only reads.
    """

    def __init__(
        self,
        *,
        rules: Iterable[Rule] = (),
        references: Iterable[Reference] = (),
    ) -> None:
        self._lock = threading.RLock()
        self._rules: dict[str, Rule] = {}
        self._references: dict[str, Reference] = {}
        for rule in rules:
            self.add_rule(rule)
        for reference in references:
            self.add_reference(reference)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_rule(self, name: str) -> Rule | None:
        with self._lock:
            return self._rules.get(name)

    def get_reference(self, name: str) -> Reference | None:
        with self._lock:
            return self._references.get(name)

    def list_rules(self) -> Sequence[Rule]:
        with self._lock:
            return sort_by_priority(self._rules.values())

    def list_references(self) -> Sequence[Reference]:
        with self._lock:
            return sort_by_priority(self._references.values())

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_rule(self, rule: Rule) -> None:
        with self._lock:
            self._rules[rule.name] = rule
        LOGGER.debug("Stored rule %s (priority=%s)", rule.name, rule.priority_level)

    def add_reference(self, reference: Reference) -> None:
        with self._lock:
            self._references[reference.name] = reference
        LOGGER.debug("Stored reference %s (priority=%s)", reference.name, reference.priority_level)

    def remove_rule(self, name: str) -> bool:
        with self._lock:
            return self._rules.pop(name, None) is not None

    def remove_reference(self, name: str) -> bool:
        with self._lock:
            return self._references.pop(name, None) is not None
