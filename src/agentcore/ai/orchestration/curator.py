"""Mention scanning for ``@ref:<name>`` and ``@rule:<name>`` tokens."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

from ...context.store import ContextStore

__all__ = ["ActiveContext", "CurationTarget", "ContextCurator", "MENTION_PATTERN"]

LOGGER = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"@(?P<kind>ref|rule):(?P<name>[\w-]+)")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True)
class ActiveContext:
    """Ordered, duplicate-free sets of active reference and rule names."""

    references: list[str] = field(default_factory=list)
    rules: list[str] = field(default_factory=list)

    def add_reference(self, name: str) -> bool:
        if name in self.references:
            return False
        self.references.append(name)
        return True

    def remove_reference(self, name: str) -> bool:
        if name not in self.references:
            return False
        self.references.remove(name)
        return True

    def add_rule(self, name: str) -> bool:
        if name in self.rules:
            return False
        self.rules.append(name)
        return True

    def remove_rule(self, name: str) -> bool:
        if name not in self.rules:
            return False
        self.rules.remove(name)
        return True

    def snapshot(self) -> tuple[tuple[str, ...], tuple[str, ...]]:
        return tuple(self.references), tuple(self.rules)

    def restore(self, snapshot: tuple[tuple[str, ...], tuple[str, ...]]) -> None:
        references, rules = snapshot
        self.references[:] = references
        self.rules[:] = rules


class CurationTarget(Protocol):
    """Anything holding active reference/rule sets."""

    def add_reference(self, name: str) -> bool:
        ...

    def add_rule(self, name: str) -> bool:
        ...


class ContextCurator:
    """Merges explicit mentions in user text into a session's active sets.

    Store access is read-only. Unknown names are logged and dropped; they never
    surface as errors.
    """

    def __init__(self, store: ContextStore) -> None:
        self._store = store

    def curate(self, target: CurationTarget, raw_text: str) -> tuple[str, bool]:
        """Strip mentions from ``raw_text`` and activate the known ones.

        Returns:
            The cleaned text (whitespace collapsed and trimmed) and whether any
            active set changed.
        """
        changed = False
        for match in MENTION_PATTERN.finditer(raw_text or ""):
            kind, name = match.group("kind"), match.group("name")
            if kind == "ref":
                if self._store.get_reference(name) is None:
                    LOGGER.warning("Mentioned reference '%s' does not exist; ignoring", name)
                    continue
                changed = target.add_reference(name) or changed
            else:
                if self._store.get_rule(name) is None:
                    LOGGER.warning("Mentioned rule '%s' does not exist; ignoring", name)
                    continue
                changed = target.add_rule(name) or changed
        cleaned = MENTION_PATTERN.sub(" ", raw_text or "")
        return _WHITESPACE_RE.sub(" ", cleaned).strip(), changed
