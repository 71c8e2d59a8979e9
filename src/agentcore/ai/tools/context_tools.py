"""Internal tool servers exposing rules and references to the model.

The store-backed servers are read-only and shared across sessions. The
session-scoped ``context`` server lets the model include or exclude rules and
references in its own conversation; it lives in the session's child registry.
"""

from __future__ import annotations

import json
from typing import Any, Protocol, Sequence

from ...context.store import ContextStore, Reference, Rule
from .errors import ErrorCode, ToolError
from .servers import LocalToolServer

__all__ = [
    "RULES_SERVER_NAME",
    "REFERENCES_SERVER_NAME",
    "SESSION_CONTEXT_SERVER_NAME",
    "build_rules_server",
    "build_references_server",
    "build_session_context_server",
]

RULES_SERVER_NAME = "rules"
REFERENCES_SERVER_NAME = "references"
SESSION_CONTEXT_SERVER_NAME = "context"

_NAME_PARAMETERS = {
    "type": "object",
    "properties": {
        "name": {
            "type": "string",
            "pattern": "^[a-zA-Z0-9_-]+$",
            "description": "Name of the item",
        },
    },
    "required": ["name"],
    "additionalProperties": False,
}
_NO_PARAMETERS = {"type": "object", "properties": {}, "additionalProperties": False}


class SessionContextTarget(Protocol):
    """Subset of the chat session the ``context`` server mutates."""

    @property
    def active_rules(self) -> Sequence[str]:
        ...

    @property
    def active_references(self) -> Sequence[str]:
        ...

    def add_rule(self, name: str) -> bool:
        ...

    def remove_rule(self, name: str) -> bool:
        ...

    def add_reference(self, name: str) -> bool:
        ...

    def remove_reference(self, name: str) -> bool:
        ...


def _summary(item: Rule | Reference) -> dict[str, Any]:
    payload = item.to_dict()
    payload.pop("text", None)
    return payload


def _missing(kind: str, name: str) -> ToolError:
    return ToolError(
        error_code=ErrorCode.INVALID_PARAMETER,
        message=f"{kind} '{name}' not found",
        details={"name": name},
    )


def build_rules_server(store: ContextStore) -> LocalToolServer:
    """Return the read-only ``rules`` server backed by ``store``."""
    server = LocalToolServer(RULES_SERVER_NAME)

    def list_rules() -> str:
        return json.dumps([_summary(rule) for rule in store.list_rules()], indent=2)

    def get_rule(name: str) -> str:
        rule = store.get_rule(name)
        if rule is None:
            raise _missing("Rule", name)
        return json.dumps(rule.to_dict(), indent=2)

    server.add_tool("listRules", list_rules, description="List all rules (without their text)", parameters=_NO_PARAMETERS)
    server.add_tool("getRule", get_rule, description="Get a rule by name", parameters=_NAME_PARAMETERS)
    return server


def build_references_server(store: ContextStore) -> LocalToolServer:
    """Return the read-only ``references`` server backed by ``store``."""
    server = LocalToolServer(REFERENCES_SERVER_NAME)

    def list_references() -> str:
        return json.dumps([_summary(ref) for ref in store.list_references()], indent=2)

    def get_reference(name: str) -> str:
        reference = store.get_reference(name)
        if reference is None:
            raise _missing("Reference", name)
        return json.dumps(reference.to_dict(), indent=2)

    server.add_tool(
        "listReferences",
        list_references,
        description="List all references (without their text)",
        parameters=_NO_PARAMETERS,
    )
    server.add_tool("getReference", get_reference, description="Get a reference by name", parameters=_NAME_PARAMETERS)
    return server


def build_session_context_server(session: SessionContextTarget) -> LocalToolServer:
    """Return the session-scoped ``context`` server for ``session``."""
    server = LocalToolServer(SESSION_CONTEXT_SERVER_NAME)

    def include_rule(name: str) -> str:
        if session.add_rule(name):
            return f"Rule '{name}' included in the chat session context"
        return f"Rule '{name}' is unknown or already included"

    def exclude_rule(name: str) -> str:
        if session.remove_rule(name):
            return f"Rule '{name}' excluded from the chat session context"
        return f"Rule '{name}' was not included"

    def include_reference(name: str) -> str:
        if session.add_reference(name):
            return f"Reference '{name}' included in the chat session context"
        return f"Reference '{name}' is unknown or already included"

    def exclude_reference(name: str) -> str:
        if session.remove_reference(name):
            return f"Reference '{name}' excluded from the chat session context"
        return f"Reference '{name}' was not included"

    server.add_tool(
        "listContextRules",
        lambda: json.dumps(list(session.active_rules)),
        description="List the rules active in the current chat session",
        parameters=_NO_PARAMETERS,
    )
    server.add_tool(
        "listContextReferences",
        lambda: json.dumps(list(session.active_references)),
        description="List the references active in the current chat session",
        parameters=_NO_PARAMETERS,
    )
    server.add_tool("includeRule", include_rule, description="Include a rule in the current chat session context", parameters=_NAME_PARAMETERS)
    server.add_tool("excludeRule", exclude_rule, description="Exclude a rule from the current chat session context", parameters=_NAME_PARAMETERS)
    server.add_tool(
        "includeReference",
        include_reference,
        description="Include a reference in the current chat session context",
        parameters=_NAME_PARAMETERS,
    )
    server.add_tool(
        "excludeReference",
        exclude_reference,
        description="Exclude a reference from the current chat session context",
        parameters=_NAME_PARAMETERS,
    )
    return server
