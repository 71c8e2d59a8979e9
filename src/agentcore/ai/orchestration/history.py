"""Flattening of structured session history into provider messages.

Role mapping applied by :meth:`HistoryBuilder.build`:

========== ==============================================================
Stored     Provider entry
========== ==============================================================
system     ``system`` (adapters without a system role may demote it)
user       ``user``
error      ``assistant``
assistant  per turn: ``assistant`` text (or the error of a bare error
           turn), then ``function_call`` / ``function_result`` pairs in
           record order
========== ==============================================================
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from ...context.store import ContextStore, Reference, Rule, sort_by_priority
from .types import ChatMessage, ProviderMessage, Turn

__all__ = ["HistoryBuilder", "SystemPromptProvider"]

LOGGER = logging.getLogger(__name__)

SystemPromptProvider = Callable[[], str]


class HistoryBuilder:
    """Builds the provider-agnostic message list for one model call.

    The system prompt is fetched from ``system_prompt`` on every build so edits
    apply to the next call only.
    """

    def __init__(self, system_prompt: SystemPromptProvider, *, store: ContextStore | None = None) -> None:
        self._system_prompt = system_prompt
        self._store = store

    def build(self, messages: Sequence[ChatMessage]) -> list[ProviderMessage]:
        """Return the system prompt followed by every message except the last.

        The last message is the new user input, which the caller passes to the
        adapter separately as the current prompt.
        """
        history: list[ProviderMessage] = [ProviderMessage.system(self._system_prompt() or "")]
        for message in messages[:-1]:
            if message.role == "assistant":
                if message.model_reply is not None:
                    for turn in message.model_reply.turns:
                        history.extend(self._expand_turn(turn))
            elif message.role == "error":
                history.append(ProviderMessage.assistant(message.content))
            elif message.role == "system":
                history.append(ProviderMessage.system(message.content))
            else:
                history.append(ProviderMessage.user(message.content))
        return history

    @staticmethod
    def _expand_turn(turn: Turn) -> list[ProviderMessage]:
        entries: list[ProviderMessage] = []
        if turn.message:
            entries.append(ProviderMessage.assistant(turn.message))
        elif turn.error and not turn.tool_calls:
            entries.append(ProviderMessage.assistant(turn.error))
        for record in turn.tool_calls:
            entries.append(ProviderMessage.function_call(record.tool_id, record.args, record.tool_call_id))
            entries.append(ProviderMessage.function_result(record.tool_id, record.output, record.tool_call_id))
        return entries

    def context_messages(
        self,
        references: Sequence[str],
        rules: Sequence[str],
    ) -> list[ProviderMessage]:
        """Render active references then rules as ``user`` entries.

        Each group is ordered by priority level then name. Names missing from
        the store and disabled items are skipped.
        """
        if self._store is None:
            return []
        resolved_refs: list[Reference] = []
        for name in references:
            reference = self._store.get_reference(name)
            if reference is None:
                LOGGER.debug("Active reference %s is no longer in the store", name)
            elif reference.enabled:
                resolved_refs.append(reference)
        resolved_rules: list[Rule] = []
        for name in rules:
            rule = self._store.get_rule(name)
            if rule is None:
                LOGGER.debug("Active rule %s is no longer in the store", name)
            elif rule.enabled:
                resolved_rules.append(rule)
        entries = [ProviderMessage.user(f"Reference: {ref.text}") for ref in sort_by_priority(resolved_refs)]
        entries.extend(ProviderMessage.user(f"Rule: {rule.text}") for rule in sort_by_priority(resolved_rules))
        return entries
