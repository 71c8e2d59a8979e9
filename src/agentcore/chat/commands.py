"""Parsing and dispatch of slash commands typed into the chat prompt."""

from __future__ import annotations

import logging
import shlex
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..ai.orchestration.chat_session import ChatSession
from ..ai.orchestration.types import MessageUpdate

__all__ = [
    "CommandType",
    "CommandRequest",
    "CommandResult",
    "CommandDispatcher",
    "is_command",
    "parse_command",
    "HELP_TEXT",
]

LOGGER = logging.getLogger(__name__)


class CommandType(str, Enum):
    """Commands handled locally without calling the model."""

    MODEL = "model"
    TOOLS = "tools"
    RULES = "rules"
    REFERENCES = "references"
    SETTINGS = "settings"
    CLEAR = "clear"
    QUIT = "quit"
    HELP = "help"


@dataclass(slots=True)
class CommandRequest:
    """Parsed representation of a slash command string."""

    command: CommandType
    args: dict[str, Any]
    raw: str


@dataclass(slots=True)
class CommandResult:
    """Text to show the user, plus any session update the command produced."""

    output: str = ""
    update: MessageUpdate | None = None
    quit: bool = False
    lines: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join([self.output, *self.lines]).strip()


_COMMAND_PREFIX = "/"
_COMMAND_ALIASES = {
    "model": CommandType.MODEL,
    "models": CommandType.MODEL,
    "tools": CommandType.TOOLS,
    "tool": CommandType.TOOLS,
    "rules": CommandType.RULES,
    "rule": CommandType.RULES,
    "references": CommandType.REFERENCES,
    "reference": CommandType.REFERENCES,
    "refs": CommandType.REFERENCES,
    "ref": CommandType.REFERENCES,
    "settings": CommandType.SETTINGS,
    "set": CommandType.SETTINGS,
    "clear": CommandType.CLEAR,
    "quit": CommandType.QUIT,
    "exit": CommandType.QUIT,
    "q": CommandType.QUIT,
    "help": CommandType.HELP,
    "?": CommandType.HELP,
}
_CONTEXT_ACTIONS = {
    "add": "add",
    "include": "add",
    "+": "add",
    "remove": "remove",
    "rm": "remove",
    "exclude": "remove",
    "-": "remove",
    "list": "list",
    "ls": "list",
}
_SETTING_ALIASES = {
    "max_output_tokens": "max_output_tokens",
    "max-output-tokens": "max_output_tokens",
    "max_tokens": "max_output_tokens",
    "temperature": "temperature",
    "temp": "temperature",
    "top_p": "top_p",
    "top-p": "top_p",
    "tool_permission": "tool_permission",
    "toolpermission": "tool_permission",
    "permission": "tool_permission",
}

HELP_TEXT = """\
Commands:
  /model [provider:model]             Show or switch the active model
  /tools                              List the tools available to the model
  /rules [add|remove <name>...]       List, activate or deactivate rules
  /references [add|remove <name>...]  List, activate or deactivate references
  /settings [key=value ...]           Show or change max_output_tokens, temperature,
                                      top_p, tool_permission (always|never|tool)
  /clear                              Start the conversation over
  /help                               Show this help
  /quit                               Exit
Mention @rule:<name> or @ref:<name> in a message to activate it."""


def is_command(text: str) -> bool:
    """Return ``True`` when ``text`` starts with the command prefix."""

    return (text or "").strip().startswith(_COMMAND_PREFIX)


def parse_command(text: str) -> CommandRequest | None:
    """Parse ``text`` into a :class:`CommandRequest` when prefixed with ``/``.

    Raises:
        ValueError: The verb is missing or unknown, or the arguments are malformed.
    """

    normalized = (text or "").strip()
    if not normalized.startswith(_COMMAND_PREFIX):
        return None
    tokens = _tokenize(normalized[len(_COMMAND_PREFIX) :])
    if not tokens:
        raise ValueError("Command is missing a verb. Try /help.")
    verb = tokens.popleft().lower()
    command = _COMMAND_ALIASES.get(verb)
    if command is None:
        raise ValueError(f"Unknown command '{verb}'. Try /help.")
    if command is CommandType.MODEL:
        args = {"model_id": tokens.popleft()} if tokens else {}
        if tokens:
            raise ValueError("Usage: /model [provider:model]")
    elif command in (CommandType.RULES, CommandType.REFERENCES):
        args = _parse_context_command(tokens, command)
    elif command is CommandType.SETTINGS:
        args = _parse_settings_command(tokens)
    else:
        if tokens:
            raise ValueError(f"/{command.value} takes no arguments")
        args = {}
    return CommandRequest(command=command, args=args, raw=normalized)


def _tokenize(text: str) -> deque[str]:
    try:
        return deque(shlex.split(text, posix=True))
    except ValueError as exc:
        raise ValueError(f"Unable to parse command: {exc}") from exc


def _parse_context_command(tokens: deque[str], command: CommandType) -> dict[str, Any]:
    if not tokens:
        return {"action": "list", "names": []}
    action_token = tokens.popleft().lower()
    action = _CONTEXT_ACTIONS.get(action_token)
    if action is None:
        raise ValueError(f"Unknown /{command.value} action '{action_token}'. Use add or remove.")
    names = [token.lstrip("@") for token in tokens]
    if action != "list" and not names:
        raise ValueError(f"/{command.value} {action} requires at least one name")
    return {"action": action, "names": names}


def _parse_settings_command(tokens: deque[str]) -> dict[str, Any]:
    args: dict[str, Any] = {}
    while tokens:
        token = tokens.popleft()
        key, sep, value = token.partition("=")
        if not sep:
            if not tokens:
                raise ValueError(f"Setting '{token}' requires a value")
            value = tokens.popleft()
        name = _SETTING_ALIASES.get(key.strip().lower())
        if name is None:
            raise ValueError(f"Unknown setting '{key}'")
        args[name] = _coerce_setting(name, value.strip())
    return args


def _coerce_setting(name: str, value: str) -> int | float | str:
    if name == "tool_permission":
        return value.lower()
    try:
        return int(value, 10) if name == "max_output_tokens" else float(value)
    except ValueError as exc:
        raise ValueError(f"Setting '{name}' expects a number, got '{value}'") from exc


class CommandDispatcher:
    """Executes parsed commands against one chat session."""

    def __init__(self, session: ChatSession) -> None:
        self._session = session

    @property
    def session(self) -> ChatSession:
        return self._session

    async def execute(self, request: CommandRequest) -> CommandResult:
        LOGGER.debug("Executing command %s with %s", request.command.value, request.args)
        handler = getattr(self, f"_handle_{request.command.value}")
        return await handler(request.args)

    async def _handle_model(self, args: dict[str, Any]) -> CommandResult:
        model_id = args.get("model_id")
        if not model_id:
            current = self._session.current_model or "none"
            return CommandResult(output=f"Current model: {current}")
        update = await self._session.switch_model(model_id)
        if update.error:
            return CommandResult(output=update.error, update=update)
        return CommandResult(output=_render_updates(update), update=update)

    async def _handle_tools(self, args: dict[str, Any]) -> CommandResult:
        tools = self._session.tools.list_all()
        if not tools:
            return CommandResult(output="No tools available")
        lines = [f"  {tool.name}: {tool.description}" if tool.description else f"  {tool.name}" for tool in tools]
        return CommandResult(output=f"{len(tools)} tool(s):", lines=lines)

    async def _handle_rules(self, args: dict[str, Any]) -> CommandResult:
        return self._context_command(
            args,
            kind="rule",
            items=self._session.store.list_rules(),
            active=self._session.active_rules,
            add=self._session.add_rule,
            remove=self._session.remove_rule,
        )

    async def _handle_references(self, args: dict[str, Any]) -> CommandResult:
        return self._context_command(
            args,
            kind="reference",
            items=self._session.store.list_references(),
            active=self._session.active_references,
            add=self._session.add_reference,
            remove=self._session.remove_reference,
        )

    async def _handle_settings(self, args: dict[str, Any]) -> CommandResult:
        settings = self._session.update_settings(**args) if args else self._session.settings
        return CommandResult(
            output=(
                f"max_output_tokens={settings.max_output_tokens} "
                f"temperature={settings.temperature} top_p={settings.top_p} "
                f"tool_permission={settings.tool_permission}"
            )
        )

    async def _handle_clear(self, args: dict[str, Any]) -> CommandResult:
        update = await self._session.clear()
        return CommandResult(output=_render_updates(update), update=update)

    async def _handle_quit(self, args: dict[str, Any]) -> CommandResult:
        return CommandResult(output="Goodbye", quit=True)

    async def _handle_help(self, args: dict[str, Any]) -> CommandResult:
        return CommandResult(output=HELP_TEXT)

    @staticmethod
    def _context_command(args, *, kind, items, active, add, remove) -> CommandResult:
        action = args.get("action", "list")
        if action == "list":
            if not items:
                return CommandResult(output=f"No {kind}s defined")
            lines = [
                f"  {'*' if item.name in active else ' '} {item.name} [{item.priority_level}] {item.description}".rstrip()
                for item in items
            ]
            return CommandResult(output=f"{kind.capitalize()}s (* = active):", lines=lines)
        lines = []
        for name in args.get("names", ()):
            if action == "add":
                changed = add(name)
                lines.append(f"Added {kind} {name}" if changed else f"{kind.capitalize()} {name} not added")
            else:
                changed = remove(name)
                lines.append(f"Removed {kind} {name}" if changed else f"{kind.capitalize()} {name} was not active")
        return CommandResult(lines=lines)


def _render_updates(update: MessageUpdate) -> str:
    return "\n".join(message.content for message in update.updates if message.content)
