"""Console entry point: loads settings, wires the engine and runs a chat REPL."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.ai_types import ToolCallRequest
from .ai.errors import AgentError
from .ai.orchestration.chat_session import ApprovalCallback, ApprovalDecision, ChatSession
from .ai.orchestration.session_manager import PromptResponse, SessionManager
from .ai.orchestration.tool_loop import LoopConfig
from .ai.orchestration.types import TOOL_PERMISSIONS, ChatMessage, GenerationSettings
from .ai.providers.factory import ProviderFactory
from .ai.tools.registry import ToolRegistry
from .chat.commands import CommandDispatcher, is_command, parse_command
from .context.store import InMemoryContextStore, Reference, Rule
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

InputFn = Callable[[str], str]
_APPROVAL_ANSWERS: Mapping[str, ApprovalDecision] = {
    "y": "allow-once",
    "yes": "allow-once",
    "s": "allow-session",
    "session": "allow-session",
}


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Log to the rotating file; only warnings reach the console unless debugging."""

    level = logging.DEBUG if debug else logging.INFO
    console_level = logging.DEBUG if debug else logging.WARNING
    logging_utils.setup_logging(level, console_level=console_level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def build_context_store(settings: Settings) -> InMemoryContextStore:
    """Build the rule/reference store from the ``rules`` and ``references`` settings."""

    store = InMemoryContextStore()
    for payload in settings.rules:
        try:
            store.add_rule(Rule.from_dict(payload))
        except (KeyError, TypeError, ValueError) as exc:
            _LOGGER.warning("Skipping invalid rule %r: %s", payload.get("name"), exc)
    for payload in settings.references:
        try:
            store.add_reference(Reference.from_dict(payload))
        except (KeyError, TypeError, ValueError) as exc:
            _LOGGER.warning("Skipping invalid reference %r: %s", payload.get("name"), exc)
    return store


def build_session_manager(
    settings: Settings,
    *,
    store: InMemoryContextStore,
    tools: ToolRegistry,
    factory: ProviderFactory | None = None,
    model_id: str | None = None,
    approval: ApprovalCallback | None = None,
) -> SessionManager:
    """Wire a :class:`SessionManager` whose sessions share ``tools`` and ``store``.

    Sessions built without ``approval`` run every tool call unattended.
    """

    adapter_factory = factory or ProviderFactory(settings)
    permission = settings.tool_permission
    if permission not in TOOL_PERMISSIONS:
        _LOGGER.warning("Unknown tool_permission %r; falling back to 'tool'", permission)
        permission = "tool"
    generation = GenerationSettings(
        max_output_tokens=settings.max_output_tokens,
        temperature=settings.temperature,
        top_p=settings.top_p,
        tool_permission=permission,
    )
    loop_config = LoopConfig(max_turns=settings.max_tool_turns, tool_timeout=settings.tool_timeout)
    initial_model = model_id or settings.default_model_id

    def _create(session_id: str) -> ChatSession:
        return ChatSession(
            session_id,
            factory=adapter_factory,
            store=store,
            tools=tools,
            model_id=initial_model,
            system_prompt=lambda: settings.system_prompt,
            settings=generation,
            loop_config=loop_config,
            approval=approval,
        )

    return SessionManager(_create)


async def run_repl(
    settings: Settings,
    *,
    model_id: str | None = None,
    input_fn: InputFn = input,
    output: TextIO | None = None,
) -> int:
    """Run the interactive chat loop until ``/quit`` or end of input."""

    out = output or sys.stdout
    store = build_context_store(settings)
    tools = ToolRegistry()
    connected = await tools.connect_all(settings.tool_servers, context_store=store)
    if connected:
        _LOGGER.info("Connected tool servers: %s", ", ".join(connected))

    manager = build_session_manager(
        settings,
        store=store,
        tools=tools,
        model_id=model_id,
        approval=console_approval(input_fn),
    )
    session = manager.create_session()
    dispatcher = CommandDispatcher(session.chat_session)
    _write(out, session.chat_session.messages[0].content)

    try:
        while True:
            try:
                line = await asyncio.to_thread(input_fn, "> ")
            except EOFError:
                break
            text = line.strip()
            if not text:
                continue
            if is_command(text):
                try:
                    request = parse_command(text)
                except ValueError as exc:
                    _report_error(out, exc)
                    continue
                if request is None:
                    continue
                try:
                    result = await dispatcher.execute(request)
                except ValueError as exc:
                    _report_error(out, exc)
                    continue
                if result.text:
                    _write(out, result.text)
                if result.quit:
                    break
                continue
            with _cancel_on_interrupt(manager, session.id):
                try:
                    response = await manager.prompt(session.id, text)
                except AgentError as exc:
                    _report_error(out, exc)
                    continue
            _write(out, render_response(response))
    finally:
        errors = await manager.close_all_sessions()
        for error in errors:
            _LOGGER.warning("Session shutdown error: %s", error)
        await tools.aclose()
    return 0


def render_response(response: PromptResponse) -> str:
    """Render a prompt response as transcript text."""

    if response.stop_reason == "cancelled":
        return "(cancelled)"
    lines: list[str] = []
    for message in response.updates:
        lines.extend(render_message(message))
    return "\n".join(lines)


def render_message(message: ChatMessage) -> list[str]:
    """Render the transcript lines for one message; user and system entries print nothing."""

    if message.role == "error":
        return [f"Error: {message.content}"]
    if message.role == "assistant" and message.model_reply is not None:
        return _render_reply(message)
    return []


def console_approval(input_fn: InputFn = input) -> ApprovalCallback:
    """Build an approval callback that asks on the console.

    ``y`` allows the call once, ``s`` allows the tool for the rest of the
    session; anything else, including end of input, denies it.
    """

    async def _ask(request: ToolCallRequest) -> ApprovalDecision:
        args = json.dumps(dict(request.args), ensure_ascii=False, sort_keys=True)
        prompt = f"Allow tool {request.tool_id} {args}? [y]es / [s]ession / [N]o: "
        try:
            answer = await asyncio.to_thread(input_fn, prompt)
        except EOFError:
            return "deny"
        return _APPROVAL_ANSWERS.get(answer.strip().lower(), "deny")

    return _ask


def _render_reply(message: ChatMessage) -> list[str]:
    lines: list[str] = []
    for turn in message.model_reply.turns if message.model_reply else ():
        for record in turn.tool_calls:
            status = f"error: {record.error}" if record.error else f"{record.elapsed_time_ms:.0f}ms"
            lines.append(f"[tool] {record.tool_id} ({status})")
        if turn.message:
            lines.append(turn.message)
        if turn.error:
            lines.append(f"Error: {turn.error}")
    return lines


@contextlib.contextmanager
def _cancel_on_interrupt(manager: SessionManager, session_id: str):
    """Route Ctrl+C to the in-flight prompt instead of killing the REPL."""

    loop = asyncio.get_running_loop()
    installed = False
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, manager.cancel, session_id)
        installed = True
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _report_error(stream: TextIO, exc: Exception) -> None:
    _write(stream, "\n".join(render_message(ChatMessage.error(str(exc)))))


def _write(stream: TextIO, text: str) -> None:
    stream.write(f"{text}\n")
    stream.flush()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``agentcore`` console script."""

    args = _parse_cli_args(argv)
    debug = args.debug or _env_flag("AGENTCORE_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("AGENTCORE_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    try:
        return asyncio.run(run_repl(settings, model_id=args.model))
    except KeyboardInterrupt:
        _LOGGER.info("Shutdown requested by user.")
        return 130


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="agentcore",
        description="Chat with a language model that can call tools.",
    )
    parser.add_argument(
        "--model",
        metavar="PROVIDER:MODEL",
        help="Model to start the session with, e.g. openai:gpt-4o-mini or test:echo.",
    )
    parser.add_argument("--debug", action="store_true", help="Log debug output to the console.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.agentcore/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target in (list, dict):
        try:
            value = json.loads(normalized or ("[]" if target is list else "{}"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"{target.__name__} overrides must be valid JSON") from exc
        if not isinstance(value, target):
            raise ValueError(f"Expected a JSON {target.__name__}")
        return value
    if normalized.lower() in {"none", "null"}:
        return None
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return _resolve_annotation(args[0])


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(payload.get("api_key", ""))
    for provider in payload.get("providers", {}).values():
        provider["api_key"] = redact_secret(provider.get("api_key", ""))
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": sorted(name for name in os.environ if name.startswith("AGENTCORE_")),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")
