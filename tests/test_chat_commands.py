"""Tests for slash command parsing and dispatch."""

from __future__ import annotations

import pytest

from agentcore.ai.errors import ConfigurationError
from agentcore.ai.orchestration.chat_session import ChatSession
from agentcore.ai.providers.echo import EchoAdapter
from agentcore.chat.commands import (
    HELP_TEXT,
    CommandDispatcher,
    CommandType,
    is_command,
    parse_command,
)


class EchoFactory:
    """Builds echo adapters for ``test:*`` ids only."""

    def create(self, model_id: str) -> EchoAdapter:
        provider, _, model = model_id.partition(":")
        if provider != "test":
            raise ConfigurationError(f"Unknown provider '{provider}'", model_id=model_id)
        return EchoAdapter(provider=provider, model=model)


@pytest.fixture
def session(context_store, registry) -> ChatSession:
    return ChatSession("s1", factory=EchoFactory(), store=context_store, tools=registry, model_id="test:echo")


@pytest.fixture
def dispatcher(session: ChatSession) -> CommandDispatcher:
    return CommandDispatcher(session)


# -----------------------------------------------------------------------------
# Tests: Parsing
# -----------------------------------------------------------------------------


class TestParseCommand:
    """Parsing of the raw command text."""

    def test_is_command(self) -> None:
        assert is_command("  /help")
        assert not is_command("hello /help")

    def test_plain_text_is_not_a_command(self) -> None:
        assert parse_command("hello") is None

    @pytest.mark.parametrize(
        ("text", "command"),
        [
            ("/models", CommandType.MODEL),
            ("/refs", CommandType.REFERENCES),
            ("/rule", CommandType.RULES),
            ("/exit", CommandType.QUIT),
            ("/?", CommandType.HELP),
            ("/TOOLS", CommandType.TOOLS),
        ],
    )
    def test_aliases(self, text: str, command: CommandType) -> None:
        assert parse_command(text).command is command

    def test_model_argument(self) -> None:
        assert parse_command("/model test:echo").args == {"model_id": "test:echo"}
        assert parse_command("/model").args == {}
        with pytest.raises(ValueError):
            parse_command("/model a b")

    def test_context_actions(self) -> None:
        assert parse_command("/rules").args == {"action": "list", "names": []}
        assert parse_command("/rules + @cite be-brief").args == {"action": "add", "names": ["cite", "be-brief"]}
        assert parse_command("/references rm readme").args == {"action": "remove", "names": ["readme"]}

    @pytest.mark.parametrize("text", ["/", "/bogus", "/rules add", "/rules frobnicate x", "/clear now", '/model "unterminated'])
    def test_errors(self, text: str) -> None:
        with pytest.raises(ValueError):
            parse_command(text)

    def test_settings_arguments(self) -> None:
        request = parse_command("/settings temp=0.2 max_tokens 300 top-p=1")

        assert request.args == {"temperature": 0.2, "max_output_tokens": 300, "top_p": 1.0}

    @pytest.mark.parametrize("text", ["/settings color=red", "/settings temperature=hot", "/settings temperature"])
    def test_settings_errors(self, text: str) -> None:
        with pytest.raises(ValueError):
            parse_command(text)


# -----------------------------------------------------------------------------
# Tests: Dispatch
# -----------------------------------------------------------------------------


class TestDispatcher:
    """Executing commands against a session."""

    @pytest.mark.asyncio
    async def test_show_model(self, dispatcher: CommandDispatcher) -> None:
        result = await dispatcher.execute(parse_command("/model"))

        assert result.text == "Current model: test:echo"

    @pytest.mark.asyncio
    async def test_switch_model(self, dispatcher: CommandDispatcher, session: ChatSession) -> None:
        result = await dispatcher.execute(parse_command("/model test:other"))

        assert result.text == "Switched to the test provider and the other model"
        assert session.current_model == "test:other"

    @pytest.mark.asyncio
    async def test_switch_model_failure(self, dispatcher: CommandDispatcher, session: ChatSession) -> None:
        result = await dispatcher.execute(parse_command("/model acme:x"))

        assert result.text.startswith("Failed to create LLM instance for model acme:x")
        assert session.current_model == "test:echo"

    @pytest.mark.asyncio
    async def test_tools(self, dispatcher: CommandDispatcher) -> None:
        result = await dispatcher.execute(parse_command("/tools"))

        assert result.output.endswith("tool(s):")
        assert "  math_add: Add two integers" in result.lines

    @pytest.mark.asyncio
    async def test_rules_list_marks_active(self, dispatcher: CommandDispatcher, session: ChatSession) -> None:
        session.add_rule("cite")

        result = await dispatcher.execute(parse_command("/rules"))

        assert result.output == "Rules (* = active):"
        assert "  * cite [200]" in result.lines
        assert "    be-brief [100] Keep answers short" in result.lines

    @pytest.mark.asyncio
    async def test_add_and_remove_references(self, dispatcher: CommandDispatcher, session: ChatSession) -> None:
        added = await dispatcher.execute(parse_command("/references add readme ghost"))
        removed = await dispatcher.execute(parse_command("/references remove readme api"))

        assert added.lines == ["Added reference readme", "Reference ghost not added"]
        assert removed.lines == ["Removed reference readme", "Reference api was not active"]
        assert session.active_references == ()

    @pytest.mark.asyncio
    async def test_settings(self, dispatcher: CommandDispatcher) -> None:
        shown = await dispatcher.execute(parse_command("/settings"))
        changed = await dispatcher.execute(parse_command("/settings temperature=1.5"))

        assert shown.text == "max_output_tokens=1000 temperature=0.5 top_p=0.5 tool_permission=tool"
        assert changed.text == "max_output_tokens=1000 temperature=1.5 top_p=0.5 tool_permission=tool"

    @pytest.mark.asyncio
    async def test_settings_tool_permission(self, dispatcher: CommandDispatcher, session: ChatSession) -> None:
        result = await dispatcher.execute(parse_command("/settings toolPermission=Always"))

        assert result.text.endswith("tool_permission=always")
        assert session.settings.tool_permission == "always"

    @pytest.mark.asyncio
    async def test_settings_rejects_unknown_tool_permission(self, dispatcher: CommandDispatcher) -> None:
        with pytest.raises(ValueError, match="tool_permission"):
            await dispatcher.execute(parse_command("/settings permission=sometimes"))

    @pytest.mark.asyncio
    async def test_settings_out_of_range(self, dispatcher: CommandDispatcher) -> None:
        with pytest.raises(ValueError):
            await dispatcher.execute(parse_command("/settings top_p=3"))

    @pytest.mark.asyncio
    async def test_clear(self, dispatcher: CommandDispatcher, session: ChatSession) -> None:
        await session.handle_message("hello")

        result = await dispatcher.execute(parse_command("/clear"))

        assert result.text.startswith("Welcome to agentcore!")
        assert len(session.messages) == 1

    @pytest.mark.asyncio
    async def test_quit_and_help(self, dispatcher: CommandDispatcher) -> None:
        quit_result = await dispatcher.execute(parse_command("/quit"))
        help_result = await dispatcher.execute(parse_command("/help"))

        assert quit_result.quit
        assert quit_result.text == "Goodbye"
        assert help_result.text == HELP_TEXT.strip()
