"""Tests for ai/orchestration/history.py."""

from __future__ import annotations

from agentcore.ai.orchestration.history import HistoryBuilder
from agentcore.ai.orchestration.types import ChatMessage, ModelReply, ToolCallRecord, Turn


def _roles(entries) -> list[str]:
    return [entry.role for entry in entries]


class TestBuild:
    """Flattening stored messages into provider entries."""

    def test_system_prompt_first_and_last_message_excluded(self) -> None:
        builder = HistoryBuilder(lambda: "Be helpful")
        messages = [ChatMessage.system("Welcome"), ChatMessage.user("hi"), ChatMessage.user("new input")]

        history = builder.build(messages)

        assert _roles(history) == ["system", "system", "user"]
        assert history[0].content == "Be helpful"
        assert history[-1].content == "hi"

    def test_system_prompt_read_on_every_build(self) -> None:
        prompt = {"value": "first"}
        builder = HistoryBuilder(lambda: prompt["value"])

        assert builder.build([ChatMessage.user("x")])[0].content == "first"
        prompt["value"] = "second"
        assert builder.build([ChatMessage.user("x")])[0].content == "second"

    def test_tool_turns_expand_to_call_result_pairs(self) -> None:
        record = ToolCallRecord(server_name="math", tool_name="add", args={"a": 1}, output="2", tool_call_id="c1")
        reply = ModelReply.from_turns(
            [
                Turn(message="Let me add", tool_calls=(record,)),
                Turn(message="It is 2"),
            ]
        )
        messages = [ChatMessage.user("add"), ChatMessage.assistant(reply), ChatMessage.user("thanks")]

        history = HistoryBuilder(lambda: "").build(messages)

        assert _roles(history) == ["system", "user", "assistant", "function_call", "function_result", "assistant"]
        call, result = history[3], history[4]
        assert call.tool_name == "math_add"
        assert call.args == {"a": 1}
        assert call.tool_call_id == result.tool_call_id == "c1"
        assert result.content == "2"

    def test_error_entries_replay_as_assistant(self) -> None:
        reply = ModelReply.from_turns([Turn(error="Maximum number of tool uses reached")])
        messages = [
            ChatMessage.user("a"),
            ChatMessage.error("provider down"),
            ChatMessage.assistant(reply),
            ChatMessage.user("b"),
        ]

        history = HistoryBuilder(lambda: "").build(messages)

        assert _roles(history) == ["system", "user", "assistant", "assistant"]
        assert history[2].content == "provider down"
        assert history[3].content == "Maximum number of tool uses reached"


class TestContextMessages:
    """Rendering of active references and rules."""

    def test_references_then_rules_in_priority_order(self, context_store) -> None:
        builder = HistoryBuilder(lambda: "", store=context_store)

        entries = builder.context_messages(["readme", "api"], ["cite", "be-brief"])

        assert [entry.content for entry in entries] == [
            "Reference: API notes",
            "Reference: README body",
            "Rule: Answer briefly.",
            "Rule: Cite your sources.",
        ]
        assert set(_roles(entries)) == {"user"}

    def test_missing_and_disabled_items_skipped(self, context_store) -> None:
        builder = HistoryBuilder(lambda: "", store=context_store)

        entries = builder.context_messages(["gone"], ["off", "cite"])

        assert [entry.content for entry in entries] == ["Rule: Cite your sources."]

    def test_without_store(self) -> None:
        assert HistoryBuilder(lambda: "").context_messages(["a"], ["b"]) == []
