"""Tests for the tool error taxonomy."""

from __future__ import annotations

from agentcore.ai.tools.errors import (
    ErrorCode,
    InvalidToolIdFormat,
    ServerNotFound,
    ToolError,
    ToolExecutionError,
    ToolNotFound,
    ToolTimeoutError,
)


class TestToolError:
    """Tests for the base ToolError class."""

    def test_str_includes_code(self) -> None:
        error = ToolError(error_code="test_error", message="Something went wrong")

        assert str(error) == "[test_error] Something went wrong"
        assert error.args == ("Something went wrong",)

    def test_to_dict_omits_empty_fields(self) -> None:
        error = ToolError(error_code="x", message="y")

        assert error.to_dict() == {"error": "x", "message": "y"}

    def test_to_dict_includes_details_and_suggestion(self) -> None:
        error = ToolError(error_code="x", message="y", details={"k": 1}, suggestion="retry")

        payload = error.to_dict()

        assert payload["details"] == {"k": 1}
        assert payload["suggestion"] == "retry"


class TestResolutionErrors:
    """Tests for the resolution error subclasses."""

    def test_invalid_tool_id_format_defaults(self) -> None:
        error = InvalidToolIdFormat(tool_id="noseparator")

        assert error.error_code == ErrorCode.INVALID_TOOL_ID_FORMAT
        assert error.to_dict()["tool_id"] == "noseparator"
        assert error.suggestion

    def test_server_not_found(self) -> None:
        error = ServerNotFound(message="Tool server 'x' not found", server_name="x")

        assert error.error_code == ErrorCode.SERVER_NOT_FOUND
        assert error.to_dict()["server_name"] == "x"

    def test_tool_not_found(self) -> None:
        error = ToolNotFound(server_name="math", tool_name="div")

        payload = error.to_dict()
        assert error.error_code == ErrorCode.TOOL_NOT_FOUND
        assert payload["server_name"] == "math"
        assert payload["tool_name"] == "div"

    def test_all_are_tool_errors(self) -> None:
        for error in (InvalidToolIdFormat(), ServerNotFound(), ToolNotFound(), ToolExecutionError()):
            assert isinstance(error, ToolError)
            assert isinstance(error, Exception)


class TestExecutionErrors:
    """Tests for execution error wrapping."""

    def test_from_exception_keeps_cause(self) -> None:
        cause = ConnectionError("pipe closed")

        error = ToolExecutionError.from_exception("math_add", cause)

        assert error.cause is cause
        assert error.__cause__ is cause
        assert error.message == "pipe closed"
        assert error.to_dict()["cause"] == "ConnectionError"

    def test_from_exception_uses_type_name_for_empty_message(self) -> None:
        error = ToolExecutionError.from_exception("math_add", ValueError())

        assert error.message == "ValueError"

    def test_timeout_is_execution_error(self) -> None:
        error = ToolTimeoutError(tool_id="math_add", timeout_seconds=2.5)

        assert isinstance(error, ToolExecutionError)
        assert error.error_code == ErrorCode.TIMEOUT
        assert error.to_dict()["timeout_seconds"] == 2.5
