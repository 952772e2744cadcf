"""
Tests for the tabpilot.agents.exceptions module.

This module tests:
- Base error fields and serialization
- Error codes and context population for each subclass
- Cancellation errors carrying their reason
"""

import pytest

from tabpilot.agents.exceptions import (
    ConfigurationError,
    ErrorAction,
    MessageFormatError,
    ModelAPIError,
    ProtocolViolationError,
    SessionNotFoundError,
    TabPilotError,
    ToolArgumentError,
    ToolExecutionError,
    TurnCancelledError,
)


# =============================================================================
# Base error
# =============================================================================

class TestTabPilotError:
    """Tests for the base exception."""

    def test_defaults(self):
        error = TabPilotError("boom")

        assert error.error_code == "TABPILOT_ERROR"
        assert error.user_message == "boom"
        assert error.developer_message == "boom"
        assert error.context == {}
        assert error.action is ErrorAction.TERMINAL

    def test_str_includes_code_and_session(self):
        error = TabPilotError("boom", error_code="X", session_id="abcdef123456")

        assert str(error) == "[X] Session:abcdef12 boom"

    def test_to_dict(self):
        error = TabPilotError("boom", user_message="Something broke", suggestion="Retry")

        data = error.to_dict()

        assert data["error_type"] == "TabPilotError"
        assert data["message"] == "boom"
        assert data["user_message"] == "Something broke"
        assert data["suggestion"] == "Retry"
        assert data["action"] == "terminal"


# =============================================================================
# Subclasses
# =============================================================================

class TestSubclasses:
    """Tests for error codes and context of the specific errors."""

    @pytest.mark.parametrize("error,code", [
        (ConfigurationError("no key", config_field="api_key"), "CONFIGURATION_ERROR"),
        (MessageFormatError("bad", role="narrator"), "MESSAGE_FORMAT_ERROR"),
        (ProtocolViolationError("bad", last_role="user"), "PROTOCOL_VIOLATION_ERROR"),
        (ModelAPIError("HTTP 500", status_code=500), "MODEL_API_ERROR"),
        (ToolArgumentError("bad json", tool_name="open_url"), "TOOL_ARGUMENT_ERROR"),
        (ToolExecutionError("failed", tool_name="click_element"), "TOOL_EXECUTION_ERROR"),
        (SessionNotFoundError("missing", session_id="s1"), "SESSION_NOT_FOUND_ERROR"),
        (TurnCancelledError(), "TURN_CANCELLED"),
    ])
    def test_error_codes(self, error, code):
        assert isinstance(error, TabPilotError)
        assert error.error_code == code

    def test_configuration_error_is_user_fixable(self):
        error = ConfigurationError("no key", config_field="api_key")

        assert error.context["config_field"] == "api_key"
        assert error.action is ErrorAction.USER_FIXABLE
        assert error.suggestion

    def test_model_api_error_truncates_response(self):
        error = ModelAPIError(
            "HTTP 502",
            status_code=502,
            response_text="x" * 500,
            api_endpoint="https://api.example.com/v1/chat/completions",
        )

        assert error.status_code == 502
        assert error.context["status_code"] == 502
        assert len(error.context["response_preview"]) == 200

    def test_tool_argument_error_keeps_raw_arguments(self):
        error = ToolArgumentError("bad json", tool_name="open_url", raw_arguments="{url:")

        assert error.context == {"tool_name": "open_url", "raw_arguments": "{url:"}

    def test_session_not_found_sets_session(self):
        assert SessionNotFoundError("missing", session_id="s1").session_id == "s1"


class TestTurnCancelledError:
    """Tests for cancellation errors."""

    def test_default_reason(self):
        assert TurnCancelledError().reason == "Generation stopped."

    def test_custom_reason(self):
        error = TurnCancelledError("Stopped because you switched tabs.")

        assert error.reason == "Stopped because you switched tabs."
        assert error.user_message == error.reason
