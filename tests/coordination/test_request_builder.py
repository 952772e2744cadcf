"""
Tests for the tabpilot.coordination.request_builder module.

This module tests:
- System prompt rendering and tool-guidance placeholder handling
- History replay in the wire format
- Memory cards, injected context and the timestamp prefix
- Request body assembly and custom JSON merging
"""

from tabpilot.agents.memory import (
    AssistantMessage,
    ContextMessage,
    ToolCallRequest,
    ToolMessage,
    UserMessage,
)
from tabpilot.coordination.config import EngineConfig
from tabpilot.coordination.request_builder import (
    MEMORY_HEADER,
    build_messages,
    build_request_body,
    render_system_prompt,
)
from tabpilot.environment.tools import BROWSER_TOOLS, SILENT_TOOLS

FIXED_TIME = "2025-05-01 09:30:00"


def clock():
    return FIXED_TIME


def only_silent_tools():
    return {tool.name: tool.name in SILENT_TOOLS for tool in BROWSER_TOOLS}


# =============================================================================
# System prompt
# =============================================================================

class TestSystemPrompt:
    """Tests for render_system_prompt."""

    def test_placeholder_filled(self):
        config = EngineConfig(system_prompt="Intro\n{{TOOLS_PROMPT}}\nOutro", tools_prompt="GUIDE")

        assert render_system_prompt(config) == "Intro\nGUIDE\nOutro"

    def test_placeholder_removed_when_only_silent_tools(self):
        config = EngineConfig(
            system_prompt="Intro\n{{TOOLS_PROMPT}}\nOutro",
            tools_prompt="GUIDE",
            enabled_tools=only_silent_tools(),
        )

        prompt = render_system_prompt(config)

        assert "GUIDE" not in prompt
        assert "{{TOOLS_PROMPT}}" not in prompt
        assert prompt == "Intro\nOutro"


# =============================================================================
# Messages
# =============================================================================

class TestBuildMessages:
    """Tests for build_messages."""

    def test_tool_round_trip_replayed_in_order(self):
        call = ToolCallRequest(id="c1", name="open_url", arguments='{"url":"http://x"}')
        history = [
            UserMessage(content="go"),
            AssistantMessage(tool_calls=[call]),
            ToolMessage(content="Opened http://x", tool_call_id="c1", name="open_url"),
            AssistantMessage(),
        ]

        messages = build_messages(history, EngineConfig(), clock=clock)

        assert [m["role"] for m in messages] == ["system", "user", "assistant", "tool"]
        assert messages[2]["tool_calls"][0]["id"] == "c1"
        assert messages[3] == {
            "role": "tool",
            "content": "Opened http://x",
            "tool_call_id": "c1",
            "name": "open_url",
        }

    def test_trailing_placeholder_dropped(self):
        messages = build_messages(
            [UserMessage(content="hi"), AssistantMessage()], EngineConfig(), clock=clock
        )

        assert messages[-1]["role"] == "user"

    def test_timestamp_prefixes_last_user_message_only(self):
        history = [
            UserMessage(content="first"),
            AssistantMessage(content="answer"),
            UserMessage(content="second"),
        ]

        messages = build_messages(history, EngineConfig(), clock=clock)

        assert messages[1]["content"] == "first"
        assert messages[3]["content"] == f"[Current Time: {FIXED_TIME}]\nsecond"

    def test_full_content_sent_to_model(self):
        history = [UserMessage(content="hi", full_content="<current_page_context/>\n\nhi")]

        messages = build_messages(history, EngineConfig(), clock=clock)

        assert messages[-1]["content"].endswith("<current_page_context/>\n\nhi")

    def test_tool_call_tags_stripped_from_replayed_content(self):
        content = (
            "Opening. <|tool_call_begin|>open_url<|tool_call_argument_begin|>{}<|tool_call_end|>"
        )
        history = [UserMessage(content="go"), AssistantMessage(content=content)]

        messages = build_messages(history, EngineConfig(), clock=clock)

        assert messages[-1]["content"] == "Opening."

    def test_memory_cards_become_system_message(self):
        history = [
            ContextMessage(content="Price: 42 EUR", title="Flight", url="https://f"),
            UserMessage(content="hi"),
        ]

        messages = build_messages(history, EngineConfig(), clock=clock)

        assert messages[1]["role"] == "system"
        assert messages[1]["content"].startswith(MEMORY_HEADER)
        assert "<title>Flight</title>" in messages[1]["content"]
        assert "<content>Price: 42 EUR</content>" in messages[1]["content"]
        assert all(m["role"] != "context" for m in messages)

    def test_injected_context_precedes_history(self):
        config = EngineConfig(
            injected_user_context="  I live in Porto. ",
            injected_assistant_context="Noted.",
        )

        messages = build_messages([UserMessage(content="hi")], config, clock=clock)

        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[1]["content"] == "I live in Porto."
        assert messages[3]["content"].endswith("hi")


# =============================================================================
# Request body
# =============================================================================

class TestBuildRequestBody:
    """Tests for build_request_body."""

    def test_defaults(self):
        body = build_request_body(EngineConfig(model="m"), [])

        assert body["model"] == "m"
        assert body["stream"] is True
        assert body["temperature"] == 0.3
        assert "top_p" not in body
        assert body["tool_choice"] == "auto"
        assert {t["function"]["name"] for t in body["tools"]} == {t.name for t in BROWSER_TOOLS}

    def test_disabled_tools_omitted(self):
        config = EngineConfig(enabled_tools={tool.name: False for tool in BROWSER_TOOLS})

        body = build_request_body(config, [])

        assert "tools" not in body
        assert "tool_choice" not in body

    def test_custom_json_merged_last(self):
        config = EngineConfig(custom_json='{"temperature": 0.9, "max_tokens": 512}')

        body = build_request_body(config, [])

        assert body["temperature"] == 0.9
        assert body["max_tokens"] == 512

    def test_invalid_custom_json_ignored(self):
        body = build_request_body(EngineConfig(custom_json="{oops"), [])

        assert body["temperature"] == 0.3
