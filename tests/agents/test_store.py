"""
Tests for the tabpilot.agents.store module.

This module tests:
- Session lifecycle (create, switch, delete, titles)
- Message mutation operations
- Dangling tool-call removal and retry slicing
- Snapshot and restore
"""

import pytest
from unittest.mock import Mock

from tabpilot.agents.exceptions import SessionNotFoundError
from tabpilot.agents.memory import (
    AssistantMessage,
    ContextMessage,
    ToolCallRequest,
    ToolMessage,
    UserMessage,
)
from tabpilot.agents.store import DEFAULT_TITLE, MessageStore


def call(call_id, name="open_url"):
    return ToolCallRequest(id=call_id, name=name, arguments='{"url":"http://x"}')


# =============================================================================
# Sessions
# =============================================================================

class TestSessions:
    """Tests for session lifecycle."""

    def test_create_session_becomes_active(self):
        store = MessageStore()

        session = store.create_session()

        assert store.active_session is session
        assert session.title == DEFAULT_TITLE
        assert session.messages == []

    def test_active_session_created_on_demand(self):
        store = MessageStore()

        assert store.active_session.id in store.sessions

    def test_switch_unknown_session(self):
        store = MessageStore()

        with pytest.raises(SessionNotFoundError):
            store.switch_session("missing")

    def test_delete_active_falls_back_to_latest(self):
        store = MessageStore()
        first = store.create_session()
        second = store.create_session()
        first.created_at, second.created_at = 1.0, 2.0
        third = store.create_session()
        third.created_at = 3.0

        store.delete_session(third.id)

        assert store.active_id == second.id

    def test_delete_last_session_creates_new(self):
        store = MessageStore()
        only = store.create_session()

        store.delete_session(only.id)

        assert len(store.sessions) == 1
        assert store.active_id != only.id

    def test_title_from_first_user_message(self, store):
        store.append(UserMessage(content="Find the cheapest flight to Lisbon in May"))
        store.update_title_from("Find the cheapest flight to Lisbon in May")

        assert store.active_session.title == "Find the cheapest flight to Lisbon in May"[:25]

        store.append(UserMessage(content="second"))
        store.update_title_from("second")

        assert store.active_session.title != "second"

    def test_clear_session_resets_approvals(self, store):
        session = store.active_session
        store.append(UserMessage(content="hi"))
        session.approval.session_wide = True
        session.approval.granted_tools.add("open_url")

        store.clear_session()

        assert session.messages == []
        assert not session.approval.session_wide
        assert session.approval.granted_tools == set()


# =============================================================================
# Messages
# =============================================================================

class TestMessageOperations:
    """Tests for append, update and edit."""

    def test_append_rejects_duplicate_id(self, store):
        message = store.append(UserMessage(content="hi"))

        with pytest.raises(ValueError):
            store.append(UserMessage(content="again", id=message.id))

    def test_update_by_id(self, store):
        placeholder = store.append(AssistantMessage())

        store.update_by_id(placeholder.id, {"content": "partial", "think": "hmm"})

        assert placeholder.content == "partial"
        assert placeholder.think == "hmm"

    def test_update_unknown_field(self, store):
        placeholder = store.append(AssistantMessage())

        with pytest.raises(AttributeError):
            store.update_by_id(placeholder.id, {"nope": 1})

    def test_streaming_update_does_not_persist(self):
        on_change = Mock()
        store = MessageStore(on_change=on_change)
        store.create_session()
        placeholder = store.append(AssistantMessage())
        on_change.reset_mock()

        store.update_by_id(placeholder.id, {"content": "x"}, persist=False)

        on_change.assert_not_called()

    def test_edit_user_message_updates_full_content(self, store):
        message = store.append(UserMessage(content="old", full_content="<ctx/>\n\nold"))

        store.edit_message(message.id, "new")

        assert message.content == "new"
        assert message.full_content == "new"

    def test_context_cards(self, store):
        store.append(UserMessage(content="hi"))
        card = store.append(ContextMessage(content="page", title="T", url="https://t"))

        assert store.context_cards() == [card]


# =============================================================================
# Protocol maintenance
# =============================================================================

class TestDanglingToolCalls:
    """Tests for remove_dangling_tool_calls."""

    def test_unanswered_call_removed(self, store):
        store.append(UserMessage(content="go"))
        store.append(AssistantMessage(tool_calls=[call("c1")]))
        store.append(AssistantMessage())

        removed = store.remove_dangling_tool_calls()

        assert removed == 1
        assert [m.role for m in store.messages()] == ["user", "assistant"]
        assert not store.messages()[-1].has_tool_calls

    def test_partially_answered_call_removed_with_results(self, store):
        store.append(UserMessage(content="go"))
        store.append(AssistantMessage(tool_calls=[call("c1"), call("c2")]))
        store.append(ToolMessage(content="ok", tool_call_id="c1", name="open_url"))

        removed = store.remove_dangling_tool_calls()

        assert removed == 2
        assert [m.role for m in store.messages()] == ["user"]

    def test_answered_calls_kept(self, store):
        store.append(UserMessage(content="go"))
        store.append(AssistantMessage(tool_calls=[call("c1")]))
        store.append(ToolMessage(content="ok", tool_call_id="c1", name="open_url"))
        store.append(AssistantMessage())

        assert store.remove_dangling_tool_calls() == 0
        assert len(store.messages()) == 4

    def test_context_card_between_results_ignored(self, store):
        store.append(UserMessage(content="go"))
        store.append(AssistantMessage(tool_calls=[call("c1"), call("c2")]))
        store.append(ToolMessage(content="ok", tool_call_id="c1", name="open_url"))
        store.append(ContextMessage(content="page", title="T", url="https://t"))
        store.append(ToolMessage(content="ok", tool_call_id="c2", name="open_url"))
        store.append(AssistantMessage())

        assert store.remove_dangling_tool_calls() == 0
        assert [m.role for m in store.messages()] == [
            "user", "assistant", "tool", "context", "tool", "assistant"
        ]


class TestPrepareRetry:
    """Tests for prepare_retry slicing."""

    def _history(self, store):
        store.append(UserMessage(content="go"))
        store.append(AssistantMessage(tool_calls=[call("c1")]))
        store.append(ToolMessage(content="ok", tool_call_id="c1", name="open_url"))
        store.append(AssistantMessage(content="done"))

    def test_retry_assistant_keeps_history_before_it(self, store):
        self._history(store)

        store.prepare_retry(3)

        assert [m.role for m in store.messages()] == ["user", "assistant", "tool"]

    def test_retry_user_keeps_it(self, store):
        self._history(store)

        store.prepare_retry(0)

        assert [m.role for m in store.messages()] == ["user"]

    def test_retry_assistant_with_tool_calls(self, store):
        self._history(store)

        store.prepare_retry(1)

        assert [m.role for m in store.messages()] == ["user"]

    def test_retry_out_of_range(self, store):
        with pytest.raises(IndexError):
            store.prepare_retry(5)


# =============================================================================
# Serialization
# =============================================================================

class TestSnapshot:
    """Tests for snapshot and restore."""

    def test_restore_round_trip(self, store):
        store.append(UserMessage(content="go", full_content="ctx\n\ngo"))
        store.append(AssistantMessage(think="plan", tool_calls=[call("c1")]))
        store.append(ToolMessage(content="ok", tool_call_id="c1", name="open_url"))
        store.active_session.approval.granted_tools.add("open_url")

        restored = MessageStore()
        restored.restore(store.snapshot())

        messages = restored.messages()
        assert restored.active_id == store.active_id
        assert messages[0].model_content == "ctx\n\ngo"
        assert messages[1].tool_calls[0].id == "c1"
        assert messages[2].tool_call_id == "c1"
        assert restored.active_session.approval.granted_tools == {"open_url"}

    def test_restore_empty(self):
        store = MessageStore()
        store.restore(None)

        assert store.sessions == {}
        assert store.active_id is None
