"""
Shared fakes for the tabpilot test suite.

Nothing here touches the network or a real browser:
- FakeSurface records every automation call and returns canned results
- ScriptedTransport replays pre-chunked server-sent event streams
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from tabpilot.agents.store import MessageStore
from tabpilot.coordination.config import EngineConfig
from tabpilot.coordination.engine import AgentEngine
from tabpilot.coordination.event_bus import EventBus
from tabpilot.coordination.execution.approval import ApprovalScope, StaticApprovalRequester
from tabpilot.environment.automation import (
    AutomationSurface,
    ClickOutcome,
    PageContext,
    PageSnapshot,
    SnapshotElement,
)
from tabpilot.models.client import ChatTransport


# =============================================================================
# Stream helpers
# =============================================================================

def sse(delta: Dict[str, Any], finish_reason: Optional[str] = None) -> str:
    """One ``data:`` line carrying ``delta``."""
    choice: Dict[str, Any] = {"index": 0, "delta": delta}
    if finish_reason:
        choice["finish_reason"] = finish_reason
    return f"data: {json.dumps({'choices': [choice]})}\n"


DONE = "data: [DONE]\n"


def text_stream(*parts: str) -> List[str]:
    return [sse({"content": part}) for part in parts] + [DONE]


def tool_call_stream(call_id: str, name: str, arguments: str, index: int = 0) -> List[str]:
    """A native tool call split over three fragments."""
    half = len(arguments) // 2
    return [
        sse({"tool_calls": [{"index": index, "id": call_id, "function": {"name": name, "arguments": ""}}]}),
        sse({"tool_calls": [{"index": index, "function": {"arguments": arguments[:half]}}]}),
        sse({"tool_calls": [{"index": index, "function": {"arguments": arguments[half:]}}]}, "tool_calls"),
        DONE,
    ]


# =============================================================================
# Fakes
# =============================================================================

class ScriptedTransport(ChatTransport):
    """Replays one scripted response per request.

    When the script runs out the last response repeats. With ``hang=True``
    the stream stalls after its chunks until the reader is cancelled.
    """

    def __init__(self, responses: List[List[str]], hang: bool = False):
        self.responses = responses
        self.hang = hang
        self.payloads: List[Dict[str, Any]] = []
        self.closed = False
        self.started = asyncio.Event()

    @property
    def calls(self) -> int:
        return len(self.payloads)

    async def stream_chunks(self, payload):
        self.payloads.append(payload)
        index = min(len(self.payloads) - 1, len(self.responses) - 1)
        for chunk in self.responses[index]:
            yield chunk.encode("utf-8")
        self.started.set()
        if self.hang:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self.closed = True


class FakeSurface(AutomationSurface):
    def __init__(
        self,
        elements: Optional[List[SnapshotElement]] = None,
        navigate_on_click: bool = False,
        fail_with: Optional[Exception] = None,
        context: Optional[PageContext] = None,
    ):
        self.elements = elements if elements is not None else [
            SnapshotElement(1, "button", "Search"),
            SnapshotElement(2, "input", "Query"),
        ]
        self.navigate_on_click = navigate_on_click
        self.fail_with = fail_with
        self.context = context
        self.calls: List[tuple] = []
        self.overlay_clears = 0

    def _record(self, *call):
        self.calls.append(call)
        if self.fail_with is not None:
            raise self.fail_with

    async def snapshot(self) -> PageSnapshot:
        self._record("snapshot")
        return PageSnapshot(self.elements, title="Example", url="https://example.com")

    async def click(self, element_id: int) -> ClickOutcome:
        self._record("click", element_id)
        if self.navigate_on_click:
            return ClickOutcome(
                f"Clicked element {element_id}; navigated to https://example.com/next",
                navigated=True,
                url="https://example.com/next",
            )
        return ClickOutcome(f"Clicked element {element_id}")

    async def type_text(self, element_id: int, text: str, press_enter: bool = False) -> str:
        self._record("type_text", element_id, text, press_enter)
        return f"Typed into element {element_id}"

    async def open_url(self, url: str) -> str:
        self._record("open_url", url)
        return f"Opened URL: {url}. Title is \"Example\"."

    async def read_content(self) -> str:
        self._record("read_content")
        return 'Title is "Example". Page content summary:\nHello'

    async def screenshot(self) -> str:
        self._record("screenshot")
        return "data:image/jpeg;base64,AAAA"

    async def clear_overlay(self) -> None:
        self.overlay_clears += 1

    async def page_context(self, limit: int) -> Optional[PageContext]:
        return self.context


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def config():
    return EngineConfig(api_key="test-key")


@pytest.fixture
def store():
    store = MessageStore()
    store.create_session()
    return store


@pytest.fixture
def surface():
    return FakeSurface()


@pytest.fixture
def make_engine(config, surface):
    """Factory for a fully wired engine around the fakes."""

    async def _make(responses, scope=ApprovalScope.SESSION, requester=None, **kwargs):
        transport = ScriptedTransport(responses, hang=kwargs.pop("hang", False))
        engine = await AgentEngine.create(
            kwargs.pop("config", config),
            kwargs.pop("surface", surface),
            requester=requester or StaticApprovalRequester(scope),
            transport=transport,
            event_bus=EventBus(),
            **kwargs,
        )
        return engine, transport

    return _make
