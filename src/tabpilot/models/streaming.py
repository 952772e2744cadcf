"""
Streaming protocol decoder for chat-completion server-sent events.

The model endpoint answers with newline-delimited ``data: `` lines, each
carrying a JSON chunk or the ``[DONE]`` terminator. ``StreamDecoder`` folds
those chunks into three channels:

- text: answer content, with inline ``<think>`` segments removed
- reasoning: explicit reasoning deltas plus inline ``<think>`` segments
- tool calls: structured fragments keyed by index, concatenated in order

Buffers only ever grow. A corrupt event line is skipped on its own; it never
aborts decoding.
"""

import codecs
import dataclasses
import json
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from tabpilot.agents.memory import NATIVE, ToolCallRequest

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"

# Field names that carry an explicit reasoning delta, depending on the backend
REASONING_FIELDS = ("reasoning_content", "reasoning")


@dataclasses.dataclass
class ToolCallFragment:
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclasses.dataclass
class StreamState:
    """Transient decode state for one in-flight model call."""

    text: str = ""
    reasoning: str = ""
    tool_fragments: Dict[int, ToolCallFragment] = dataclasses.field(default_factory=dict)
    in_reasoning_tag: bool = False
    reasoning_tag_closed: bool = False
    done: bool = False
    finish_reason: Optional[str] = None

    @property
    def collapse_reasoning(self) -> bool:
        """UI hint: fold the reasoning panel once the answer is underway."""
        return self.reasoning_tag_closed or (bool(self.text) and bool(self.reasoning))

    @property
    def expand_reasoning(self) -> bool:
        """UI hint: show reasoning while it is the only thing streaming."""
        return bool(self.reasoning) and not self.text


@dataclasses.dataclass
class DecodedResponse:
    """Finalized output of one streamed response."""

    text: str
    reasoning: str
    tool_calls: List[ToolCallRequest]
    tagged_reasoning: bool = False
    finish_reason: Optional[str] = None


def _partial_marker_suffix(text: str, markers) -> int:
    """Length of the longest tail of ``text`` that could start one of ``markers``."""
    longest = 0
    for marker in markers:
        for size in range(min(len(marker) - 1, len(text)), 0, -1):
            if text.endswith(marker[:size]):
                longest = max(longest, size)
                break
    return longest


class StreamDecoder:
    """Incremental decoder; feed it raw chunks, then call ``finalize``."""

    def __init__(self, on_event: Optional[Callable[[StreamState], None]] = None):
        """
        Args:
            on_event: Called with the current state after every applied event
                line, for live display of partial output.
        """
        self.state = StreamState()
        self._on_event = on_event
        self._line_buffer = ""
        self._carry = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def done(self) -> bool:
        return self.state.done

    def feed(self, chunk: Union[bytes, str]) -> int:
        """Consume a raw chunk; returns the number of events applied."""
        if self.state.done:
            return 0
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        self._line_buffer += chunk

        lines = self._line_buffer.split("\n")
        self._line_buffer = lines.pop()

        applied = 0
        for line in lines:
            if self.feed_line(line):
                applied += 1
            if self.state.done:
                break
        return applied

    def feed_line(self, line: str) -> bool:
        """Apply one event line. Returns True if it changed the state."""
        if self.state.done:
            return False
        trimmed = line.strip()
        if not trimmed.startswith(DATA_PREFIX):
            return False
        payload = trimmed[len(DATA_PREFIX):]
        if payload == DONE_SENTINEL:
            self.state.done = True
            return False

        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed stream event: {payload[:80]}")
            return False

        try:
            applied = self._apply(data)
        except (AttributeError, TypeError, KeyError) as e:
            logger.debug(f"Skipping stream event with unexpected shape: {e}")
            return False
        if not applied:
            return False
        if self._on_event is not None:
            self._on_event(self.state)
        return True

    def finalize(self) -> DecodedResponse:
        """Flush held-back text and build the final response."""
        if self._line_buffer.strip():
            self.feed_line(self._line_buffer)
        self._line_buffer = ""
        if self._carry:
            if self.state.in_reasoning_tag:
                self.state.reasoning += self._carry
            else:
                self.state.text += self._carry
            self._carry = ""

        tool_calls = []
        for index in sorted(self.state.tool_fragments):
            fragment = self.state.tool_fragments[index]
            tool_calls.append(
                ToolCallRequest(
                    id=fragment.id or f"call_{uuid.uuid4().hex[:12]}",
                    name=fragment.name,
                    arguments=fragment.arguments,
                    provenance=NATIVE,
                )
            )

        return DecodedResponse(
            text=self.state.text,
            reasoning=self.state.reasoning,
            tool_calls=tool_calls,
            tagged_reasoning=self.state.reasoning_tag_closed,
            finish_reason=self.state.finish_reason,
        )

    # --- Event folding ---

    def _apply(self, data: Any) -> bool:
        if not isinstance(data, dict):
            return False
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return False
        choice = choices[0]
        if choice.get("finish_reason"):
            self.state.finish_reason = choice["finish_reason"]

        delta = choice.get("delta")
        if not isinstance(delta, dict):
            return False

        for field in REASONING_FIELDS:
            value = delta.get(field)
            if isinstance(value, str) and value:
                self.state.reasoning += value
                break

        content = delta.get("content")
        if isinstance(content, str) and content:
            self._fold_content(content)

        tool_calls = delta.get("tool_calls")
        if isinstance(tool_calls, list):
            for position, tc in enumerate(tool_calls):
                if isinstance(tc, dict):
                    self._fold_tool_fragment(tc, position)
        return True

    def _fold_content(self, part: str) -> None:
        state = self.state
        remaining = self._carry + part
        self._carry = ""

        while remaining:
            if state.in_reasoning_tag:
                close_idx = remaining.find(THINK_CLOSE)
                if close_idx == -1:
                    keep = _partial_marker_suffix(remaining, (THINK_CLOSE,))
                    state.reasoning += remaining[:len(remaining) - keep]
                    self._carry = remaining[len(remaining) - keep:]
                    return
                state.reasoning += remaining[:close_idx]
                state.in_reasoning_tag = False
                state.reasoning_tag_closed = True
                remaining = remaining[close_idx + len(THINK_CLOSE):]
                continue

            open_idx = remaining.find(THINK_OPEN)
            close_idx = remaining.find(THINK_CLOSE)
            if close_idx != -1 and (open_idx == -1 or close_idx < open_idx):
                # Some backends omit the opening marker and only close it
                if state.reasoning_tag_closed:
                    state.text += remaining[:close_idx]
                else:
                    state.reasoning += remaining[:close_idx]
                    state.reasoning_tag_closed = True
                remaining = remaining[close_idx + len(THINK_CLOSE):]
                continue
            if open_idx == -1:
                keep = _partial_marker_suffix(remaining, (THINK_OPEN, THINK_CLOSE))
                state.text += remaining[:len(remaining) - keep]
                self._carry = remaining[len(remaining) - keep:]
                return
            state.text += remaining[:open_idx]
            state.in_reasoning_tag = True
            remaining = remaining[open_idx + len(THINK_OPEN):]

    def _fold_tool_fragment(self, tc: Dict[str, Any], position: int) -> None:
        index = tc.get("index")
        if not isinstance(index, int):
            index = position
        fragment = self.state.tool_fragments.setdefault(index, ToolCallFragment())

        if tc.get("id") and not fragment.id:
            fragment.id = tc["id"]
        function = tc.get("function")
        if not isinstance(function, dict):
            return
        if isinstance(function.get("name"), str):
            fragment.name += function["name"]
        if isinstance(function.get("arguments"), str):
            fragment.arguments += function["arguments"]
