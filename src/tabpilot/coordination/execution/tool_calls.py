"""
Tool-Call Normalizer.

A model reports tool calls either natively (structured ``tool_calls`` deltas)
or, on some backends, as a tag grammar embedded in its text:

    <|tool_call_begin|>functions.open_url:0<|tool_call_argument_begin|>{"url": "..."}<|tool_call_end|>

Each encoding is a ``ToolCallSource``. ``ToolCallNormalizer`` asks its sources
in order and the first one that yields any call wins, so native calls always
take precedence and the two encodings are never mixed in one turn.
"""

import dataclasses
import itertools
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from tabpilot.agents.memory import EXTRACTED, NATIVE, ToolCallRequest
from tabpilot.models.streaming import DecodedResponse

logger = logging.getLogger(__name__)

TOOL_CALL_BEGIN = "<|tool_call_begin|>"

TAGGED_CALL_PATTERN = re.compile(
    r"<\|tool_call_begin\|>([\s\S]*?)<\|tool_call_argument_begin\|>([\s\S]*?)"
    r"(?:<\|tool_call_argument_end\|>[\s\S]*?)?<\|tool_call_end\|>",
    re.IGNORECASE,
)
TOOL_TAGS_PATTERN = re.compile(
    r"<\|tool_calls_section_begin\|>[\s\S]*?<\|tool_calls_section_end\|>"
    r"|<\|tool_call_begin\|>[\s\S]*?<\|tool_call_end\|>",
    re.IGNORECASE,
)
_FUNCTIONS_PREFIX = re.compile(r"^functions?\.", re.IGNORECASE)
_INDEX_SUFFIX = re.compile(r":\d+$")

_extracted_counter = itertools.count()


def clean_tool_name(raw_name: str) -> str:
    """Remove backend artifacts such as ``functions.`` and ``:0`` from a name."""
    name = raw_name.strip()
    name = _FUNCTIONS_PREFIX.sub("", name)
    name = _INDEX_SUFFIX.sub("", name)
    return name.strip()


def extract_tagged_calls(text: Optional[str]) -> List[ToolCallRequest]:
    """Scrape tag-grammar tool calls from ``text``. Calls without a name are dropped."""
    if not text or TOOL_CALL_BEGIN not in text.lower():
        return []

    calls = []
    for match in TAGGED_CALL_PATTERN.finditer(text):
        name = clean_tool_name(match.group(1))
        if not name:
            continue
        arguments = match.group(2).strip() or "{}"
        calls.append(
            ToolCallRequest(
                id=f"custom-tool-{int(time.time() * 1000)}-{next(_extracted_counter)}",
                name=name,
                arguments=arguments,
                provenance=EXTRACTED,
            )
        )
    return calls


def strip_tool_call_tags(text: str) -> str:
    """Remove tool-call tag blocks before content is replayed to the model.

    Text without any tag block is returned as-is.
    """
    if not text:
        return text
    stripped, count = TOOL_TAGS_PATTERN.subn("", text)
    if count == 0:
        return text
    return stripped.strip()


class ToolCallSource(ABC):
    """One encoding of tool calls in a decoded response."""

    provenance: str = NATIVE

    @abstractmethod
    def extract(self, response: DecodedResponse) -> List[ToolCallRequest]:
        pass


class NativeToolCallSource(ToolCallSource):
    provenance = NATIVE

    def extract(self, response: DecodedResponse) -> List[ToolCallRequest]:
        return list(response.tool_calls)


class TaggedTextToolCallSource(ToolCallSource):
    """Scrapes the text channel first, then the reasoning channel."""

    provenance = EXTRACTED

    def extract(self, response: DecodedResponse) -> List[ToolCallRequest]:
        calls = extract_tagged_calls(response.text)
        if calls:
            logger.info(f"Extracted {len(calls)} tool call(s) from content")
        from_reasoning = extract_tagged_calls(response.reasoning)
        if from_reasoning:
            logger.info(f"Extracted {len(from_reasoning)} tool call(s) from reasoning")
        return calls + from_reasoning


@dataclasses.dataclass
class NormalizedCalls:
    calls: List[ToolCallRequest]
    provenance: Optional[str] = None

    @property
    def synthetic(self) -> bool:
        """True when the calls were recovered from free text."""
        return self.provenance == EXTRACTED and bool(self.calls)

    def __bool__(self) -> bool:
        return bool(self.calls)


class ToolCallNormalizer:
    def __init__(self, sources: Optional[Sequence[ToolCallSource]] = None):
        self.sources = list(sources) if sources is not None else [
            NativeToolCallSource(),
            TaggedTextToolCallSource(),
        ]

    def normalize(self, response: DecodedResponse) -> NormalizedCalls:
        for source in self.sources:
            calls = source.extract(response)
            if calls:
                return NormalizedCalls(calls=calls, provenance=source.provenance)
        return NormalizedCalls(calls=[])
