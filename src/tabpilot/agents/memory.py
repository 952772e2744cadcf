"""
Message data model for agent sessions.

Messages form a tagged union keyed by ``role``: one dataclass per role, each
with its own required and optional fields. ``message_from_dict`` is the single
place that maps a serialized role back to its variant.
"""

import dataclasses
import itertools
import time
import uuid
from typing import Any, ClassVar, Dict, List, Optional, Set, Type

from .exceptions import MessageFormatError

NATIVE = "native"
EXTRACTED = "extracted"

_id_counter = itertools.count(1)


def new_message_id(prefix: str = "msg") -> str:
    """Generate a message id unique within the process (and therefore a session)."""
    return f"{prefix}-{int(time.time() * 1000)}-{next(_id_counter)}-{uuid.uuid4().hex[:6]}"


@dataclasses.dataclass
class ToolCallRequest:
    """A tool invocation requested by the model.

    ``arguments`` is the raw argument text exactly as streamed or scraped; it is
    not guaranteed to be valid JSON.
    """

    id: str
    name: str
    arguments: str = "{}"
    provenance: str = NATIVE

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the OpenAI-compatible ``tool_calls`` entry."""
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                # An empty arguments string is rejected by most endpoints
                "arguments": self.arguments or "{}",
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCallRequest":
        """Create from the OpenAI-compatible format."""
        function_data = data.get("function", {})
        return cls(
            id=data.get("id", ""),
            name=function_data.get("name", ""),
            arguments=function_data.get("arguments", "{}"),
            provenance=data.get("provenance", NATIVE),
        )

    @property
    def is_extracted(self) -> bool:
        return self.provenance == EXTRACTED


# --- Message variants ---


@dataclasses.dataclass
class Message:
    """Fields shared by every message variant."""

    role: ClassVar[str] = ""
    id_prefix: ClassVar[str] = "msg"

    content: str = ""
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = new_message_id(self.id_prefix)
        if self.content is None:
            self.content = ""

    def to_dict(self) -> Dict[str, Any]:
        data = {"role": self.role}
        data.update(dataclasses.asdict(self))
        return data


@dataclasses.dataclass
class SystemMessage(Message):
    role: ClassVar[str] = "system"
    id_prefix: ClassVar[str] = "sys"


@dataclasses.dataclass
class UserMessage(Message):
    """A user turn.

    ``content`` is what the user typed and sees; ``full_content`` additionally
    carries inlined page context and is what the model receives.
    """

    role: ClassVar[str] = "user"
    id_prefix: ClassVar[str] = "msg"

    full_content: Optional[str] = None

    @property
    def model_content(self) -> str:
        if self.full_content and self.full_content != self.content:
            return self.full_content
        return self.content


@dataclasses.dataclass
class AssistantMessage(Message):
    role: ClassVar[str] = "assistant"
    id_prefix: ClassVar[str] = "ai"

    think: str = ""
    tool_calls: Optional[List[ToolCallRequest]] = None
    tagged_reasoning: bool = False

    def __post_init__(self):
        super().__post_init__()
        if self.tool_calls:
            self.tool_calls = [
                tc if isinstance(tc, ToolCallRequest) else ToolCallRequest.from_dict(tc)
                for tc in self.tool_calls
            ]

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def is_placeholder(self) -> bool:
        """An empty assistant message that only anchors live streaming."""
        return not self.content and not self.tool_calls

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["tool_calls"] = (
            [tc.to_dict() | {"provenance": tc.provenance} for tc in self.tool_calls]
            if self.tool_calls
            else None
        )
        return data


@dataclasses.dataclass
class ToolMessage(Message):
    role: ClassVar[str] = "tool"
    id_prefix: ClassVar[str] = "tool"

    tool_call_id: str = ""
    name: str = "tool_result"

    def __post_init__(self):
        super().__post_init__()
        if not self.tool_call_id:
            raise MessageFormatError("Tool message requires a tool_call_id", role=self.role)


@dataclasses.dataclass
class ContextMessage(Message):
    """A permanent memory card: page context injected into every request."""

    role: ClassVar[str] = "context"
    id_prefix: ClassVar[str] = "ctx"

    title: str = ""
    url: str = ""
    meta: str = ""


MESSAGE_TYPES: Dict[str, Type[Message]] = {
    cls.role: cls
    for cls in (SystemMessage, UserMessage, AssistantMessage, ToolMessage, ContextMessage)
}


def message_from_dict(data: Dict[str, Any]) -> Message:
    """Rebuild the message variant matching ``data['role']``."""
    role = data.get("role")
    message_cls = MESSAGE_TYPES.get(role)
    if message_cls is None:
        raise MessageFormatError(f"Unknown message role: {role!r}", role=role)

    field_names = {f.name for f in dataclasses.fields(message_cls)}
    kwargs = {k: v for k, v in data.items() if k in field_names}
    return message_cls(**kwargs)


# --- Session state ---


@dataclasses.dataclass
class ApprovalState:
    """Per-session authorization grants for dangerous tools."""

    granted_tools: Set[str] = dataclasses.field(default_factory=set)
    granted_turn_tools: Set[str] = dataclasses.field(default_factory=set)
    session_wide: bool = False
    turn_wide: bool = False

    def reset_turn(self) -> None:
        self.granted_turn_tools.clear()
        self.turn_wide = False

    def reset(self) -> None:
        self.granted_tools.clear()
        self.reset_turn()
        self.session_wide = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "granted_tools": sorted(self.granted_tools),
            "granted_turn_tools": sorted(self.granted_turn_tools),
            "session_wide": self.session_wide,
            "turn_wide": self.turn_wide,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ApprovalState":
        data = data or {}
        return cls(
            granted_tools=set(data.get("granted_tools", [])),
            granted_turn_tools=set(data.get("granted_turn_tools", [])),
            session_wide=bool(data.get("session_wide", False)),
            turn_wide=bool(data.get("turn_wide", False)),
        )


@dataclasses.dataclass
class Session:
    id: str
    title: str = "New chat"
    created_at: float = dataclasses.field(default_factory=time.time)
    messages: List[Message] = dataclasses.field(default_factory=list)
    approval: ApprovalState = dataclasses.field(default_factory=ApprovalState)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at,
            "messages": [m.to_dict() for m in self.messages],
            "approval": self.approval.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=data["id"],
            title=data.get("title", "New chat"),
            created_at=data.get("created_at", time.time()),
            messages=[message_from_dict(m) for m in data.get("messages", [])],
            approval=ApprovalState.from_dict(data.get("approval")),
        )
