"""
Status events emitted by the engine during a turn.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional
import time
import uuid


@dataclass
class StatusEvent:
    """Base class for all status events."""
    session_id: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()), kw_only=True)
    timestamp: float = field(default_factory=time.time, kw_only=True)

    @property
    def event_type(self) -> str:
        return self.__class__.__name__.replace("Event", "").lower()


@dataclass
class TurnStateEvent(StatusEvent):
    """Generation started or finished."""
    generating: bool
    agent_active: bool = False


@dataclass
class AssistantDeltaEvent(StatusEvent):
    """Partial assistant output, emitted after every decoded stream event."""
    message_id: str
    content: str
    think: str
    collapse_think: bool = False
    expand_think: bool = False


@dataclass
class ToolCallEvent(StatusEvent):
    """Tool being called."""
    tool_name: str
    tool_call_id: str
    status: Literal["started", "completed", "failed", "denied"]
    arguments: Optional[str] = None
    result_preview: Optional[str] = None
    duration: Optional[float] = None


@dataclass
class ExecutionStatusEvent(StatusEvent):
    """Show or hide the "executing tools" indicator."""
    visible: bool
    text: str = ""


@dataclass
class SystemNoticeEvent(StatusEvent):
    """System-visible message, such as a cancellation reason."""
    text: str


@dataclass
class ErrorNoticeEvent(StatusEvent):
    """Inline, dismissible error notice."""
    message: str
    retryable: bool = True
    error_code: str = ""
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FinalResponseEvent(StatusEvent):
    """Turn finished."""
    final_response: str
    total_duration: float
    total_steps: int
    outcome: Literal["completed", "loop_limit", "cancelled", "failed"]

    @property
    def success(self) -> bool:
        return self.outcome in ("completed", "loop_limit")
