"""Status events published on the event bus."""

from .events import (
    AssistantDeltaEvent,
    ErrorNoticeEvent,
    ExecutionStatusEvent,
    FinalResponseEvent,
    StatusEvent,
    SystemNoticeEvent,
    ToolCallEvent,
    TurnStateEvent,
)

__all__ = [
    "StatusEvent",
    "TurnStateEvent",
    "AssistantDeltaEvent",
    "ToolCallEvent",
    "ExecutionStatusEvent",
    "SystemNoticeEvent",
    "ErrorNoticeEvent",
    "FinalResponseEvent",
]
