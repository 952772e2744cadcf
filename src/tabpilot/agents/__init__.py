"""
Session data for the agent: exceptions, message types and the message store.
"""

from .exceptions import (
    ConfigurationError,
    MessageFormatError,
    ModelAPIError,
    ProtocolViolationError,
    SessionNotFoundError,
    TabPilotError,
    ToolArgumentError,
    ToolExecutionError,
    TurnCancelledError,
)
from .memory import (
    ApprovalState,
    AssistantMessage,
    ContextMessage,
    Message,
    Session,
    SystemMessage,
    ToolCallRequest,
    ToolMessage,
    UserMessage,
    message_from_dict,
)
from .store import MessageStore

__all__ = [
    # Exceptions
    "TabPilotError",
    "ConfigurationError",
    "MessageFormatError",
    "ProtocolViolationError",
    "ModelAPIError",
    "ToolArgumentError",
    "ToolExecutionError",
    "SessionNotFoundError",
    "TurnCancelledError",
    # Messages
    "Message",
    "SystemMessage",
    "UserMessage",
    "AssistantMessage",
    "ToolMessage",
    "ContextMessage",
    "ToolCallRequest",
    "message_from_dict",
    # Session state
    "ApprovalState",
    "Session",
    "MessageStore",
]
