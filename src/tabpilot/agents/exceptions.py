"""
TabPilot Exception Hierarchy

This module defines the exception hierarchy for the agent execution engine,
providing specific error types for the failure categories the engine
distinguishes while running a turn:

1. Transport errors (model endpoint unreachable or non-2xx)
2. Tool argument and tool execution errors (converted to tool results)
3. Protocol invariant violations (message history out of protocol)
4. Cancellation (user interaction, tab switch, stop button)

Every error carries a standardized error code, a user-facing message and
optional context so it can be logged or serialized uniformly.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional


class ErrorAction(Enum):
    """What action can be taken for this error."""

    # User can potentially fix and retry
    USER_FIXABLE = "user_fixable"

    # Cannot be fixed on-the-fly, must terminate
    TERMINAL = "terminal"

    # System should retry automatically (no user interaction)
    AUTO_RETRY = "auto_retry"


class TabPilotError(Exception):
    """
    Base exception class for all engine errors.

    Attributes:
        error_code: Unique error code for programmatic handling
        session_id: Session where the error occurred (if applicable)
        timestamp: When the error occurred
        context: Additional context information
        user_message: User-friendly error message
        developer_message: Detailed technical error message
        suggestion: Suggested fix or next steps (if applicable)
        action: What the caller may do about the error
    """

    action: ErrorAction = ErrorAction.TERMINAL

    def __init__(
        self,
        message: str,
        error_code: str = "TABPILOT_ERROR",
        session_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        suggestion: Optional[str] = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.session_id = session_id
        self.timestamp = time.time()
        self.context = context or {}
        self.user_message = user_message or message
        self.developer_message = message
        self.suggestion = suggestion

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.developer_message,
            "user_message": self.user_message,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "context": self.context,
            "suggestion": self.suggestion,
            "action": self.action.value,
        }

    def __str__(self) -> str:
        """String representation with context."""
        parts = [f"[{self.error_code}]"]
        if self.session_id:
            parts.append(f"Session:{self.session_id[:8]}")
        parts.append(self.developer_message)
        return " ".join(parts)


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationError(TabPilotError):
    """
    Raised when the engine configuration is missing a value an operation needs.

    Examples:
    - No API key configured for the model endpoint
    - Vision fallback requested without a vision API key
    """

    action = ErrorAction.USER_FIXABLE

    def __init__(self, message: str, config_field: Optional[str] = None, **kwargs):
        self.config_field = config_field

        context = kwargs.pop("context", {})
        if config_field:
            context["config_field"] = config_field

        super().__init__(
            message,
            error_code="CONFIGURATION_ERROR",
            context=context,
            suggestion=kwargs.pop("suggestion", "Update the engine settings and retry."),
            **kwargs
        )


# =============================================================================
# MESSAGE HANDLING ERRORS
# =============================================================================

class MessageError(TabPilotError):
    """Base class for message handling and validation errors."""

    def __init__(self, message: str, **kwargs):
        error_code = kwargs.pop("error_code", "MESSAGE_ERROR")
        super().__init__(message, error_code=error_code, **kwargs)


class MessageFormatError(MessageError):
    """
    Raised when a serialized message cannot be turned back into a Message.

    Examples:
    - Unknown role
    - Tool message without a tool_call_id
    """

    def __init__(self, message: str, role: Optional[str] = None, **kwargs):
        self.role = role

        context = kwargs.pop("context", {})
        if role is not None:
            context["role"] = role

        super().__init__(
            message,
            error_code="MESSAGE_FORMAT_ERROR",
            context=context,
            **kwargs
        )


class ProtocolViolationError(MessageError):
    """
    Raised when the message log is out of protocol for the requested operation.

    The agent loop treats this as fatal for the current turn and exits
    without writing to history.
    """

    def __init__(self, message: str, last_role: Optional[str] = None, **kwargs):
        self.last_role = last_role

        context = kwargs.pop("context", {})
        if last_role is not None:
            context["last_role"] = last_role

        super().__init__(
            message,
            error_code="PROTOCOL_VIOLATION_ERROR",
            context=context,
            **kwargs
        )


# =============================================================================
# MODEL ENDPOINT ERRORS
# =============================================================================

class ModelError(TabPilotError):
    """Base class for model endpoint errors."""

    def __init__(self, message: str, **kwargs):
        error_code = kwargs.pop("error_code", "MODEL_ERROR")
        super().__init__(message, error_code=error_code, **kwargs)


class ModelAPIError(ModelError):
    """
    Raised on transport failures: non-2xx status or connection errors.

    Transport errors abort the current turn and are surfaced to the user
    with a retry affordance; they are never retried automatically.
    """

    action = ErrorAction.USER_FIXABLE

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_text: Optional[str] = None,
        api_endpoint: Optional[str] = None,
        **kwargs
    ):
        self.status_code = status_code
        self.response_text = response_text
        self.api_endpoint = api_endpoint

        context = kwargs.pop("context", {})
        context.update({
            "status_code": status_code,
            "api_endpoint": api_endpoint,
        })
        if response_text:
            context["response_preview"] = response_text[:200]

        super().__init__(
            message,
            error_code="MODEL_API_ERROR",
            context=context,
            suggestion=kwargs.pop("suggestion", "Check the endpoint URL, API key and network, then retry."),
            **kwargs
        )


# =============================================================================
# TOOL ERRORS
# =============================================================================

class ToolCallError(TabPilotError):
    """Base class for tool call errors."""

    def __init__(self, message: str, tool_name: Optional[str] = None, **kwargs):
        self.tool_name = tool_name

        context = kwargs.pop("context", {})
        if tool_name:
            context["tool_name"] = tool_name

        error_code = kwargs.pop("error_code", "TOOL_CALL_ERROR")
        super().__init__(message, error_code=error_code, context=context, **kwargs)


class ToolArgumentError(ToolCallError):
    """
    Raised when tool argument text cannot be parsed into a JSON object.

    Converted into the tool's textual result; the loop continues so the
    model sees its own mistake.
    """

    def __init__(self, message: str, raw_arguments: Optional[str] = None, **kwargs):
        self.raw_arguments = raw_arguments

        context = kwargs.pop("context", {})
        if raw_arguments is not None:
            context["raw_arguments"] = raw_arguments[:200]

        super().__init__(
            message,
            error_code="TOOL_ARGUMENT_ERROR",
            context=context,
            **kwargs
        )


class ToolExecutionError(ToolCallError):
    """
    Raised by automation surfaces when a page operation fails.

    Caught at the dispatch boundary and converted into a textual result.
    """

    def __init__(self, message: str, execution_error: Optional[str] = None, **kwargs):
        self.execution_error = execution_error

        context = kwargs.pop("context", {})
        if execution_error:
            context["execution_error"] = execution_error

        super().__init__(
            message,
            error_code="TOOL_EXECUTION_ERROR",
            context=context,
            **kwargs
        )


# =============================================================================
# STATE ERRORS
# =============================================================================

class SessionNotFoundError(TabPilotError):
    """Raised when an operation references a session the store does not hold."""

    def __init__(self, message: str, session_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code="SESSION_NOT_FOUND_ERROR",
            session_id=session_id,
            suggestion="Start a new session or check the session ID.",
            **kwargs
        )


# =============================================================================
# CANCELLATION
# =============================================================================

class TurnCancelledError(TabPilotError):
    """
    Raised at a suspension point after the turn's cancellation token fired.

    Distinguished from every other error: callers show only the
    cancellation reason, never an error notice.
    """

    def __init__(self, reason: str = "Generation stopped.", **kwargs):
        self.reason = reason
        super().__init__(
            reason,
            error_code="TURN_CANCELLED",
            **kwargs
        )
