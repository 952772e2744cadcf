"""Tool-call normalization, approval and dispatch."""

from .approval import (
    ApprovalDecision,
    ApprovalGate,
    ApprovalRequester,
    ApprovalScope,
    CallbackApprovalRequester,
    StaticApprovalRequester,
)
from .tool_calls import ToolCallNormalizer, extract_tagged_calls, strip_tool_call_tags
from .tool_executor import BrowserToolExecutor

__all__ = [
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalRequester",
    "ApprovalScope",
    "CallbackApprovalRequester",
    "StaticApprovalRequester",
    "ToolCallNormalizer",
    "extract_tagged_calls",
    "strip_tool_call_tags",
    "BrowserToolExecutor",
]
