"""
TabPilot - an LLM agent that operates a web page.

Streams model output, normalizes tool calls, gates dangerous browser actions
behind user approval and executes them through an automation surface.
"""

__version__ = "0.1.0"

from .agents import AssistantMessage, MessageStore, TabPilotError, UserMessage
from .coordination import AgentEngine, EngineConfig, EventBus, LoopOutcome

__all__ = [
    "__version__",
    # Agents
    "AssistantMessage",
    "MessageStore",
    "TabPilotError",
    "UserMessage",
    # Coordination
    "AgentEngine",
    "EngineConfig",
    "EventBus",
    "LoopOutcome",
]
