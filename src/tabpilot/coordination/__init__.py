"""
Coordination layer: configuration, the agent loop, approvals, cancellation
and the engine entry points.
"""

from .agent_loop import AgentLoopController, LoopOutcome
from .config import EngineConfig, VisionConfig
from .context import EngineContext
from .engine import AgentEngine
from .event_bus import EventBus
from .watchdog import CancellationToken, WatchdogCoordinator

__all__ = [
    "AgentEngine",
    "AgentLoopController",
    "LoopOutcome",
    "EngineConfig",
    "VisionConfig",
    "EngineContext",
    "EventBus",
    "CancellationToken",
    "WatchdogCoordinator",
]
