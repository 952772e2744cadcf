"""
Approval Gate for dangerous tools.

Dangerous tools (page mutation or navigation) run only with user consent.
Consent comes from a standing grant in the session's ``ApprovalState`` or from
an explicit decision requested through an ``ApprovalRequester``. Everything
else bypasses the gate without ever suspending.
"""

import dataclasses
import inspect
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from tabpilot.agents.memory import ApprovalState
from tabpilot.environment.tools import DANGEROUS_TOOLS

logger = logging.getLogger(__name__)


class ApprovalScope(str, Enum):
    DENY = "deny"
    ONCE = "once"
    TURN = "turn"
    SESSION = "session"


@dataclasses.dataclass(frozen=True)
class ApprovalDecision:
    approved: bool
    scope: ApprovalScope
    prompted: bool = False

    @classmethod
    def from_scope(cls, scope: Any) -> "ApprovalDecision":
        scope = ApprovalScope(scope)
        return cls(approved=scope is not ApprovalScope.DENY, scope=scope, prompted=True)


class ApprovalRequester(ABC):
    """User-decision collaborator. May wait indefinitely for an answer."""

    @abstractmethod
    async def request_approval(self, tool_name: str, arguments: Dict[str, Any]) -> ApprovalDecision:
        pass


class CallbackApprovalRequester(ApprovalRequester):
    """Adapts a plain or async callable returning a scope or a decision."""

    def __init__(self, callback: Callable[[str, Dict[str, Any]], Any]):
        self.callback = callback

    async def request_approval(self, tool_name: str, arguments: Dict[str, Any]) -> ApprovalDecision:
        result = self.callback(tool_name, arguments)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, ApprovalDecision):
            return result
        return ApprovalDecision.from_scope(result)


class StaticApprovalRequester(ApprovalRequester):
    """Always answers with the same scope; used for unattended runs."""

    def __init__(self, scope: ApprovalScope = ApprovalScope.DENY):
        self.scope = ApprovalScope(scope)

    async def request_approval(self, tool_name: str, arguments: Dict[str, Any]) -> ApprovalDecision:
        return ApprovalDecision.from_scope(self.scope)


Guard = Callable[[Awaitable[ApprovalDecision]], Awaitable[ApprovalDecision]]


class ApprovalGate:
    def __init__(
        self,
        requester: Optional[ApprovalRequester] = None,
        dangerous_tools: Iterable[str] = DANGEROUS_TOOLS,
    ):
        self.requester = requester or StaticApprovalRequester(ApprovalScope.DENY)
        self.dangerous_tools = frozenset(dangerous_tools)

    def requires_approval(self, tool_name: str) -> bool:
        return tool_name in self.dangerous_tools

    @staticmethod
    def is_preauthorized(state: ApprovalState, tool_name: str) -> bool:
        return (
            state.session_wide
            or state.turn_wide
            or tool_name in state.granted_tools
            or tool_name in state.granted_turn_tools
        )

    async def authorize(
        self,
        state: ApprovalState,
        tool_name: str,
        arguments: Dict[str, Any],
        guard: Optional[Guard] = None,
    ) -> ApprovalDecision:
        """Decide whether ``tool_name`` may run now.

        ``guard`` wraps the user-decision wait so it can be cancelled with the
        turn.
        """
        if not self.requires_approval(tool_name):
            return ApprovalDecision(approved=True, scope=ApprovalScope.ONCE)
        if self.is_preauthorized(state, tool_name):
            session_grant = state.session_wide or tool_name in state.granted_tools
            return ApprovalDecision(
                approved=True,
                scope=ApprovalScope.SESSION if session_grant else ApprovalScope.TURN,
            )

        logger.info(f"Requesting user approval for {tool_name}")
        pending = self.requester.request_approval(tool_name, arguments)
        decision = await (guard(pending) if guard else pending)

        if not decision.approved:
            logger.info(f"User declined {tool_name}")
            return decision
        if decision.scope is ApprovalScope.SESSION:
            state.session_wide = True
        elif decision.scope is ApprovalScope.TURN:
            state.turn_wide = True
        return decision

    @staticmethod
    def grant_tool(state: ApprovalState, tool_name: str, scope: ApprovalScope) -> None:
        """Pre-authorize a single tool without prompting."""
        scope = ApprovalScope(scope)
        if scope is ApprovalScope.SESSION:
            state.granted_tools.add(tool_name)
        elif scope is ApprovalScope.TURN:
            state.granted_turn_tools.add(tool_name)
        else:
            raise ValueError(f"Only turn or session grants can be stored, got {scope.value!r}")

    @staticmethod
    def start_turn(state: ApprovalState) -> None:
        state.reset_turn()
