"""
EngineContext: every collaborator one engine instance needs, in one object.

The context is created once per engine and passed to the loop controller and
the watchdog cleanup. Nothing in the engine reads module-level state.
"""

import dataclasses
import logging
from typing import Callable, List, Optional

from tabpilot.agents.store import MessageStore
from tabpilot.environment.automation import PageContext
from tabpilot.models.client import ChatTransport

from .config import EngineConfig
from .event_bus import EventBus
from .execution.tool_calls import ToolCallNormalizer
from .execution.tool_executor import BrowserToolExecutor
from .request_builder import current_time
from .state.persistence import StatePersister
from .status.events import ExecutionStatusEvent, SystemNoticeEvent, TurnStateEvent
from .watchdog import WatchdogCoordinator

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class EngineContext:
    config: EngineConfig
    store: MessageStore
    transport: ChatTransport
    executor: BrowserToolExecutor
    watchdog: WatchdogCoordinator
    event_bus: EventBus
    normalizer: ToolCallNormalizer = dataclasses.field(default_factory=ToolCallNormalizer)
    persister: Optional[StatePersister] = None
    temp_contexts: List[PageContext] = dataclasses.field(default_factory=list)
    clock: Callable[[], str] = current_time

    @property
    def session_id(self) -> str:
        return self.store.active_session.id

    def persist(self) -> None:
        if self.persister is not None:
            self.persister.schedule(self.store.snapshot())

    async def notify(self, text: str) -> None:
        await self.event_bus.emit(SystemNoticeEvent(session_id=self.session_id, text=text))

    async def handle_abort(self, reason: str) -> None:
        """Cleanup after the watchdog cancels a turn."""
        await self.executor.clear_overlay()
        session_id = self.session_id
        await self.event_bus.emit(ExecutionStatusEvent(session_id=session_id, visible=False))
        await self.notify(reason)
        await self.event_bus.emit(
            TurnStateEvent(session_id=session_id, generating=False, agent_active=False)
        )
        self.persist()
