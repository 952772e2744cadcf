"""
AgentEngine: the entry points a user interface calls.

The engine owns one ``EngineContext`` and exposes turn-level operations
(send, retry, resume, stop) plus page-context management. A single turn runs
at a time; calls made while a turn is active are ignored.
"""

import logging
import time
from typing import Optional

from tabpilot.agents.memory import AssistantMessage, ContextMessage, UserMessage
from tabpilot.agents.store import MessageStore
from tabpilot.environment.automation import AutomationSurface, PageContext
from tabpilot.environment.tools import is_dangerous
from tabpilot.models.client import AiohttpChatTransport, ChatTransport, VisionClient

from .agent_loop import AgentLoopController, LoopOutcome
from .config import EngineConfig
from .context import EngineContext
from .event_bus import EventBus
from .execution.approval import ApprovalGate, ApprovalRequester, ApprovalScope
from .execution.tool_executor import BrowserToolExecutor
from .state.persistence import StatePersister
from .status.events import FinalResponseEvent, TurnStateEvent
from .watchdog import STOPPED_BY_USER, WatchdogCoordinator

logger = logging.getLogger(__name__)


def render_temporary_contexts(contexts, text: str) -> str:
    """Inline queued page contexts ahead of the user's text."""
    blocks = "\n".join(
        "<current_page_context>\n"
        f"<title>{page.title}</title>\n"
        f"<url>{page.url}</url>\n"
        f"<content>{page.content}</content>\n"
        "</current_page_context>"
        for page in contexts
    )
    return f"{blocks}\n\n{text}"


class AgentEngine:
    """
    Runs user turns against one browser surface.

    Example:
        engine = await AgentEngine.create(EngineConfig.from_env(), surface)
        outcome = await engine.send("Find the pricing page")
    """

    def __init__(self, ctx: EngineContext):
        self.ctx = ctx
        self.controller = AgentLoopController(ctx)
        self._turn_active = False

    @classmethod
    async def create(
        cls,
        config: EngineConfig,
        surface: AutomationSurface,
        requester: Optional[ApprovalRequester] = None,
        transport: Optional[ChatTransport] = None,
        persister: Optional[StatePersister] = None,
        event_bus: Optional[EventBus] = None,
        vision: Optional[VisionClient] = None,
    ) -> "AgentEngine":
        """Wire every collaborator and restore persisted state, if any."""
        event_bus = event_bus or EventBus()
        watchdog = WatchdogCoordinator()
        gate = ApprovalGate(requester)
        if vision is None and config.vision.is_configured:
            vision = VisionClient(config.vision)
        executor = BrowserToolExecutor(
            surface,
            gate,
            vision=vision,
            watchdog=watchdog,
            event_bus=event_bus,
            max_context_chars=config.max_context_chars,
        )
        transport = transport or AiohttpChatTransport(
            config.api_url, config.api_key, timeout=config.request_timeout
        )

        store = MessageStore(on_change=lambda _store: ctx.persist())
        ctx = EngineContext(
            config=config,
            store=store,
            transport=transport,
            executor=executor,
            watchdog=watchdog,
            event_bus=event_bus,
            persister=persister,
        )
        watchdog.on_abort = ctx.handle_abort

        engine = cls(ctx)
        await engine.load_state()

        bind_signals = getattr(surface, "bind_signals", None)
        if bind_signals is not None:
            await bind_signals(watchdog.on_user_interaction, watchdog.on_tab_switch)
        return engine

    @property
    def is_generating(self) -> bool:
        return self._turn_active or self.ctx.watchdog.generating

    @property
    def gate(self) -> ApprovalGate:
        return self.ctx.executor.gate

    # --- Turns ---

    async def send(self, text: str = "", is_retry: bool = False) -> Optional[LoopOutcome]:
        """Start a turn. Returns None when the turn was not started."""
        if self.is_generating:
            logger.info("Turn already in progress; ignoring send")
            return None

        config = self.ctx.config
        text = (text or "").strip()
        auto_context = config.auto_permanent or config.auto_temporary
        if not is_retry and not text and not self.ctx.temp_contexts and not auto_context:
            logger.debug("Refusing empty turn")
            return None

        # Claimed before the first await so a concurrent send sees it
        self._turn_active = True
        try:
            return await self._run_turn(text, is_retry)
        finally:
            self._turn_active = False

    async def _run_turn(self, text: str, is_retry: bool) -> LoopOutcome:
        ctx = self.ctx
        config = ctx.config
        session = ctx.store.active_session

        if not is_retry:
            self.gate.start_turn(session.approval)
            await self._attach_auto_context()
            full_content = None
            if ctx.temp_contexts:
                full_content = render_temporary_contexts(ctx.temp_contexts, text)
                ctx.temp_contexts.clear()
            ctx.store.append(UserMessage(content=text, full_content=full_content))
            ctx.store.update_title_from(text)

        ctx.store.append(AssistantMessage())

        agent_turn = any(is_dangerous(name) for name, on in config.enabled_tools.items() if on)
        token = ctx.watchdog.begin_turn(agent_turn)
        await ctx.event_bus.emit(
            TurnStateEvent(session_id=session.id, generating=True, agent_active=agent_turn)
        )

        start = time.time()
        try:
            outcome = await self.controller.run(token)
        finally:
            ctx.watchdog.end_turn()
            await ctx.watchdog.wait_cleanup()
            await ctx.executor.clear_overlay()
            await ctx.event_bus.emit(TurnStateEvent(session_id=session.id, generating=False))
            ctx.persist()

        logger.info(f"Turn finished: {outcome.status} after {outcome.iterations} iteration(s)")
        await ctx.event_bus.emit(
            FinalResponseEvent(
                session_id=session.id,
                final_response=outcome.final_text,
                total_duration=time.time() - start,
                total_steps=outcome.iterations,
                outcome=outcome.status,
            )
        )
        return outcome

    async def retry(self, index: int) -> Optional[LoopOutcome]:
        """Regenerate from the message at ``index``."""
        if self.is_generating:
            return None
        self.ctx.store.prepare_retry(index)
        return await self.send(is_retry=True)

    async def resume(self) -> Optional[LoopOutcome]:
        """Continue a turn that ended on an error, with a fresh placeholder."""
        if self.is_generating:
            return None
        store = self.ctx.store
        last = store.last_message()
        if isinstance(last, AssistantMessage) and not last.has_tool_calls:
            store.remove_at(len(store.messages()) - 1)
        return await self.send(is_retry=True)

    def stop(self, reason: str = STOPPED_BY_USER) -> bool:
        return self.ctx.watchdog.stop(reason)

    # --- Page context ---

    async def add_page_context(self, permanent: bool) -> Optional[PageContext]:
        """Capture the active page as a memory card or a one-turn attachment."""
        page = await self.ctx.executor.surface.page_context(self.ctx.config.max_context_chars)
        if page is None:
            logger.warning("No page context available")
            return None
        if permanent:
            self.add_permanent_card(page)
        else:
            self.add_temporary_context(page)
        return page

    def add_permanent_card(self, page: PageContext) -> ContextMessage:
        card = ContextMessage(content=page.content, title=page.title, url=page.url, meta=page.meta)
        return self.ctx.store.append(card)

    def add_temporary_context(self, page: PageContext) -> None:
        self.ctx.temp_contexts.append(page)

    async def _attach_auto_context(self) -> None:
        config = self.ctx.config
        if not (config.auto_permanent or config.auto_temporary):
            return
        try:
            page = await self.ctx.executor.surface.page_context(config.max_context_chars)
        except Exception as e:
            logger.warning(f"Could not capture page context: {e}")
            return
        if page is None:
            return
        if config.auto_permanent:
            self.add_permanent_card(page)
        if config.auto_temporary:
            self.add_temporary_context(page)

    # --- Approvals and state ---

    def grant_tool(self, tool_name: str, scope: ApprovalScope = ApprovalScope.SESSION) -> None:
        self.gate.grant_tool(self.ctx.store.active_session.approval, tool_name, scope)

    def reset_context(self) -> None:
        self.ctx.store.clear_session()

    async def load_state(self) -> None:
        if self.ctx.persister is None:
            return
        data = await self.ctx.persister.load()
        if data:
            self.ctx.store.restore(data)
            logger.info(f"Restored {len(self.ctx.store.sessions)} session(s)")

    async def close(self) -> None:
        if self.is_generating:
            self.stop()
        if self.ctx.persister is not None:
            await self.ctx.persister.save_now(self.ctx.store.snapshot())
        await self.ctx.transport.close()
