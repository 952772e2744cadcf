"""
Cancellation and watchdog coordination.

A ``CancellationToken`` is created at turn start. The agent loop checks it
before every iteration and routes each suspension point (stream reads, the
approval wait) through ``CancellationToken.guard`` so a pending await unblocks
as soon as the token fires.

``WatchdogCoordinator`` consumes external signals (trusted page input, tab
switches, the stop button) and decides whether they cancel the turn.
"""

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

from tabpilot.agents.exceptions import TurnCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

STOPPED_BY_USER = "Generation stopped."
STOPPED_BY_INTERACTION = "Page interaction detected; the agent has stopped."
STOPPED_BY_TAB_SWITCH = "Tab switch detected; the agent has stopped."


class CancellationToken:
    """One-shot abort signal for a single turn."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = STOPPED_BY_USER) -> bool:
        """Fire the token. Returns False if it had already fired."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelledError(self.reason or STOPPED_BY_USER)

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        Raises:
            TurnCancelledError: The token fired before the awaitable finished.
                The awaitable is cancelled and allowed to unwind.
        """
        if self._event.is_set():
            close = getattr(awaitable, "close", None)
            if callable(close):
                close()
            raise TurnCancelledError(self.reason or STOPPED_BY_USER)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task.done():
            waiter.cancel()
            return task.result()

        task.cancel()
        await asyncio.wait({task})
        raise TurnCancelledError(self.reason or STOPPED_BY_USER)


class WatchdogCoordinator:
    """Turns interaction and tab-switch signals into turn cancellation.

    ``on_abort`` runs after a token fires (clear overlays, notify, persist);
    it is scheduled on the running loop because signals arrive from sync
    callbacks.
    """

    def __init__(self, on_abort: Optional[Callable[[str], Awaitable[Any]]] = None):
        self.on_abort = on_abort
        self.token: Optional[CancellationToken] = None
        self.generating = False
        self.agent_active = False
        self.interaction_armed = False
        self._agent_tab_switch_depth = 0
        self._cleanup_task: Optional[asyncio.Task] = None

    @property
    def is_agent_tab_switch(self) -> bool:
        return self._agent_tab_switch_depth > 0

    @contextlib.contextmanager
    def agent_tab_switch(self) -> Iterator[None]:
        """Mark tab switches inside the block as caused by the agent itself."""
        self._agent_tab_switch_depth += 1
        try:
            yield
        finally:
            self._agent_tab_switch_depth -= 1

    # --- Turn lifecycle ---

    def begin_turn(self, agent_turn: bool) -> CancellationToken:
        self.token = CancellationToken()
        self.generating = True
        self.agent_active = agent_turn
        self.interaction_armed = agent_turn
        if agent_turn:
            logger.info("Agent turn started; interaction watchdog armed")
        return self.token

    def end_turn(self) -> None:
        self.generating = False
        self.agent_active = False
        self.interaction_armed = False

    async def wait_cleanup(self) -> None:
        """Wait for a scheduled abort cleanup, if any."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            await task

    # --- Signals ---

    def on_user_interaction(self, trusted: bool) -> bool:
        """Handle page input. Returns True if the turn was aborted."""
        if not trusted:
            return False
        if not (self.generating and self.interaction_armed):
            return False
        # One-shot: the listener disarms itself on first genuine input
        self.interaction_armed = False
        return self.abort(STOPPED_BY_INTERACTION)

    def on_tab_switch(self) -> bool:
        if self.is_agent_tab_switch:
            logger.debug("Ignoring tab switch caused by the agent")
            return False
        if not (self.generating and self.agent_active):
            return False
        return self.abort(STOPPED_BY_TAB_SWITCH)

    def stop(self, reason: str = STOPPED_BY_USER) -> bool:
        if not self.generating:
            return False
        return self.abort(reason)

    def abort(self, reason: str) -> bool:
        if self.token is None or not self.token.cancel(reason):
            return False
        logger.warning(f"Agent stopped: {reason}")
        self.agent_active = False
        self.interaction_armed = False
        if self.on_abort is not None:
            self._cleanup_task = asyncio.ensure_future(self.on_abort(reason))
        return True
