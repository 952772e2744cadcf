"""
Event bus connecting the engine to user-facing collaborators.

Listeners subscribe by event class name (or ``"*"`` for everything) and may be
plain functions or coroutines. A listener that keeps failing is dropped so a
broken display never stalls a turn.
"""

import inspect
import logging
from collections import defaultdict, deque
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

ALL_EVENTS = "*"


class EventBus:
    """Routes status events to listeners and keeps a bounded history."""

    def __init__(self, history_size: int = 1000, max_listener_errors: int = 5):
        self.events: Deque[Any] = deque(maxlen=history_size)
        self.listeners: Dict[str, List[Callable]] = defaultdict(list)
        self._listener_errors: Dict[str, int] = defaultdict(int)
        self._max_listener_errors = max_listener_errors

    async def emit(self, event: Any) -> None:
        self.events.append(event)
        event_type = type(event).__name__

        for key in (event_type, ALL_EVENTS):
            for listener in list(self.listeners.get(key, [])):
                try:
                    result = listener(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    listener_id = f"{key}:{id(listener)}"
                    self._listener_errors[listener_id] += 1
                    logger.error(f"Error in event listener for {event_type}: {e}")

                    if self._listener_errors[listener_id] >= self._max_listener_errors:
                        logger.warning(
                            f"Removing failing listener for {key} after "
                            f"{self._max_listener_errors} errors"
                        )
                        self.listeners[key].remove(listener)

    def subscribe(self, event_type: str, listener: Callable) -> None:
        """Register ``listener`` for events whose class name is ``event_type``."""
        if listener not in self.listeners[event_type]:
            self.listeners[event_type].append(listener)
            logger.debug(f"Subscribed listener to {event_type}")

    def unsubscribe(self, event_type: str, listener: Callable) -> None:
        if listener in self.listeners.get(event_type, []):
            self.listeners[event_type].remove(listener)

    def clear_listeners(self) -> None:
        self.listeners.clear()
        self._listener_errors.clear()

    def events_of(self, event_type: str) -> List[Any]:
        return [e for e in self.events if type(e).__name__ == event_type]

    def get_event_count(self, event_type: Optional[str] = None) -> int:
        if event_type:
            return len(self.events_of(event_type))
        return len(self.events)
