"""
Message Store: owns every session and the only sanctioned way to mutate one.

The agent loop never edits a ``Session`` directly; it issues the operations
defined here (append, update-by-id, replace, truncate). Readers must tolerate
partially streamed assistant content at any point before a turn completes.
"""

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from .exceptions import SessionNotFoundError
from .memory import (
    AssistantMessage,
    ContextMessage,
    Message,
    Session,
    ToolMessage,
    UserMessage,
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New chat"
TITLE_LENGTH = 25


class MessageStore:
    """Multi-session message log with per-session approval state."""

    def __init__(self, on_change: Optional[Callable[["MessageStore"], None]] = None):
        """
        Args:
            on_change: Called after every structural mutation (not after
                streaming updates). Used to schedule persistence.
        """
        self.sessions: Dict[str, Session] = {}
        self.active_id: Optional[str] = None
        self._on_change = on_change

    # --- Sessions ---

    def create_session(self, title: str = DEFAULT_TITLE) -> Session:
        session = Session(id=f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}", title=title)
        self.sessions[session.id] = session
        self.active_id = session.id
        logger.debug(f"Created session {session.id}")
        self._changed()
        return session

    def get_session(self, session_id: Optional[str] = None) -> Session:
        session_id = session_id or self.active_id
        session = self.sessions.get(session_id) if session_id else None
        if session is None:
            raise SessionNotFoundError(f"Session {session_id!r} not found", session_id=session_id)
        return session

    @property
    def active_session(self) -> Session:
        if self.active_id is None or self.active_id not in self.sessions:
            return self.create_session()
        return self.sessions[self.active_id]

    def switch_session(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        self.active_id = session_id
        self._changed()
        return session

    def delete_session(self, session_id: str) -> None:
        if session_id not in self.sessions:
            return
        del self.sessions[session_id]
        if self.active_id == session_id:
            remaining = sorted(self.sessions.values(), key=lambda s: s.created_at, reverse=True)
            if remaining:
                self.active_id = remaining[0].id
            else:
                self.active_id = None
                self.create_session()
                return
        self._changed()

    def update_title_from(self, text: str, session_id: Optional[str] = None) -> None:
        """Title a session after its first user message."""
        session = self.get_session(session_id)
        user_messages = [m for m in session.messages if isinstance(m, UserMessage)]
        if len(user_messages) == 1:
            session.title = text[:TITLE_LENGTH] or DEFAULT_TITLE
            self._changed()

    def clear_session(self, session_id: Optional[str] = None) -> None:
        """Reset context: drop every message and every approval grant."""
        session = self.get_session(session_id)
        session.messages = []
        session.approval.reset()
        self._changed()

    # --- Messages ---

    def messages(self, session_id: Optional[str] = None) -> List[Message]:
        return self.get_session(session_id).messages

    def last_message(self, session_id: Optional[str] = None) -> Optional[Message]:
        messages = self.messages(session_id)
        return messages[-1] if messages else None

    def find(self, message_id: str, session_id: Optional[str] = None) -> Optional[Message]:
        for message in self.messages(session_id):
            if message.id == message_id:
                return message
        return None

    def append(self, message: Message, session_id: Optional[str] = None) -> Message:
        session = self.get_session(session_id)
        if any(m.id == message.id for m in session.messages):
            raise ValueError(f"Duplicate message id {message.id} in session {session.id}")
        session.messages.append(message)
        self._changed()
        return message

    def update_by_id(
        self,
        message_id: str,
        updates: Dict[str, Any],
        session_id: Optional[str] = None,
        persist: bool = True,
    ) -> Optional[Message]:
        """Apply field updates to one message.

        Streaming passes ``persist=False`` so partial content is visible to
        readers without triggering a save per decoded event.
        """
        message = self.find(message_id, session_id)
        if message is None:
            logger.debug(f"update_by_id: message {message_id} not found")
            return None
        for key, value in updates.items():
            if not hasattr(message, key):
                raise AttributeError(f"{type(message).__name__} has no field {key!r}")
            setattr(message, key, value)
        if persist:
            self._changed()
        return message

    def edit_message(self, message_id: str, text: str, session_id: Optional[str] = None) -> None:
        message = self.find(message_id, session_id)
        if message is None:
            return
        message.content = text
        if isinstance(message, UserMessage) and message.full_content:
            message.full_content = text
        self._changed()

    def remove_at(self, index: int, session_id: Optional[str] = None) -> None:
        messages = self.messages(session_id)
        if 0 <= index < len(messages):
            messages.pop(index)
            self._changed()

    def replace(self, messages: List[Message], session_id: Optional[str] = None) -> None:
        self.get_session(session_id).messages = list(messages)
        self._changed()

    def truncate(self, length: int, session_id: Optional[str] = None) -> None:
        session = self.get_session(session_id)
        session.messages = session.messages[:length]
        self._changed()

    def context_cards(self, session_id: Optional[str] = None) -> List[ContextMessage]:
        return [m for m in self.messages(session_id) if isinstance(m, ContextMessage)]

    # --- Protocol maintenance ---

    def remove_dangling_tool_calls(self, session_id: Optional[str] = None) -> int:
        """Drop assistant messages whose tool calls lack matching tool results.

        Returns the number of messages removed.
        """
        messages = self.messages(session_id)
        kept: List[Message] = []
        removed = 0
        for index, message in enumerate(messages):
            if isinstance(message, AssistantMessage) and message.has_tool_calls:
                answered = set()
                for follower in messages[index + 1:]:
                    if isinstance(follower, ContextMessage):
                        continue
                    if not isinstance(follower, ToolMessage):
                        break
                    answered.add(follower.tool_call_id)
                if not all(tc.id in answered for tc in message.tool_calls):
                    logger.warning(
                        f"Removing assistant message {message.id} with unanswered tool calls"
                    )
                    removed += 1
                    continue
            kept.append(message)

        # Tool results orphaned by the removal go too
        cleaned: List[Message] = []
        for message in kept:
            if isinstance(message, ToolMessage):
                previous = next(
                    (m for m in reversed(cleaned)
                     if not isinstance(m, (ToolMessage, ContextMessage))),
                    None,
                )
                if not (
                    isinstance(previous, AssistantMessage)
                    and previous.has_tool_calls
                    and any(tc.id == message.tool_call_id for tc in previous.tool_calls)
                ):
                    removed += 1
                    continue
            cleaned.append(message)

        if removed:
            self.replace(cleaned, session_id)
        return removed

    def prepare_retry(self, index: int, session_id: Optional[str] = None) -> None:
        """Cut history back so that the turn at ``index`` can be regenerated.

        Retrying an assistant message rewrites it (history before it is kept);
        retrying a user or tool message keeps it and regenerates what follows.
        """
        messages = self.messages(session_id)
        if not 0 <= index < len(messages):
            raise IndexError(f"Retry index {index} out of range")

        if isinstance(messages[index], AssistantMessage):
            kept = messages[:index]
        else:
            kept = messages[:index + 1]

        if kept and isinstance(kept[-1], AssistantMessage) and kept[-1].has_tool_calls:
            logger.warning("Dropping dangling tool call left by retry slice")
            kept = kept[:-1]

        self.replace(kept, session_id)

    # --- Serialization ---

    def snapshot(self) -> Dict[str, Any]:
        return {
            "active_id": self.active_id,
            "sessions": {sid: s.to_dict() for sid, s in self.sessions.items()},
        }

    def restore(self, data: Optional[Dict[str, Any]]) -> None:
        data = data or {}
        self.sessions = {
            sid: Session.from_dict(raw) for sid, raw in data.get("sessions", {}).items()
        }
        self.active_id = data.get("active_id")
        if self.active_id not in self.sessions:
            self.active_id = None

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
