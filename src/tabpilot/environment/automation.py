"""
Page Automation Surface contract.

The engine drives the active page only through ``AutomationSurface``. The
surface assigns stable numeric IDs to interactive elements on ``snapshot()``;
those IDs are a lease that ends at the next ``clear_overlay()``, the next
snapshot or any navigation. ``ElementLease`` tracks which IDs are currently
valid so stale IDs can be rejected before they reach the page.
"""

import dataclasses
import logging
from abc import ABC, abstractmethod
from typing import FrozenSet, Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class SnapshotElement:
    id: int
    tag: str
    label: str

    def render(self) -> str:
        return f'[ID: {self.id}] <{self.tag}> "{self.label}"'


@dataclasses.dataclass
class PageSnapshot:
    elements: List[SnapshotElement]
    title: str = ""
    url: str = ""

    def render(self) -> str:
        """Element map as sent to the model, one element per line."""
        return "\n".join(element.render() for element in self.elements)

    @property
    def ids(self) -> FrozenSet[int]:
        return frozenset(element.id for element in self.elements)


@dataclasses.dataclass
class ClickOutcome:
    text: str
    navigated: bool = False
    url: str = ""


@dataclasses.dataclass
class PageContext:
    """Text captured from the active page for use as chat context."""

    title: str
    url: str
    content: str
    is_selection: bool = False

    @property
    def meta(self) -> str:
        return f"{len(self.content) // 1000}k chars"


class AutomationSurface(ABC):
    """Operations the engine may perform against the active page.

    Implementations raise on failure; the tool dispatcher converts any
    exception into a textual tool result.
    """

    @abstractmethod
    async def snapshot(self) -> PageSnapshot:
        """Mark interactive elements and return them with fresh IDs."""

    @abstractmethod
    async def click(self, element_id: int) -> ClickOutcome:
        """Click the element and report whether the page navigated."""

    @abstractmethod
    async def type_text(self, element_id: int, text: str, press_enter: bool = False) -> str:
        pass

    @abstractmethod
    async def open_url(self, url: str) -> str:
        """Navigate and return a summary of the loaded page."""

    @abstractmethod
    async def read_content(self) -> str:
        pass

    @abstractmethod
    async def screenshot(self) -> str:
        """Capture the visible page as an image data URL."""

    @abstractmethod
    async def clear_overlay(self) -> None:
        """Remove element markers. Invalidates every issued ID."""

    async def page_context(self, limit: int) -> Optional[PageContext]:
        """Selected text or main content of the page, or None if unavailable."""
        return None


class ElementLease:
    """Set of element IDs valid since the last snapshot."""

    def __init__(self):
        self._ids: FrozenSet[int] = frozenset()
        self.generation = 0
        self.revoked_reason: Optional[str] = None

    def issue(self, ids: Iterable[int]) -> None:
        self._ids = frozenset(ids)
        self.generation += 1
        self.revoked_reason = None

    def revoke(self, reason: str) -> None:
        if self._ids:
            logger.debug(f"Element IDs revoked after {reason}")
        self._ids = frozenset()
        self.revoked_reason = reason

    def is_valid(self, element_id: int) -> bool:
        return element_id in self._ids

    @property
    def active(self) -> bool:
        return bool(self._ids)

    def stale_message(self, element_id: int) -> str:
        if self.revoked_reason:
            cause = f"element IDs were invalidated by {self.revoked_reason}"
        elif self.generation == 0:
            cause = "no element snapshot has been taken on this page"
        else:
            cause = "it is not part of the latest element snapshot"
        return (
            f"Error: element ID {element_id} is not valid ({cause}). "
            "Call get_page_interactables again to get current IDs."
        )
