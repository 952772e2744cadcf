"""
Tool dispatch for the browser agent.

``BrowserToolExecutor`` turns one ``ToolCallRequest`` into one textual result.
It never raises for tool failures: argument errors, declined approvals and
exceptions from the automation surface all become result text the model can
read. Only ``TurnCancelledError`` escapes, because cancellation ends the turn.
"""

import contextlib
import json
import logging
import re
import time
from difflib import get_close_matches
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from tabpilot.agents.exceptions import ToolArgumentError, TurnCancelledError
from tabpilot.agents.memory import ApprovalState, ToolCallRequest
from tabpilot.environment import web_tools
from tabpilot.environment.automation import AutomationSurface, ElementLease
from tabpilot.environment.tools import TOOLS_BY_NAME
from tabpilot.models.client import VisionClient

from ..status.events import ToolCallEvent
from .approval import ApprovalGate

logger = logging.getLogger(__name__)

TOOL_ERROR_PREFIX = "Tool execution error: "

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_CONTROL_WHITESPACE = re.compile(r"[\r\n\t]")


def clean_arguments(raw: Optional[str]) -> str:
    """Strip Markdown fences and control whitespace from argument text."""
    cleaned = _CODE_FENCE.sub("", raw or "").strip()
    cleaned = _CONTROL_WHITESPACE.sub(" ", cleaned)
    return cleaned or "{}"


def parse_tool_arguments(tool_name: str, raw: Optional[str]) -> Dict[str, Any]:
    """Parse argument text into a JSON object.

    Raises:
        ToolArgumentError: The text is not a JSON object.
    """
    try:
        parsed = json.loads(clean_arguments(raw))
    except json.JSONDecodeError as e:
        raise ToolArgumentError(str(e), tool_name=tool_name, raw_arguments=raw) from e
    if not isinstance(parsed, dict):
        raise ToolArgumentError(
            f"expected a JSON object, got {type(parsed).__name__}",
            tool_name=tool_name,
            raw_arguments=raw,
        )
    return parsed


def find_similar_tool_names(tool_name: str, cutoff: float = 0.6) -> list:
    return get_close_matches(tool_name, list(TOOLS_BY_NAME), n=3, cutoff=cutoff)


def simulated_result(call: ToolCallRequest) -> str:
    """Acknowledgement recorded for a text-extracted call that is not executed."""
    try:
        args = parse_tool_arguments(call.name, call.arguments)
    except ToolArgumentError:
        args = None

    if call.name == "open_url":
        if args and "url" in args:
            return f"Opened URL: {args['url']}. [simulated] Page content loaded."
        return "Tried to open URL: (argument parsing failed). [simulated] Page content loaded."
    if call.name == "get_page_interactables":
        return "[simulated] Interactive elements retrieved. Continue based on this information."
    if call.name == "read_page_content":
        return "[simulated] Page content read."
    if call.name == "click_element":
        return f"[simulated] Tried to click element ID: {call.arguments}. Page updated."
    if call.name == "type_text":
        element_id = args.get("element_id") if args else None
        return f"[simulated] Tried to type text into element ID: {element_id}."
    return f"[simulated] Tool {call.name} executed successfully."


class BrowserToolExecutor:
    """Routes catalog tools to the automation surface and retrieval helpers."""

    def __init__(
        self,
        surface: AutomationSurface,
        gate: ApprovalGate,
        vision: Optional[VisionClient] = None,
        watchdog=None,
        event_bus=None,
        max_context_chars: int = 50000,
        search: Optional[Callable[[str], Awaitable[str]]] = None,
        fetch: Optional[Callable[[str, int], Awaitable[str]]] = None,
    ):
        self.surface = surface
        self.gate = gate
        self.vision = vision
        self.watchdog = watchdog
        self.event_bus = event_bus
        self.max_context_chars = max_context_chars
        self.search = search or web_tools.web_search
        self.fetch = fetch or web_tools.fetch_url_content
        self.lease = ElementLease()

    async def safe_execute(
        self,
        call: ToolCallRequest,
        approval: ApprovalState,
        enabled: Optional[Mapping[str, bool]] = None,
        token=None,
        session_id: str = "",
    ) -> str:
        """Run one tool call and return its textual result."""
        try:
            args = parse_tool_arguments(call.name, call.arguments)
        except ToolArgumentError as e:
            logger.error(f"Tool argument parsing failed for {call.name}: {e.developer_message}")
            return (
                f"Error parsing arguments for {call.name}: {e.developer_message}. "
                f"Args content: {call.arguments}"
            )

        if call.name not in TOOLS_BY_NAME:
            similar = find_similar_tool_names(call.name)
            hint = f" Did you mean: {similar[0]}?" if similar else ""
            return f"Unknown tool: {call.name}.{hint}"
        if enabled is not None and not enabled.get(call.name):
            return f"Tool {call.name} is disabled."

        decision = await self.gate.authorize(
            approval, call.name, args, guard=token.guard if token is not None else None
        )
        if not decision.approved:
            await self._emit_tool(session_id, call, "denied")
            return f"[System] The user declined to run tool {call.name}."

        start = time.time()
        await self._emit_tool(session_id, call, "started")
        logger.info(f"Executing tool: {call.name} with args: {args}")
        try:
            result = await self.dispatch(call.name, args)
        except TurnCancelledError:
            raise
        except ToolArgumentError as e:
            logger.error(f"Invalid arguments for {call.name}: {e.developer_message}")
            await self._emit_tool(session_id, call, "failed", e.developer_message, time.time() - start)
            return (
                f"Error parsing arguments for {call.name}: {e.developer_message}. "
                f"Args content: {call.arguments}"
            )
        except Exception as e:
            logger.error(f"Tool {call.name} failed: {e}", exc_info=True)
            await self._emit_tool(session_id, call, "failed", str(e), time.time() - start)
            return f"{TOOL_ERROR_PREFIX}{e}"

        if not isinstance(result, str):
            result = json.dumps(result, ensure_ascii=False)
        await self._emit_tool(session_id, call, "completed", result, time.time() - start)
        return result

    async def dispatch(self, name: str, args: Dict[str, Any]) -> str:
        if name == "get_page_interactables":
            snapshot = await self.surface.snapshot()
            self.lease.issue(snapshot.ids)
            if not snapshot.elements:
                return "No interactive elements found on the page."
            return snapshot.render()

        if name == "read_page_content":
            return await self.surface.read_content()

        if name == "click_element":
            element_id = self._element_id(name, args)
            if not self.lease.is_valid(element_id):
                return self.lease.stale_message(element_id)
            with self._agent_tab_switch():
                outcome = await self.surface.click(element_id)
            if outcome.navigated:
                self.lease.revoke("navigation")
            return outcome.text

        if name == "type_text":
            element_id = self._element_id(name, args)
            if not self.lease.is_valid(element_id):
                return self.lease.stale_message(element_id)
            text = args.get("text")
            if not isinstance(text, str):
                raise ToolArgumentError("'text' must be a string", tool_name=name)
            with self._agent_tab_switch():
                return await self.surface.type_text(
                    element_id, text, press_enter=args.get("press_enter") is True
                )

        if name == "open_url":
            url = self._required_str(name, args, "url")
            with self._agent_tab_switch():
                try:
                    return await self.surface.open_url(url)
                finally:
                    self.lease.revoke("navigation")

        if name == "analyze_screenshot":
            return await self._analyze_screenshot(args.get("target_description", ""))

        if name == "web_search":
            return await self.search(self._required_str(name, args, "query"))

        if name == "fetch_url_content":
            return await self.fetch(self._required_str(name, args, "url"), self.max_context_chars)

        return f"Unknown tool: {name}"

    async def clear_overlay(self) -> None:
        """Remove page markers; every issued element ID becomes stale."""
        self.lease.revoke("overlay cleanup")
        try:
            await self.surface.clear_overlay()
        except Exception as e:
            logger.warning(f"Overlay cleanup failed: {e}")

    async def _analyze_screenshot(self, target_description: str) -> str:
        if self.vision is None:
            return "Error: no vision model configured."
        snapshot = await self.surface.snapshot()
        self.lease.issue(snapshot.ids)
        image = await self.surface.screenshot()
        if not image:
            return "Error: could not capture the screen."
        return await self.vision.locate(image, target_description)

    def _agent_tab_switch(self):
        if self.watchdog is None:
            return contextlib.nullcontext()
        return self.watchdog.agent_tab_switch()

    @staticmethod
    def _element_id(tool_name: str, args: Dict[str, Any]) -> int:
        value = args.get("element_id")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ToolArgumentError(
                f"'element_id' must be an integer, got {value!r}", tool_name=tool_name
            )

    @staticmethod
    def _required_str(tool_name: str, args: Dict[str, Any], key: str) -> str:
        value = args.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ToolArgumentError(f"'{key}' is required", tool_name=tool_name)
        return value.strip()

    async def _emit_tool(
        self,
        session_id: str,
        call: ToolCallRequest,
        status: str,
        result: Optional[str] = None,
        duration: Optional[float] = None,
    ) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.emit(
            ToolCallEvent(
                session_id=session_id,
                tool_name=call.name,
                tool_call_id=call.id,
                status=status,
                arguments=call.arguments,
                result_preview=result[:200] if result else None,
                duration=duration,
            )
        )
