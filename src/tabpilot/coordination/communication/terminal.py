"""
Terminal channel with Rich formatting.

Prints status events from the ``EventBus`` and answers approval requests for
dangerous tools with an interactive prompt.
"""

import asyncio
import json
import logging
import sys
import time
from typing import Any, Dict, Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.prompt import Prompt
from rich.text import Text
from rich.theme import Theme

from ..event_bus import ALL_EVENTS, EventBus
from ..execution.approval import ApprovalDecision, ApprovalRequester, ApprovalScope
from ..status.events import (
    AssistantDeltaEvent,
    ErrorNoticeEvent,
    FinalResponseEvent,
    StatusEvent,
    SystemNoticeEvent,
    ToolCallEvent,
)

logger = logging.getLogger(__name__)

THEME = Theme(
    {
        "prompt": "bright_green bold",
        "error": "bright_red bold",
        "success": "bright_green",
        "info": "bright_cyan",
        "warning": "bright_yellow",
        "timestamp": "dim white",
    }
)

# Prompt answer -> scope
APPROVAL_CHOICES = {
    "n": ApprovalScope.DENY,
    "y": ApprovalScope.ONCE,
    "t": ApprovalScope.TURN,
    "s": ApprovalScope.SESSION,
}


class TerminalChannel(ApprovalRequester):
    """Rich console front end for one engine."""

    def __init__(
        self,
        console: Optional[Console] = None,
        show_reasoning: bool = False,
        show_timestamps: bool = True,
    ):
        self.console = console or Console(theme=THEME, highlight=False)
        self.show_reasoning = show_reasoning
        self.show_timestamps = show_timestamps and sys.stdout.isatty()
        self.start_time = time.time()
        self._prompt_lock = asyncio.Lock()
        self._last_reasoning_len = 0

    def attach(self, event_bus: EventBus) -> None:
        event_bus.subscribe(ALL_EVENTS, self.send)

    # --- Approval ---

    async def request_approval(self, tool_name: str, arguments: Dict[str, Any]) -> ApprovalDecision:
        async with self._prompt_lock:
            body = Group(
                Text(f"The agent wants to run {tool_name}.", style="bold"),
                Text(json.dumps(arguments, ensure_ascii=False, indent=2), style="dim"),
                Text("\n[y] once  [t] this turn  [s] this session  [n] deny", style="info"),
            )
            self.console.print()
            self.console.print(
                Panel(body, title="[bold]Approval required[/]", border_style="bright_yellow", expand=False)
            )
            loop = asyncio.get_running_loop()
            answer = await loop.run_in_executor(
                None,
                lambda: Prompt.ask(
                    "[prompt]Allow?[/]",
                    console=self.console,
                    choices=list(APPROVAL_CHOICES),
                    default="n",
                ),
            )
        return ApprovalDecision.from_scope(APPROVAL_CHOICES.get(answer, ApprovalScope.DENY))

    # --- Status output ---

    def _prefix(self, event: StatusEvent) -> Text:
        prefix = Text()
        if self.show_timestamps:
            prefix.append(f"[{event.timestamp - self.start_time:6.2f}s] ", style="timestamp")
        return prefix

    async def send(self, event: StatusEvent) -> None:
        if isinstance(event, ToolCallEvent):
            self._print_tool_call(event)
        elif isinstance(event, AssistantDeltaEvent):
            self._print_reasoning(event)
        elif isinstance(event, SystemNoticeEvent):
            self.console.print(self._prefix(event) + Text(event.text, style="warning"))
        elif isinstance(event, ErrorNoticeEvent):
            hint = " (retry available)" if event.retryable else ""
            self.console.print(
                Panel(Text(event.message + hint), title="[error]Error[/]", border_style="bold red", expand=False)
            )
        elif isinstance(event, FinalResponseEvent):
            self._print_final_response(event)

    def _print_tool_call(self, event: ToolCallEvent) -> None:
        line = self._prefix(event)
        if event.status == "started":
            line.append(f"Tool: {event.tool_name} ", style="info")
            if event.arguments:
                line.append(event.arguments[:100], style="dim")
        elif event.status == "completed":
            duration = f" ({event.duration:.2f}s)" if event.duration else ""
            line.append(f"Done: {event.tool_name}{duration}", style="success")
        elif event.status == "denied":
            line.append(f"Declined: {event.tool_name}", style="warning")
        else:
            line.append(f"Failed: {event.tool_name} {event.result_preview or ''}", style="error")
        self.console.print(line)

    def _print_reasoning(self, event: AssistantDeltaEvent) -> None:
        if not self.show_reasoning:
            return
        # Deltas carry the full buffer; print only the new tail
        if len(event.think) < self._last_reasoning_len:
            self._last_reasoning_len = 0
        tail = event.think[self._last_reasoning_len:]
        self._last_reasoning_len = len(event.think)
        if tail:
            self.console.print(Text(tail, style="dim"), end="")

    def _print_final_response(self, event: FinalResponseEvent) -> None:
        self._last_reasoning_len = 0
        style = "bright_green" if event.success else "bright_red"
        title = f"Turn {event.outcome.replace('_', ' ')}"
        summary = Text()
        summary.append(event.final_response or "(no text)")
        summary.append(
            f"\n\nSteps: {event.total_steps}  Duration: {event.total_duration:.2f}s", style="dim"
        )
        self.console.print()
        self.console.print(Panel(summary, title=f"[bold]{title}[/]", border_style=style, expand=False))
