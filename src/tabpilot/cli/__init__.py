"""
TabPilot CLI - run the browser agent from a terminal.

Usage:
    tabpilot --help
    tabpilot tools
    tabpilot run "Find the latest release notes" --url https://example.com
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from tabpilot.agents.exceptions import TabPilotError
from tabpilot.environment.tools import BROWSER_TOOLS

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.group()
@click.version_option(package_name="tabpilot")
def main():
    """TabPilot - an LLM agent that operates a browser page."""
    pass


@main.command("tools")
def list_tools():
    """List the browser tools the agent can call.

    Dangerous tools need approval before they run.
    """
    click.echo(f"\n{'Tool':<26} {'Category':<10} Description")
    click.echo("-" * 80)
    for tool in BROWSER_TOOLS:
        description = tool.description.splitlines()[0][:40]
        click.echo(f"{tool.name:<26} {tool.category:<10} {description}")


@main.command("run")
@click.argument("task")
@click.option("--url", default=None, help="Page to open before the turn starts")
@click.option("--headless/--headed", default=True, help="Run Chromium without a window")
@click.option("--auto-approve", is_flag=True, help="Approve every dangerous tool for the session")
@click.option("--show-reasoning", is_flag=True, help="Stream the model's reasoning")
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for saved sessions (default: ~/.tabpilot)",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    help="Logging verbosity",
)
def run(
    task: str,
    url: Optional[str],
    headless: bool,
    auto_approve: bool,
    show_reasoning: bool,
    state_dir: Optional[Path],
    log_level: str,
):
    """Run one agent turn for TASK.

    \b
    Examples:
        tabpilot run "Summarize this page" --url https://example.com
        tabpilot run "Sign up for the newsletter" --headed --log-level INFO
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        outcome = asyncio.run(
            _run_turn(task, url, headless, auto_approve, show_reasoning, state_dir)
        )
    except TabPilotError as e:
        click.echo(f"Error: {e.user_message}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        sys.exit(130)

    if outcome is None or not outcome.success:
        sys.exit(1)


async def _run_turn(
    task: str,
    url: Optional[str],
    headless: bool,
    auto_approve: bool,
    show_reasoning: bool,
    state_dir: Optional[Path],
):
    # Browser stack imports stay here so `tabpilot tools` starts without them
    from tabpilot.coordination.communication.terminal import TerminalChannel
    from tabpilot.coordination.config import EngineConfig
    from tabpilot.coordination.engine import AgentEngine
    from tabpilot.coordination.event_bus import EventBus
    from tabpilot.coordination.execution.approval import ApprovalScope, StaticApprovalRequester
    from tabpilot.coordination.state.persistence import FileStorageBackend, StatePersister
    from tabpilot.environment.playwright_surface import PlaywrightSurface

    config = EngineConfig.from_env()
    config.require_api_key()

    channel = TerminalChannel(show_reasoning=show_reasoning)
    event_bus = EventBus()
    channel.attach(event_bus)
    requester = StaticApprovalRequester(ApprovalScope.SESSION) if auto_approve else channel
    persister = StatePersister(FileStorageBackend(state_dir or Path.home() / ".tabpilot"))

    surface = await PlaywrightSurface.create(
        headless=headless, max_context_chars=config.max_context_chars, start_url=url
    )
    engine = None
    try:
        engine = await AgentEngine.create(
            config, surface, requester=requester, persister=persister, event_bus=event_bus
        )
        engine.ctx.store.create_session()
        return await engine.send(task)
    finally:
        if engine is not None:
            await engine.close()
        await persister.flush()
        await surface.close()


if __name__ == "__main__":
    main()
