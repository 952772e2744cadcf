"""
Request assembly for the model endpoint.

Builds the ``messages`` list and request body for one loop iteration from the
session history and the engine configuration.
"""

import datetime
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence

from tabpilot.agents.memory import (
    AssistantMessage,
    ContextMessage,
    Message,
    SystemMessage,
    ToolMessage,
    UserMessage,
)
from tabpilot.environment.tools import enabled_tools, prompt_relevant_tools

from .config import TOOLS_PROMPT_PLACEHOLDER, EngineConfig
from .execution.tool_calls import strip_tool_call_tags

logger = logging.getLogger(__name__)

MEMORY_HEADER = "Permanent memory marked by the user follows; use it as long-term background:\n"
_BLANK_LINES = re.compile(r"^\s*[\r\n]", re.MULTILINE)


def render_system_prompt(config: EngineConfig) -> str:
    """Fill the tool-guidance placeholder, or remove it when no tool needs guidance."""
    prompt = config.system_prompt or ""
    if prompt_relevant_tools(config.enabled_tools):
        return prompt.replace(TOOLS_PROMPT_PLACEHOLDER, config.tools_prompt or "")
    prompt = prompt.replace(TOOLS_PROMPT_PLACEHOLDER, "")
    return _BLANK_LINES.sub("", prompt).strip()


def render_memory_cards(cards: Sequence[ContextMessage]) -> str:
    blocks = [
        "\n<permanent_memory_card>\n"
        f"  <title>{card.title}</title>\n"
        f"  <url>{card.url}</url>\n"
        f"  <content>{card.content}</content>\n"
        "</permanent_memory_card>"
        for card in cards
    ]
    return MEMORY_HEADER + "\n".join(blocks)


def message_to_api(message: Message) -> Dict[str, Any]:
    """Render one history message in the wire format."""
    if isinstance(message, UserMessage):
        return {"role": "user", "content": message.model_content}
    if isinstance(message, AssistantMessage):
        data: Dict[str, Any] = {
            "role": "assistant",
            "content": strip_tool_call_tags(message.content or ""),
        }
        if message.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in message.tool_calls]
        return data
    if isinstance(message, ToolMessage):
        return {
            "role": "tool",
            "content": message.content or "",
            "tool_call_id": message.tool_call_id,
            "name": message.name or "tool_result",
        }
    if isinstance(message, SystemMessage):
        return {"role": "system", "content": message.content or ""}
    raise TypeError(f"{type(message).__name__} is not sent to the model")


def current_time() -> str:
    return datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def build_messages(
    history: Sequence[Message],
    config: EngineConfig,
    clock: Callable[[], str] = current_time,
) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = [{"role": "system", "content": render_system_prompt(config)}]

    cards = [m for m in history if isinstance(m, ContextMessage)]
    if cards:
        messages.append({"role": "system", "content": render_memory_cards(cards)})

    if config.injected_user_context.strip():
        messages.append({"role": "user", "content": config.injected_user_context.strip()})
    if config.injected_assistant_context.strip():
        messages.append(
            {"role": "assistant", "content": config.injected_assistant_context.strip()}
        )

    messages.extend(message_to_api(m) for m in history if not isinstance(m, ContextMessage))

    last = messages[-1]
    if last["role"] == "assistant" and not last["content"] and not last.get("tool_calls"):
        messages.pop()

    for message in reversed(messages):
        if message["role"] == "user":
            message["content"] = f"[Current Time: {clock()}]\n{message['content']}"
            break

    return messages


def build_request_body(
    config: EngineConfig, messages: List[Dict[str, Any]], model: Optional[str] = None
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "model": model or config.model,
        "messages": messages,
        "stream": True,
        "temperature": config.effective_temperature,
    }
    if config.top_p is not None:
        body["top_p"] = config.top_p

    tools = enabled_tools(config.enabled_tools)
    if tools:
        body["tools"] = [tool.to_schema() for tool in tools]
        body["tool_choice"] = "auto"

    body.update(config.custom_body())
    return body
