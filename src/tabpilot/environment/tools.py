"""
Tool Catalog for the browser agent.

This module is the static registry of every tool exposed to the model. Each
entry carries an OpenAI-compatible function schema and a category:

- dangerous: mutates the page or navigates; gated behind user approval
- silent: pure retrieval; does not trigger the tool-usage guidance block
- standard: everything else
"""

import dataclasses
from typing import Any, Dict, List, Mapping, Optional

DANGEROUS = "dangerous"
SILENT = "silent"
STANDARD = "standard"


@dataclasses.dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: Dict[str, Any]
    category: str = STANDARD

    @property
    def is_dangerous(self) -> bool:
        return self.category == DANGEROUS

    @property
    def is_silent(self) -> bool:
        return self.category == SILENT

    def to_schema(self) -> Dict[str, Any]:
        """Schema entry for the request body's ``tools`` list."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


_NO_PARAMETERS = {"type": "object", "properties": {}}

BROWSER_TOOLS: List[ToolSpec] = [
    ToolSpec(
        name="get_page_interactables",
        description=(
            "Take a snapshot of the interactive elements on the current page (element ID and label). "
            "Call this before clicking or typing to confirm the target ID."
        ),
        parameters=_NO_PARAMETERS,
    ),
    ToolSpec(
        name="read_page_content",
        description=(
            "Extract the main text content of the current page. Use it for questions, "
            "summaries or analysis based on the page."
        ),
        parameters=_NO_PARAMETERS,
    ),
    ToolSpec(
        name="click_element",
        description=(
            "Click a page element. Requires the exact element_id obtained from get_page_interactables."
        ),
        parameters={
            "type": "object",
            "properties": {
                "element_id": {"type": "integer", "description": "Numeric ID of the target element"},
            },
            "required": ["element_id"],
        },
        category=DANGEROUS,
    ),
    ToolSpec(
        name="type_text",
        description=(
            "Type text into an input element. Can press Enter afterwards to trigger search or submit."
        ),
        parameters={
            "type": "object",
            "properties": {
                "element_id": {"type": "integer", "description": "Numeric ID of the target input"},
                "text": {"type": "string", "description": "Text to enter"},
                "press_enter": {
                    "type": "boolean",
                    "description": "Whether to press Enter after typing",
                    "default": False,
                },
            },
            "required": ["element_id", "text"],
        },
        category=DANGEROUS,
    ),
    ToolSpec(
        name="open_url",
        description="Open a URL in the browser and wait for the page to load.",
        parameters={
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "Full URL including the http/https scheme"},
            },
            "required": ["url"],
        },
        category=DANGEROUS,
    ),
    ToolSpec(
        name="analyze_screenshot",
        description=(
            "Visual fallback. Use when DOM element detection fails or the layout is very complex: "
            "a marked screenshot is analysed by a vision model to locate the target element ID."
        ),
        parameters={
            "type": "object",
            "properties": {
                "target_description": {
                    "type": "string",
                    "description": "Description of the element you are looking for and roughly where it is",
                },
            },
            "required": ["target_description"],
        },
    ),
    ToolSpec(
        name="web_search",
        description=(
            "External web search (Bing). Use when the current page cannot answer the question "
            "or up-to-date facts are needed."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search keywords"},
            },
            "required": ["query"],
        },
        category=SILENT,
    ),
    ToolSpec(
        name="fetch_url_content",
        description=(
            "Fetch a text summary of any URL without switching the user's active tab. "
            "Typically used to read search results in depth."
        ),
        parameters={
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "Full URL of the page to read"},
            },
            "required": ["url"],
        },
        category=SILENT,
    ),
]

TOOLS_BY_NAME: Dict[str, ToolSpec] = {tool.name: tool for tool in BROWSER_TOOLS}

DANGEROUS_TOOLS = frozenset(t.name for t in BROWSER_TOOLS if t.is_dangerous)
SILENT_TOOLS = frozenset(t.name for t in BROWSER_TOOLS if t.is_silent)


def get_tool(name: str) -> Optional[ToolSpec]:
    return TOOLS_BY_NAME.get(name)


def is_dangerous(name: str) -> bool:
    return name in DANGEROUS_TOOLS


def list_tools() -> List[str]:
    return list(TOOLS_BY_NAME)


def enabled_tools(enabled: Mapping[str, bool]) -> List[ToolSpec]:
    """Catalog entries switched on in ``enabled``, in catalog order."""
    return [tool for tool in BROWSER_TOOLS if enabled.get(tool.name)]


def prompt_relevant_tools(enabled: Mapping[str, bool]) -> List[ToolSpec]:
    """Enabled tools that should trigger the tool-usage guidance block."""
    return [tool for tool in enabled_tools(enabled) if not tool.is_silent]


def default_enabled_tools() -> Dict[str, bool]:
    return {tool.name: True for tool in BROWSER_TOOLS}
