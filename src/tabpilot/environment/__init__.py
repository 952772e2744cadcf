"""Browser tools: the tool catalog, the automation surface contract and retrieval helpers."""

from .automation import AutomationSurface, ElementLease, PageContext, PageSnapshot
from .tools import BROWSER_TOOLS, DANGEROUS_TOOLS, SILENT_TOOLS, ToolSpec, get_tool

__all__ = [
    "AutomationSurface",
    "ElementLease",
    "PageContext",
    "PageSnapshot",
    "ToolSpec",
    "BROWSER_TOOLS",
    "DANGEROUS_TOOLS",
    "SILENT_TOOLS",
    "get_tool",
]
