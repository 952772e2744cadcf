"""
Communication channel implementations.
"""

from .terminal import TerminalChannel

__all__ = ["TerminalChannel"]
