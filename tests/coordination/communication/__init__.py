"""
Tests for the communication module.

This package contains tests for:
- terminal.py: TerminalChannel
"""
