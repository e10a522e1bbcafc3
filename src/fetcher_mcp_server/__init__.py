"""Fetch rendered web pages over MCP and return Markdown."""

__version__ = "0.1.0"
