"""Outlook calendar MCP server backed by an out-of-process PowerShell bridge."""

__version__ = "0.1.0"
