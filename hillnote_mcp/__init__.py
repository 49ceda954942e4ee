"""MCP server for Hillnote workspaces: positional document edits and file-backed databases."""

__version__ = "0.1.0"
