"""MCP tool servers and their per-request registry."""

from src.mentionbot.mcp.registry import McpRegistry, McpServerConfig

__all__ = ["McpRegistry", "McpServerConfig"]
