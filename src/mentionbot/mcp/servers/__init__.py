"""Stdio MCP servers launched by the agent CLI for a single request."""
