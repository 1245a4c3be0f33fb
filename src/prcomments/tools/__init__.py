"""Service functions behind the MCP tools."""
