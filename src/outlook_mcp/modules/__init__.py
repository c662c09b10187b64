"""Server modules that contribute MCP tools."""
