"""contextMCP - context indexing and retrieval engine exposed over MCP."""

__version__ = "0.1.0"
