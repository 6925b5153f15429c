"""
contextmcp - MCP server that indexes a local source tree for retrieval.

Keeps a SQLite index of files, chunks, embeddings and links under a project
root, and answers token-budgeted context queries for coding agents.

Stack:
- Python + FastMCP
- SQLite (FTS5 for full-text search, JSON vectors for semantic search)
- PyYAML (configuration files and YAML chunking)
- httpx (optional remote embedding backend)
"""

__version__ = "0.1.0"
