"""
Indexer package for contextMCP.

Discovers files, detects changes, chunks and embeds content, and keeps the
SQLite index in sync with the source tree. The filesystem is always the
source of truth; the index can be regenerated at any time.
"""

from context_mcp.indexer.bootstrap import BootstrapOrchestrator, BootstrapResult
from context_mcp.indexer.changes import ChangeDetector, ChangeSet
from context_mcp.indexer.chunking import ChunkerRegistry
from context_mcp.indexer.database import Database
from context_mcp.indexer.embedding import EmbeddingCache, HashEmbedder, HttpEmbedder
from context_mcp.indexer.errors import ChunkingError, ContextError, EmbeddingError, StoreError
from context_mcp.indexer.indexer import (
    BatchIndexer,
    FileIndexer,
    IncrementalIndexer,
    IndexResult,
    UpdateResult,
)
from context_mcp.indexer.models import ChunkKind
from context_mcp.indexer.walker import DirectoryScanner, create_scanner

__all__ = [
    "BatchIndexer",
    "BootstrapOrchestrator",
    "BootstrapResult",
    "ChangeDetector",
    "ChangeSet",
    "ChunkKind",
    "ChunkerRegistry",
    "ChunkingError",
    "ContextError",
    "Database",
    "DirectoryScanner",
    "EmbeddingCache",
    "EmbeddingError",
    "FileIndexer",
    "HashEmbedder",
    "HttpEmbedder",
    "IncrementalIndexer",
    "IndexResult",
    "StoreError",
    "UpdateResult",
    "create_scanner",
]
