"""Content-aware chunking.

``ChunkerRegistry`` picks a family chunker by language or file extension and
numbers the resulting chunks.
"""

import logging
from pathlib import Path

from context_mcp.config import ChunkingConfig
from context_mcp.indexer.chunking.base import (
    CODE_ESTIMATOR,
    PROSE_ESTIMATOR,
    STRUCTURED_ESTIMATOR,
    Chunker,
    TokenEstimator,
    split_lines,
    split_with_overlap,
)
from context_mcp.indexer.chunking.jvm import JvmChunker
from context_mcp.indexer.chunking.markdown import MarkdownChunker
from context_mcp.indexer.chunking.plaintext import PlainTextChunker
from context_mcp.indexer.chunking.python import PythonChunker
from context_mcp.indexer.chunking.sql import SqlChunker
from context_mcp.indexer.chunking.structured import JsonChunker, YamlChunker
from context_mcp.indexer.chunking.typescript import TypeScriptChunker
from context_mcp.indexer.errors import ChunkingError
from context_mcp.indexer.models import ChunkDraft

logger = logging.getLogger(__name__)

__all__ = [
    "CODE_ESTIMATOR",
    "PROSE_ESTIMATOR",
    "STRUCTURED_ESTIMATOR",
    "Chunker",
    "ChunkerRegistry",
    "TokenEstimator",
    "split_lines",
    "split_with_overlap",
]

FAMILY_BY_EXTENSION = {
    ".md": "markdown",
    ".markdown": "markdown",
    ".py": "python",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "typescript",
    ".jsx": "typescript",
    ".mjs": "typescript",
    ".cjs": "typescript",
    ".kt": "jvm",
    ".kts": "jvm",
    ".java": "jvm",
    ".cs": "jvm",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".sql": "sql",
}

FAMILY_BY_LANGUAGE = {
    "markdown": "markdown",
    "python": "python",
    "typescript": "typescript",
    "javascript": "typescript",
    "kotlin": "jvm",
    "java": "jvm",
    "csharp": "jvm",
    "json": "json",
    "yaml": "yaml",
    "sql": "sql",
    "text": "text",
}


class ChunkerRegistry:
    """Maps files to chunkers configured from ``ChunkingConfig``."""

    def __init__(self, config: ChunkingConfig | None = None):
        config = config or ChunkingConfig()
        overlap = config.overlap_percent
        self.chunkers: dict[str, Chunker] = {
            "markdown": MarkdownChunker(config.markdown_max_tokens),
            "python": PythonChunker(config.code_max_tokens, overlap),
            "typescript": TypeScriptChunker(config.code_max_tokens, overlap),
            "jvm": JvmChunker(config.code_max_tokens, overlap),
            "json": JsonChunker(config.structured_max_tokens),
            "yaml": YamlChunker(config.structured_max_tokens),
            "sql": SqlChunker(config.structured_max_tokens),
            "text": PlainTextChunker(config.text_max_tokens),
        }

    def for_path(self, path: Path, language: str | None = None) -> Chunker:
        """Chunker for a file; a known language wins over the extension."""
        family = FAMILY_BY_LANGUAGE.get(language or "")
        if family is None:
            family = FAMILY_BY_EXTENSION.get(path.suffix.lower(), "text")
        return self.chunkers[family]

    def chunk(self, content: str, path: Path, language: str | None = None) -> list[ChunkDraft]:
        """Chunk a file's content, numbering chunks from 0.

        Raises:
            ChunkingError: If the chunker fails on the content.
        """
        chunker = self.for_path(path, language)
        try:
            drafts = chunker.chunk(content)
        except (ValueError, RecursionError) as e:
            raise ChunkingError(f"Cannot chunk {path}: {e}") from e
        for ordinal, draft in enumerate(drafts):
            draft.ordinal = ordinal
        logger.debug("Chunked %s with %s: %d chunks", path, type(chunker).__name__, len(drafts))
        return drafts
