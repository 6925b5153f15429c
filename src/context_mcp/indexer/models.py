"""Data models for the indexer."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import numpy as np


class ChunkKind(str, Enum):
    """Semantic tag attached to every chunk."""

    FUNCTION = "function"
    CLASS = "class"
    METHOD = "method"
    CONSTRUCTOR = "constructor"
    INTERFACE = "interface"
    ENUM = "enum"
    HEADER = "header"
    BLOCK = "block"
    MARKDOWN_SECTION = "markdown_section"
    CODE_BLOCK = "code_block"
    JSON_BLOCK = "json_block"
    YAML_BLOCK = "yaml_block"
    SQL_BLOCK = "sql_block"
    PARAGRAPH = "paragraph"
    DOCSTRING = "docstring"

    @classmethod
    def parse(cls, value: str) -> "ChunkKind | None":
        """Look up a kind by value or name, case-insensitively."""
        normalized = value.strip().lower().replace("-", "_")
        for kind in cls:
            if kind.value == normalized:
                return kind
        return None


@dataclass
class ChunkDraft:
    """A chunk produced by a chunker, before it has a file or an id."""

    kind: ChunkKind
    start_line: int  # 1-based, inclusive
    end_line: int  # 1-based, inclusive
    content: str
    token_count: int
    summary: str | None = None
    ordinal: int = 0


@dataclass
class FileState:
    """Catalog entry for one tracked file."""

    id: int | None = None
    rel_path: str = ""  # POSIX path relative to the project root
    abs_path: str = ""
    content_hash: str = ""
    size_bytes: int = 0
    mtime_ns: int = 0
    language: str | None = None
    kind: str | None = None  # source, doc, config, data, text
    fingerprint: str | None = None
    indexed_at: datetime | None = None
    is_deleted: bool = False


@dataclass
class Chunk:
    """A persisted chunk."""

    id: int | None = None
    file_id: int = 0
    ordinal: int = 0
    kind: ChunkKind = ChunkKind.BLOCK
    start_line: int = 1
    end_line: int = 1
    token_count: int = 0
    content: str = ""
    summary: str | None = None
    created_at: datetime | None = None


@dataclass
class Embedding:
    """A persisted embedding vector for one chunk."""

    id: int | None = None
    chunk_id: int = 0
    model: str = ""
    dimensions: int = 0
    vector: np.ndarray | None = field(default=None, compare=False, repr=False)
    created_at: datetime | None = None


@dataclass
class Link:
    """A directed relation from a chunk to another file or chunk."""

    id: int | None = None
    source_chunk_id: int = 0
    target_file_id: int = 0
    target_chunk_id: int | None = None
    link_type: str = "reference"
    label: str | None = None
    score: float | None = None
    created_at: datetime | None = None


@dataclass
class LinkDraft:
    """A link found while indexing, with the target still given by path."""

    target_path: str
    link_type: str = "reference"
    label: str | None = None
    score: float | None = None


@dataclass
class ChunkArtifacts:
    """A chunk with the vector and links to persist alongside it."""

    chunk: ChunkDraft
    vector: np.ndarray | None = field(default=None, compare=False, repr=False)
    model: str | None = None
    links: list[LinkDraft] = field(default_factory=list)


@dataclass
class StoredChunk:
    """A persisted chunk with its embeddings and outgoing links."""

    chunk: Chunk
    embeddings: list[Embedding] = field(default_factory=list)
    links: list[Link] = field(default_factory=list)


@dataclass
class FileArtifacts:
    """Everything persisted for one file."""

    file: FileState
    chunks: list[StoredChunk] = field(default_factory=list)


@dataclass
class ChunkRecord:
    """A chunk joined with the file columns the query providers need."""

    chunk: Chunk
    rel_path: str
    language: str | None
    vector: np.ndarray | None = field(default=None, compare=False, repr=False)
    rank: float | None = None
