"""Value types for context queries."""

from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import Any

import numpy as np

from context_mcp.indexer.models import ChunkKind, ChunkRecord


@dataclass
class ContextScope:
    """Filters applied to every provider.

    Paths are project-relative prefixes; exclude patterns are globs matched
    against the relative path or any of its leading directories.
    """

    paths: list[str] = field(default_factory=list)
    languages: list[str] = field(default_factory=list)
    kinds: list[ChunkKind] = field(default_factory=list)
    exclude_patterns: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        for name in ("paths", "languages", "exclude_patterns"):
            if any(not value or not value.strip() for value in getattr(self, name)):
                raise ValueError(f"{name} must not contain blank entries")

    @property
    def is_unbounded(self) -> bool:
        return not (self.paths or self.languages or self.kinds or self.exclude_patterns)

    @property
    def kind_values(self) -> list[str]:
        return [kind.value for kind in self.kinds]

    def excludes(self, rel_path: str) -> bool:
        parts = rel_path.split("/")
        prefixes = ["/".join(parts[: i + 1]) for i in range(len(parts))]
        for pattern in self.exclude_patterns:
            pattern = pattern.strip().rstrip("/")
            if any(fnmatch(p, pattern) for p in prefixes + parts):
                return True
        return False

    def under_paths(self, rel_path: str) -> bool:
        """True when rel_path is one of the scope paths or lies below one."""
        prefixes = [p.strip().strip("/") for p in self.paths]
        prefixes = [p for p in prefixes if p]
        if not prefixes:
            return True
        return any(rel_path == p or rel_path.startswith(p + "/") for p in prefixes)

    def admits(self, rel_path: str, language: str | None, kind: ChunkKind) -> bool:
        """Whether a chunk passes every filter of this scope."""
        if self.languages and language not in self.languages:
            return False
        if self.kinds and kind not in self.kinds:
            return False
        return self.under_paths(rel_path) and not self.excludes(rel_path)


@dataclass
class TokenBudget:
    max_tokens: int
    reserve_for_prompt: int = 0

    def __post_init__(self) -> None:
        if self.max_tokens < 1:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")
        if self.reserve_for_prompt < 0:
            raise ValueError("reserve_for_prompt must be non-negative")
        if self.reserve_for_prompt > self.max_tokens:
            raise ValueError("reserve_for_prompt cannot exceed max_tokens")

    @property
    def available(self) -> int:
        return self.max_tokens - self.reserve_for_prompt


@dataclass
class ContextSnippet:
    """One retrieved chunk with its relevance score."""

    chunk_id: int
    score: float
    path: str
    kind: ChunkKind
    text: str
    token_count: int
    label: str | None = None
    language: str | None = None
    start_line: int | None = None
    end_line: int | None = None
    file_id: int | None = None
    ordinal: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    vector: np.ndarray | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"score must be in [0, 1], got {self.score}")

    @property
    def key(self) -> tuple[int, str]:
        return self.chunk_id, self.path

    @classmethod
    def from_record(
        cls,
        record: ChunkRecord,
        score: float,
        provider: str,
        vector: np.ndarray | None = None,
        **metadata: Any,
    ) -> "ContextSnippet":
        chunk = record.chunk
        return cls(
            chunk_id=chunk.id,
            score=min(1.0, max(0.0, score)),
            path=record.rel_path,
            kind=chunk.kind,
            text=chunk.content,
            token_count=max(1, chunk.token_count),
            label=chunk.summary,
            language=record.language,
            start_line=chunk.start_line,
            end_line=chunk.end_line,
            file_id=chunk.file_id,
            ordinal=chunk.ordinal,
            metadata={"provider": provider, "sources": [provider], **metadata},
            vector=vector,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "score": round(self.score, 4),
            "path": self.path,
            "label": self.label,
            "kind": self.kind.value,
            "language": self.language,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "token_count": self.token_count,
            "text": self.text,
            "metadata": self.metadata,
        }
