"""File hashing and metadata extraction."""

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path

LANGUAGES = {
    ".py": "python",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".java": "java",
    ".cs": "csharp",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".md": "markdown",
    ".markdown": "markdown",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".sql": "sql",
    ".txt": "text",
    ".rst": "text",
    ".html": "html",
    ".css": "css",
    ".sh": "shell",
    ".toml": "toml",
    ".ipynb": "notebook",
}

KINDS = {
    "python": "source",
    "kotlin": "source",
    "java": "source",
    "csharp": "source",
    "typescript": "source",
    "javascript": "source",
    "shell": "source",
    "markdown": "doc",
    "text": "doc",
    "json": "data",
    "yaml": "config",
    "toml": "config",
    "sql": "data",
}


@dataclass
class FileMetadata:
    """Stat-level facts about a file."""

    path: Path
    rel_path: str
    size_bytes: int
    mtime_ns: int
    language: str | None
    kind: str


def compute_hash(content: bytes) -> str:
    """Compute SHA-256 hash of content."""
    return hashlib.sha256(content).hexdigest()


def compute_fingerprint(content_hash: str, language: str | None, size_bytes: int) -> str:
    """Derive the dedup fingerprint stored alongside the content hash."""
    key = f"{content_hash}:{language or ''}:{size_bytes}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]


def detect_language(path: Path) -> str | None:
    return LANGUAGES.get(path.suffix.lower())


def relative_path(path: Path, project_root: Path) -> str:
    """POSIX path relative to the project root, or the absolute path outside it."""
    try:
        return path.relative_to(project_root).as_posix()
    except ValueError:
        return Path(os.path.abspath(path)).as_posix()


def extract_metadata(path: Path, project_root: Path) -> FileMetadata:
    """Stat a file and derive its language and kind."""
    stat = path.stat()
    language = detect_language(path)
    return FileMetadata(
        path=path,
        rel_path=relative_path(path, project_root),
        size_bytes=stat.st_size,
        mtime_ns=stat.st_mtime_ns,
        language=language,
        kind=KINDS.get(language or "", "text"),
    )
