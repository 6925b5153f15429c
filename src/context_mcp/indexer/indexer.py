"""Indexing orchestration: single files, parallel batches and incremental updates."""

import logging
import os
import re
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from context_mcp.config import Config
from context_mcp.indexer.changes import ChangeDetector
from context_mcp.indexer.chunking import ChunkerRegistry
from context_mcp.indexer.database import Database
from context_mcp.indexer.embedding import Embedder, embed_in_batches
from context_mcp.indexer.errors import EmbeddingError, StoreError
from context_mcp.indexer.metadata import (
    compute_fingerprint,
    compute_hash,
    extract_metadata,
    relative_path,
)
from context_mcp.indexer.models import ChunkArtifacts, ChunkDraft, FileState, LinkDraft
from context_mcp.indexer.walker import DirectoryScanner

logger = logging.getLogger(__name__)

MARKDOWN_LINK_PATTERN = re.compile(r"\[([^\]]*)\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")
SCRIPT_IMPORT_PATTERN = re.compile(
    r"""(?:from\s+|import\s+|require\(\s*)['"](\.{1,2}/[^'"]+)['"]"""
)
PYTHON_IMPORT_PATTERN = re.compile(r"^\s*from\s+(\.+)([\w.]*)\s+import\b", re.MULTILINE)
SCRIPT_SUFFIXES = ("", ".ts", ".tsx", ".js", ".jsx", ".mjs", "/index.ts", "/index.js")


@dataclass
class IndexResult:
    success: bool
    rel_path: str
    chunk_count: int = 0
    embedding_count: int = 0
    error: str | None = None


@dataclass
class BatchProgress:
    completed: int
    total: int
    result: IndexResult


@dataclass
class BatchResult:
    total: int = 0
    successful: int = 0
    results: list[IndexResult] = field(default_factory=list)

    @property
    def failures(self) -> list[IndexResult]:
        return [r for r in self.results if not r.success]

    @property
    def failed(self) -> int:
        return self.total - self.successful


@dataclass
class UpdateResult:
    new_count: int = 0
    modified_count: int = 0
    deleted_count: int = 0
    unchanged_count: int = 0
    indexing_failures: int = 0
    deletion_failures: int = 0
    duration_ms: int = 0
    failures: list[IndexResult] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return self.indexing_failures > 0 or self.deletion_failures > 0


ProgressCallback = Callable[[BatchProgress], None]


def _inside(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


def extract_links(
    drafts: list[ChunkDraft], source: Path, project_root: Path
) -> list[list[LinkDraft]]:
    """Relative references per chunk: Markdown links and relative imports.

    Targets are returned as project-relative paths; only existing files
    inside the project root are kept.
    """
    base = source.parent
    per_chunk: list[list[LinkDraft]] = []
    for draft in drafts:
        links: dict[str, LinkDraft] = {}
        for label, target in MARKDOWN_LINK_PATTERN.findall(draft.content):
            target = target.split("#", 1)[0]
            if not target or "://" in target or target.startswith("mailto:"):
                continue
            _add_link(links, base / target, project_root, source, "reference", label or target)
        for specifier in SCRIPT_IMPORT_PATTERN.findall(draft.content):
            for suffix in SCRIPT_SUFFIXES:
                candidate = base / f"{specifier}{suffix}"
                if candidate.is_file():
                    _add_link(links, candidate, project_root, source, "import", specifier)
                    break
        for dots, module in PYTHON_IMPORT_PATTERN.findall(draft.content):
            package = base
            for _ in range(len(dots) - 1):
                package = package.parent
            target = package.joinpath(*module.split(".")) if module else package
            for candidate in (target.with_suffix(".py"), target / "__init__.py"):
                if candidate.is_file():
                    _add_link(links, candidate, project_root, source, "import", f"{dots}{module}")
                    break
        per_chunk.append(list(links.values()))
    return per_chunk


def _add_link(
    links: dict[str, LinkDraft],
    target: Path,
    project_root: Path,
    source: Path,
    link_type: str,
    label: str,
) -> None:
    target = Path(os.path.normpath(target))
    if target == source or not target.is_file() or not _inside(target, project_root):
        return
    rel = relative_path(target, project_root)
    links.setdefault(rel, LinkDraft(target_path=rel, link_type=link_type, label=label))


class FileIndexer:
    """Indexes one file: read, chunk, embed, link and persist atomically."""

    def __init__(
        self,
        config: Config,
        db: Database,
        registry: ChunkerRegistry,
        embedder: Embedder,
    ):
        self.config = config
        self.db = db
        self.registry = registry
        self.embedder = embedder
        self.max_bytes = int(config.indexing.max_file_size_mb * 1024 * 1024)
        self.warn_bytes = int(config.indexing.warn_file_size_mb * 1024 * 1024)

    def index(self, path: Path) -> IndexResult:
        """Index a file, returning a failed result for any per-file error.

        Raises:
            StoreError: If the store cannot persist the file.
        """
        rel_path = relative_path(path, self.config.project_root)
        try:
            file_state, artifacts = self._build(path)
        except StoreError:
            raise
        except Exception as e:
            logger.warning("Failed to index %s: %s", rel_path, e)
            return IndexResult(success=False, rel_path=rel_path, error=str(e))

        stored = self.db.sync_file_artifacts(file_state, artifacts)
        embedding_count = sum(len(c.embeddings) for c in stored.chunks)
        logger.debug(
            "Indexed %s: %d chunks, %d embeddings", rel_path, len(stored.chunks), embedding_count
        )
        return IndexResult(
            success=True,
            rel_path=rel_path,
            chunk_count=len(stored.chunks),
            embedding_count=embedding_count,
        )

    def _build(self, path: Path) -> tuple[FileState, list[ChunkArtifacts]]:
        raw = path.read_bytes()
        if len(raw) > self.max_bytes:
            raise ValueError(f"File too large: {len(raw)} bytes (limit {self.max_bytes})")
        if len(raw) > self.warn_bytes:
            logger.warning("Large file %s: %d bytes", path, len(raw))
        content = raw.decode("utf-8")

        meta = extract_metadata(path, self.config.project_root)
        content_hash = compute_hash(raw)
        drafts = self.registry.chunk(content, path, meta.language)

        vectors = embed_in_batches(
            self.embedder, [d.content for d in drafts], self.config.embedding.batch_size
        )
        for vector in vectors:
            if len(vector) != self.embedder.dimension:
                raise EmbeddingError(
                    f"Embedding dimension {len(vector)} does not match "
                    f"declared dimension {self.embedder.dimension}"
                )

        links = extract_links(drafts, path, self.config.project_root)
        file_state = FileState(
            rel_path=meta.rel_path,
            abs_path=str(path),
            content_hash=content_hash,
            size_bytes=len(raw),
            mtime_ns=meta.mtime_ns,
            language=meta.language,
            kind=meta.kind,
            fingerprint=compute_fingerprint(content_hash, meta.language, len(raw)),
        )
        artifacts = [
            ChunkArtifacts(chunk=draft, vector=vector, model=self.embedder.model, links=chunk_links)
            for draft, vector, chunk_links in zip(drafts, vectors, links)
        ]
        return file_state, artifacts


class BatchIndexer:
    """Indexes many files on a bounded thread pool."""

    def __init__(self, file_indexer: FileIndexer):
        self.file_indexer = file_indexer

    def index_files(
        self,
        paths: list[Path],
        parallelism: int = 1,
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult:
        """Index paths concurrently.

        Per-file failures are collected in the result. A StoreError cancels
        the files not yet started and is re-raised.
        """
        result = BatchResult(total=len(paths))
        if not paths:
            return result
        workers = max(1, min(parallelism, len(paths)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="context-index") as pool:
            futures = [pool.submit(self.file_indexer.index, path) for path in paths]
            try:
                for future in as_completed(futures):
                    file_result = future.result()
                    result.results.append(file_result)
                    if file_result.success:
                        result.successful += 1
                    if on_progress is not None:
                        on_progress(BatchProgress(len(result.results), result.total, file_result))
            except StoreError:
                for future in futures:
                    future.cancel()
                raise
        return result


class IncrementalIndexer:
    """Brings the index in line with the filesystem, touching only changes."""

    def __init__(
        self,
        config: Config,
        db: Database,
        scanner: DirectoryScanner,
        batch_indexer: BatchIndexer,
    ):
        self.config = config
        self.db = db
        self.scanner = scanner
        self.batch_indexer = batch_indexer
        self.detector = ChangeDetector(db, config.project_root)

    def update(
        self,
        paths: list[Path] | None = None,
        force: bool = False,
        parallelism: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> UpdateResult:
        """Index new and modified files and retire deleted ones.

        Args:
            paths: Restrict the update to these files or directories; all
                watch roots when omitted.
            force: Re-index unchanged files too.
        """
        started = time.monotonic()
        roots = paths or self.config.watch_paths
        existing = [p for p in roots if p.exists()]
        files = self.scanner.scan(existing) if existing else []
        changes = self.detector.detect(files, scope=paths)

        to_index = changes.new + changes.modified
        if force:
            to_index += changes.unchanged
        batch = self.batch_indexer.index_files(
            to_index,
            parallelism or self.config.bootstrap.parallel_workers,
            on_progress,
        )

        deleted = self.db.mark_deleted(changes.deleted)
        self.db.touch_files(changes.touched)

        result = UpdateResult(
            new_count=len(changes.new),
            modified_count=len(changes.modified),
            deleted_count=deleted,
            unchanged_count=len(changes.unchanged),
            indexing_failures=batch.failed,
            deletion_failures=len(changes.deleted) - deleted,
            duration_ms=int((time.monotonic() - started) * 1000),
            failures=batch.failures,
        )
        logger.info(
            "Incremental update: %d new, %d modified, %d deleted, %d unchanged (%d failures)",
            result.new_count,
            result.modified_count,
            result.deleted_count,
            result.unchanged_count,
            result.indexing_failures + result.deletion_failures,
        )
        return result
