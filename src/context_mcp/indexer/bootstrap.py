"""Full initial indexing with prioritization, progress tracking and resume."""

import logging
import threading
import time
import traceback
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from context_mcp.config import Config
from context_mcp.indexer.database import Database
from context_mcp.indexer.indexer import BatchIndexer, BatchProgress
from context_mcp.indexer.metadata import relative_path
from context_mcp.indexer.walker import DirectoryScanner

logger = logging.getLogger(__name__)

SMALL_FILE_BYTES = 10 * 1024
LARGE_FILE_BYTES = 2 * 1024 * 1024

CATEGORY_ORDER = ["source", "doc", "config", "data", "web", "script", "other"]
CATEGORY_BY_EXTENSION = {
    **dict.fromkeys(
        [".py", ".kt", ".kts", ".java", ".cs", ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs",
         ".go", ".rs", ".c", ".h", ".cpp", ".swift"],
        "source",
    ),
    **dict.fromkeys([".md", ".markdown", ".rst", ".txt", ".adoc"], "doc"),
    **dict.fromkeys([".yaml", ".yml", ".toml", ".ini", ".cfg", ".properties"], "config"),
    **dict.fromkeys([".json", ".sql", ".csv", ".xml"], "data"),
    **dict.fromkeys([".html", ".css", ".scss", ".vue", ".svelte"], "web"),
    **dict.fromkeys([".sh", ".bash", ".ps1", ".bat"], "script"),
}


class FilePrioritizer:
    """Orders files so small, high-value files are indexed first.

    Small files (< 10 KiB) come first, then files are ordered by category
    and size. Files over 2 MiB always go last.
    """

    def _key(self, path: Path) -> tuple:
        try:
            size = path.stat().st_size
        except OSError:
            size = 0
        category = CATEGORY_BY_EXTENSION.get(path.suffix.lower(), "other")
        bucket = 0 if size < SMALL_FILE_BYTES else 2 if size > LARGE_FILE_BYTES else 1
        return bucket, CATEGORY_ORDER.index(category), size, str(path)

    def prioritize(self, paths: list[Path]) -> list[Path]:
        return sorted(paths, key=self._key)


class BootstrapProgressTracker:
    """Per-file bootstrap status persisted in the ``bootstrap_progress`` table."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def __init__(self, db: Database):
        self.db = db

    def initialize(self, rel_paths: list[str]) -> None:
        self.db.progress_initialize(rel_paths)

    def mark_processing(self, rel_path: str) -> None:
        self.db.progress_set(rel_path, self.PROCESSING)

    def mark_completed(self, rel_path: str) -> None:
        self.db.progress_set(rel_path, self.COMPLETED)

    def mark_failed(self, rel_path: str, error: str | None = None) -> None:
        self.db.progress_set(rel_path, self.FAILED, error)

    def get_remaining(self) -> list[str]:
        """Paths that are not completed yet."""
        return self.db.progress_remaining()

    def get_progress(self) -> dict[str, int]:
        counts = self.db.progress_counts()
        total = sum(counts.values())
        return {
            "total": total,
            "completed": counts.get(self.COMPLETED, 0),
            "failed": counts.get(self.FAILED, 0),
            "pending": counts.get(self.PENDING, 0) + counts.get(self.PROCESSING, 0),
        }

    def reset(self) -> None:
        self.db.progress_reset()


@dataclass
class BootstrapError:
    path: str
    message: str
    stack_trace: str | None
    timestamp: datetime


class BootstrapErrorLogger:
    """Collects per-file bootstrap errors and logs each one."""

    def __init__(self):
        self._errors: list[BootstrapError] = []
        self._lock = threading.Lock()

    def record(self, path: str, message: str, error: BaseException | None = None) -> None:
        stack = (
            "".join(traceback.format_exception(type(error), error, error.__traceback__))
            if error is not None
            else None
        )
        entry = BootstrapError(path, message, stack, datetime.now(timezone.utc))
        with self._lock:
            self._errors.append(entry)
        logger.warning("Bootstrap error for %s: %s", path, message)

    @property
    def errors(self) -> list[BootstrapError]:
        with self._lock:
            return list(self._errors)

    def clear(self) -> None:
        with self._lock:
            self._errors.clear()


@dataclass
class BootstrapResult:
    success: bool
    total_files: int = 0
    successful_files: int = 0
    failed_files: int = 0
    duration_ms: int = 0
    errors: list[BootstrapError] = field(default_factory=list)


class BootstrapOrchestrator:
    """Runs a full index of every eligible file under the watch roots."""

    def __init__(
        self,
        config: Config,
        db: Database,
        scanner: DirectoryScanner,
        batch_indexer: BatchIndexer,
        parallelism: int | None = None,
        roots: list[Path] | None = None,
    ):
        self.config = config
        self.db = db
        self.scanner = scanner
        self.batch_indexer = batch_indexer
        self.parallelism = parallelism or config.bootstrap.parallel_workers
        self.roots = roots or config.watch_paths
        self.prioritizer = FilePrioritizer()
        self.tracker = BootstrapProgressTracker(db)
        self.error_logger = BootstrapErrorLogger()

    def bootstrap(
        self,
        on_progress: Callable[[BatchProgress], None] | None = None,
        resume: bool = False,
    ) -> BootstrapResult:
        """Index all files unconditionally and retire cataloged files that are gone.

        With ``resume=True`` only files the tracker has not completed are
        processed.
        """
        started = time.monotonic()
        root = self.config.project_root
        logger.info("Starting bootstrap of %s", ", ".join(str(r) for r in self.roots))

        files = self.scanner.scan(self.roots)
        by_rel = {relative_path(p, root): p for p in files}

        if resume:
            remaining = set(self.tracker.get_remaining())
            files = [p for rel, p in by_rel.items() if rel in remaining]
            logger.info("Resuming bootstrap: %d files remaining", len(files))
        else:
            self.tracker.reset()
            self.tracker.initialize(list(by_rel))
            self._retire_missing(set(by_rel))

        ordered = self.prioritizer.prioritize(files)
        for path in ordered:
            self.tracker.mark_processing(relative_path(path, root))
        self.error_logger.clear()

        def progress(event: BatchProgress) -> None:
            rel_path = event.result.rel_path
            if event.result.success:
                self.tracker.mark_completed(rel_path)
            else:
                self.tracker.mark_failed(rel_path, event.result.error)
                self.error_logger.record(rel_path, event.result.error or "unknown error")
            if on_progress is not None:
                on_progress(event)

        batch = self.batch_indexer.index_files(ordered, self.parallelism, progress)

        result = BootstrapResult(
            success=batch.failed == 0,
            total_files=batch.total,
            successful_files=batch.successful,
            failed_files=batch.failed,
            duration_ms=int((time.monotonic() - started) * 1000),
            errors=self.error_logger.errors,
        )
        logger.info(
            "Bootstrap complete: %d/%d files indexed, %d failed in %dms",
            result.successful_files,
            result.total_files,
            result.failed_files,
            result.duration_ms,
        )
        return result

    def _retire_missing(self, seen: set[str]) -> None:
        root_prefixes = [r.resolve() for r in self.roots]
        gone = [
            rel
            for rel, state in self.db.get_catalog().items()
            if rel not in seen
            and any(Path(state.abs_path) == r or r in Path(state.abs_path).parents for r in root_prefixes)
        ]
        if gone:
            count = self.db.mark_deleted(gone)
            logger.info("Retired %d files no longer present", count)
