"""Rebuild and refresh job control.

A rebuild is destructive: it clears the index and bootstraps it again under
a single process-wide lock. A refresh runs the incremental indexer and needs
no lock. Both can run in the background, in which case the caller gets a
job id immediately and polls the ``JobStore``.
"""

import logging
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from context_mcp.config import Config
from context_mcp.indexer.bootstrap import BootstrapResult
from context_mcp.indexer.database import Database
from context_mcp.indexer.errors import StoreError
from context_mcp.indexer.indexer import BatchProgress, IncrementalIndexer, UpdateResult
from context_mcp.indexer.metadata import relative_path
from context_mcp.results import Ok, TransientError, ValidationError
from context_mcp.watcher import WatcherRegistry

logger = logging.getLogger(__name__)

CONFIRM_REQUIRED = (
    "Safety check failed: confirm=true is required for a destructive rebuild "
    "(use validate_only=true for a dry run)"
)
REBUILD_IN_PROGRESS = "Another rebuild is already in progress"


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


class JobKind(str, Enum):
    REBUILD = "rebuild"
    REFRESH = "refresh"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def to_dict(obj: Any, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
    """JSON-compatible dict of a dataclass instance."""
    return {f.name: _plain(getattr(obj, f.name)) for f in fields(obj) if f.name not in exclude}


@dataclass
class Job:
    """A background rebuild or refresh."""

    job_id: str
    kind: JobKind
    paths: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=_now)
    status: JobStatus = JobStatus.RUNNING
    phase: str | None = None
    total_files: int = 0
    processed_files: int = 0
    failed_files: int = 0
    error: str | None = None
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    future: Future | None = None

    @property
    def is_finished(self) -> bool:
        return self.status != JobStatus.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return to_dict(self, exclude=("future",))


class JobStore:
    """Thread-safe registry of jobs.

    Only the worker owning a job updates it; any caller may read.
    """

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def start(
        self,
        kind: JobKind,
        paths: list[str],
        executor: Executor,
        worker: Callable[..., Any],
        *args: Any,
    ) -> Job:
        """Register a job and submit ``worker(job_id, *args)`` to the executor.

        The future is attached while the store lock is held, so the worker's
        first update cannot run before the job is complete.
        """
        job = Job(job_id=uuid.uuid4().hex, kind=kind, paths=list(paths))
        with self._lock:
            job.future = executor.submit(worker, job.job_id, *args)
            self._jobs[job.job_id] = job
        logger.debug("Started %s job %s", kind.value, job.job_id)
        return job

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def update(self, job_id: str, **changes: Any) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise KeyError(f"Unknown job: {job_id}")
            for name, value in changes.items():
                if not hasattr(job, name):
                    raise AttributeError(f"Job has no field '{name}'")
                setattr(job, name, value)
            return job

    def list(self) -> list[Job]:
        with self._lock:
            return sorted(self._jobs.values(), key=lambda j: j.started_at)

    def remove_completed(self) -> int:
        """Drop finished jobs. Returns how many were removed."""
        with self._lock:
            finished = [job_id for job_id, job in self._jobs.items() if job.is_finished]
            for job_id in finished:
                del self._jobs[job_id]
        return len(finished)


def resolve_paths(
    raw_paths: list[str], config: Config, must_exist: bool = True
) -> tuple[list[Path], list[str]]:
    """Resolve request paths against the project root.

    Returns the resolved paths and one error message per rejected path.
    """
    roots = [r.resolve() for r in config.watch_paths]
    resolved: list[Path] = []
    errors: list[str] = []
    for raw in raw_paths:
        if not raw or not raw.strip():
            errors.append("Path must not be blank")
            continue
        path = Path(raw).expanduser()
        if not path.is_absolute():
            path = config.project_root / path
        path = path.resolve()
        if not any(path == r or r in path.parents for r in roots):
            errors.append(f"Path is outside the watch roots: {raw}")
        elif must_exist and not path.exists():
            errors.append(f"Path does not exist: {raw}")
        else:
            resolved.append(path)
    return resolved, errors


class Bootstrapper(Protocol):
    def bootstrap(
        self,
        on_progress: Callable[[BatchProgress], None] | None = None,
        resume: bool = False,
    ) -> BootstrapResult: ...


BootstrapFactory = Callable[[list[Path], int], Bootstrapper]


@dataclass
class RebuildRequest:
    confirm: bool = False
    async_mode: bool = False
    paths: list[str] | None = None
    validate_only: bool = False
    parallelism: int | None = None


@dataclass
class RebuildResult:
    mode: str
    status: str
    job_id: str | None = None
    phase: str | None = None
    total_files: int = 0
    successful_files: int = 0
    failed_files: int = 0
    duration_ms: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    message: str | None = None
    validation_errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return to_dict(self)


class RebuildService:
    """Destructive rebuild: clear the store, bootstrap again, optimize."""

    def __init__(
        self,
        config: Config,
        db: Database,
        jobs: JobStore,
        watchers: WatcherRegistry,
        bootstrap_factory: BootstrapFactory,
        executor: Executor,
        on_cleared: Callable[[], None] | None = None,
    ):
        self.config = config
        self.db = db
        self.jobs = jobs
        self.watchers = watchers
        self.bootstrap_factory = bootstrap_factory
        self.executor = executor
        self.on_cleared = on_cleared
        self._lock = threading.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def _validate(self, request: RebuildRequest) -> Ok[tuple[list[Path], int]] | ValidationError:
        errors: list[str] = []
        if not request.confirm and not request.validate_only:
            errors.append(CONFIRM_REQUIRED)
        parallelism = (
            request.parallelism
            if request.parallelism is not None
            else self.config.bootstrap.parallel_workers
        )
        if parallelism < 1:
            errors.append(f"parallelism must be >= 1, got {parallelism}")
        paths, path_errors = resolve_paths(request.paths or [], self.config)
        errors.extend(path_errors)
        if self._lock.locked():
            errors.append(REBUILD_IN_PROGRESS)
        if errors:
            return ValidationError(errors)
        return Ok((paths or list(self.config.watch_paths), parallelism))

    def rebuild(self, request: RebuildRequest) -> RebuildResult:
        mode = "async" if request.async_mode else "sync"
        outcome = self._validate(request)
        if isinstance(outcome, ValidationError):
            logger.warning("Rebuild rejected: %s", outcome.message)
            return RebuildResult(
                mode=mode,
                status="error",
                phase="validation",
                message=outcome.message,
                validation_errors=outcome.errors,
            )
        paths, parallelism = outcome.value
        if request.validate_only:
            return RebuildResult(
                mode=mode, status="validated", phase="validation", message="Validation passed"
            )

        if not self._lock.acquire(blocking=False):
            return RebuildResult(
                mode=mode,
                status="error",
                phase="validation",
                message=REBUILD_IN_PROGRESS,
                validation_errors=[REBUILD_IN_PROGRESS],
            )

        if not request.async_mode:
            try:
                return self._run(paths, parallelism, None)
            finally:
                self._lock.release()

        try:
            job = self.jobs.start(
                JobKind.REBUILD,
                [str(p) for p in paths],
                self.executor,
                self._worker,
                paths,
                parallelism,
            )
        except BaseException:
            self._lock.release()
            raise
        return RebuildResult(
            mode=mode,
            status=JobStatus.RUNNING.value,
            job_id=job.job_id,
            phase="pre-rebuild",
            started_at=job.started_at,
            message=f"Rebuild started in background (job {job.job_id})",
        )

    def _worker(self, job_id: str, paths: list[Path], parallelism: int) -> RebuildResult:
        try:
            result = self._run(paths, parallelism, job_id)
            self.jobs.update(
                job_id,
                status=JobStatus(result.status),
                phase=result.phase,
                error=result.message if result.status == JobStatus.FAILED.value else None,
                completed_at=result.completed_at,
                result=result.to_dict(),
            )
            return result
        except Exception as e:
            logger.exception("Rebuild job %s crashed", job_id)
            self.jobs.update(
                job_id, status=JobStatus.FAILED, phase="failed", error=str(e), completed_at=_now()
            )
            raise
        finally:
            self._lock.release()

    def _run(self, paths: list[Path], parallelism: int, job_id: str | None) -> RebuildResult:
        started_at = _now()
        started = time.monotonic()
        phase = "pre-rebuild"
        failed = 0

        def enter(name: str) -> None:
            nonlocal phase
            phase = name
            logger.info("Rebuild phase: %s", name)
            if job_id is not None:
                self.jobs.update(job_id, phase=name)

        def progress(event: BatchProgress) -> None:
            nonlocal failed
            if not event.result.success:
                failed += 1
            if job_id is not None:
                self.jobs.update(
                    job_id,
                    total_files=event.total,
                    processed_files=event.completed,
                    failed_files=failed,
                )

        def execute() -> BootstrapResult:
            enter("pre-rebuild")
            logger.info("Rebuilding %s", ", ".join(str(p) for p in paths))
            enter("destructive")
            self.db.clear_context_data()
            if self.on_cleared is not None:
                self.on_cleared()
            enter("rebuild")
            outcome = self.bootstrap_factory(paths, parallelism).bootstrap(on_progress=progress)
            enter("post-rebuild")
            self.db.optimize()
            return outcome

        try:
            outcome = self.watchers.pause_while(execute)
        except (StoreError, OSError, ValueError) as e:
            logger.error("Rebuild failed during %s phase: %s", phase, e)
            return RebuildResult(
                mode="async" if job_id else "sync",
                status=JobStatus.FAILED.value,
                job_id=job_id,
                phase="failed",
                duration_ms=int((time.monotonic() - started) * 1000),
                started_at=started_at,
                completed_at=_now(),
                message=f"Rebuild failed during {phase}: {e}",
            )

        status = JobStatus.COMPLETED if outcome.failed_files == 0 else JobStatus.COMPLETED_WITH_ERRORS
        logger.info(
            "Rebuild %s: %d/%d files indexed",
            status.value,
            outcome.successful_files,
            outcome.total_files,
        )
        return RebuildResult(
            mode="async" if job_id else "sync",
            status=status.value,
            job_id=job_id,
            phase="completed",
            total_files=outcome.total_files,
            successful_files=outcome.successful_files,
            failed_files=outcome.failed_files,
            duration_ms=int((time.monotonic() - started) * 1000),
            started_at=started_at,
            completed_at=_now(),
            message=(
                f"Rebuilt {outcome.successful_files} of {outcome.total_files} files"
                + (f" ({outcome.failed_files} failures)" if outcome.failed_files else "")
            ),
        )


@dataclass
class RefreshRequest:
    paths: list[str] | None = None
    force: bool = False
    async_mode: bool = False
    parallelism: int | None = None


@dataclass
class RefreshResult:
    mode: str
    status: str
    job_id: str | None = None
    new_count: int = 0
    modified_count: int = 0
    deleted_count: int = 0
    unchanged_count: int = 0
    failed_count: int = 0
    duration_ms: int = 0
    message: str | None = None
    skipped_paths: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return to_dict(self)


def format_refresh_message(update: UpdateResult) -> str:
    failures = update.indexing_failures + update.deletion_failures
    return (
        f"{update.new_count} new, {update.modified_count} modified, "
        f"{update.deleted_count} deleted, {update.unchanged_count} unchanged "
        f"({failures} failures)"
    )


class RefreshService:
    """Non-destructive incremental refresh."""

    def __init__(
        self,
        config: Config,
        incremental: IncrementalIndexer,
        jobs: JobStore,
        watchers: WatcherRegistry,
        executor: Executor,
    ):
        self.config = config
        self.incremental = incremental
        self.jobs = jobs
        self.watchers = watchers
        self.executor = executor

    def refresh(self, request: RefreshRequest) -> RefreshResult:
        mode = "async" if request.async_mode else "sync"
        if request.parallelism is not None and request.parallelism < 1:
            message = f"parallelism must be >= 1, got {request.parallelism}"
            return RefreshResult(mode=mode, status="error", message=message, errors=[message])

        paths: list[Path] | None = None
        skipped: list[str] = []
        if request.paths:
            paths, errors = resolve_paths(request.paths, self.config, must_exist=False)
            known = self.incremental.db.get_catalog()
            for path in list(paths):
                rel = relative_path(path, self.config.project_root)
                under_catalog = any(r == rel or r.startswith(f"{rel}/") for r in known)
                if not path.exists() and not under_catalog:
                    errors.append(f"Unknown path: {path}")
                    paths.remove(path)
            for error in errors:
                logger.warning("Refresh skipping path: %s", error)
            skipped = errors
            if not paths:
                return RefreshResult(
                    mode=mode,
                    status="error",
                    message="No valid paths to refresh",
                    skipped_paths=skipped,
                    errors=skipped,
                )

        if not request.async_mode:
            return self._finish(mode, None, self._execute(paths, request), skipped)

        job = self.jobs.start(
            JobKind.REFRESH,
            [str(p) for p in paths or []],
            self.executor,
            self._worker,
            paths,
            request,
            skipped,
        )
        return RefreshResult(
            mode=mode,
            status=JobStatus.RUNNING.value,
            job_id=job.job_id,
            message=f"Refresh started in background (job {job.job_id})",
            skipped_paths=skipped,
        )

    def _execute(
        self,
        paths: list[Path] | None,
        request: RefreshRequest,
        job_id: str | None = None,
    ) -> Ok[UpdateResult] | TransientError:
        failed = 0

        def progress(event: BatchProgress) -> None:
            nonlocal failed
            if not event.result.success:
                failed += 1
            self.jobs.update(
                job_id,
                total_files=event.total,
                processed_files=event.completed,
                failed_files=failed,
            )

        try:
            update = self.watchers.pause_while(
                lambda: self.incremental.update(
                    paths=paths,
                    force=request.force,
                    parallelism=request.parallelism,
                    on_progress=progress if job_id is not None else None,
                )
            )
        except (StoreError, OSError, ValueError) as e:
            logger.error("Refresh failed: %s", e)
            return TransientError(f"Refresh failed: {e}", cause=e)
        return Ok(update)

    def _finish(
        self,
        mode: str,
        job_id: str | None,
        outcome: Ok[UpdateResult] | TransientError,
        skipped: list[str],
    ) -> RefreshResult:
        if isinstance(outcome, TransientError):
            return RefreshResult(
                mode=mode,
                status=JobStatus.FAILED.value,
                job_id=job_id,
                message=outcome.message,
                skipped_paths=skipped,
                errors=[outcome.message],
            )
        update = outcome.value
        status = JobStatus.COMPLETED_WITH_ERRORS if update.has_failures else JobStatus.COMPLETED
        return RefreshResult(
            mode=mode,
            status=status.value,
            job_id=job_id,
            new_count=update.new_count,
            modified_count=update.modified_count,
            deleted_count=update.deleted_count,
            unchanged_count=update.unchanged_count,
            failed_count=update.indexing_failures + update.deletion_failures,
            duration_ms=update.duration_ms,
            message=format_refresh_message(update),
            skipped_paths=skipped,
            errors=[f"{f.rel_path}: {f.error}" for f in update.failures],
        )

    def _worker(
        self,
        job_id: str,
        paths: list[Path] | None,
        request: RefreshRequest,
        skipped: list[str],
    ) -> RefreshResult:
        try:
            result = self._finish("async", job_id, self._execute(paths, request, job_id), skipped)
        except Exception as e:
            logger.exception("Refresh job %s crashed", job_id)
            self.jobs.update(job_id, status=JobStatus.FAILED, error=str(e), completed_at=_now())
            raise
        self.jobs.update(
            job_id,
            status=JobStatus(result.status),
            failed_files=result.failed_count,
            error=result.message if result.status == JobStatus.FAILED.value else None,
            completed_at=_now(),
            result=result.to_dict(),
        )
        return result
