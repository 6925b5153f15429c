"""Classify discovered files against the persisted catalog."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from context_mcp.indexer.database import Database
from context_mcp.indexer.metadata import FileMetadata, compute_hash, extract_metadata

logger = logging.getLogger(__name__)


@dataclass
class ChangeSet:
    """Result of comparing a scan with the catalog."""

    new: list[Path] = field(default_factory=list)
    modified: list[Path] = field(default_factory=list)
    unchanged: list[Path] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)  # relative paths
    # Unchanged content whose size or mtime moved; metadata needs a refresh
    touched: list[FileMetadata] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.new or self.modified or self.deleted)


class ChangeDetector:
    """Partitions files into new, modified, unchanged and deleted.

    The content hash always decides. Size and mtime only tell an unchanged
    file whose metadata moved (reported in ``touched``) from one that is
    fully up to date.
    """

    def __init__(self, db: Database, project_root: Path):
        self.db = db
        self.project_root = project_root

    def detect(self, paths: list[Path], scope: list[Path] | None = None) -> ChangeSet:
        """Compare paths with the catalog.

        Args:
            paths: Eligible files from the current scan.
            scope: When given, only cataloged files under these paths can be
                reported as deleted.
        """
        catalog = self.db.get_catalog()
        changes = ChangeSet()
        seen: set[str] = set()

        for path in paths:
            try:
                meta = extract_metadata(path, self.project_root)
            except OSError as e:
                logger.warning("Cannot stat %s, skipping: %s", path, e)
                continue
            seen.add(meta.rel_path)

            existing = catalog.get(meta.rel_path)
            if existing is None:
                changes.new.append(path)
                continue
            try:
                content_hash = compute_hash(path.read_bytes())
            except OSError as e:
                logger.warning("Cannot read %s, skipping: %s", path, e)
                continue
            if content_hash != existing.content_hash:
                changes.modified.append(path)
                continue
            changes.unchanged.append(path)
            if existing.size_bytes != meta.size_bytes or existing.mtime_ns != meta.mtime_ns:
                changes.touched.append(meta)

        scope_prefixes = [p.resolve() for p in scope] if scope is not None else None
        for rel_path, state in catalog.items():
            if rel_path in seen:
                continue
            if scope_prefixes is not None:
                abs_path = Path(state.abs_path)
                if not any(abs_path == p or p in abs_path.parents for p in scope_prefixes):
                    continue
            changes.deleted.append(rel_path)

        logger.debug(
            "Change detection: %d new, %d modified, %d unchanged, %d deleted",
            len(changes.new),
            len(changes.modified),
            len(changes.unchanged),
            len(changes.deleted),
        )
        return changes
