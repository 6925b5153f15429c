"""File walker for discovering indexable files under the watch roots."""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from context_mcp.config import Config
from context_mcp.indexer.filters import (
    ExtensionFilter,
    IncludePathsFilter,
    PathFilter,
    PathValidator,
    SymlinkHandler,
)

logger = logging.getLogger(__name__)


class DirectoryScanner:
    """Depth-first scan of one or more roots through a PathValidator.

    Roots are scanned in parallel when more than one is given. Unreadable
    directories and files are skipped with a warning.
    """

    def __init__(self, validator: PathValidator):
        self.validator = validator

    def scan(self, roots: list[Path]) -> list[Path]:
        """Return the sorted, de-duplicated list of eligible files.

        Raises:
            ValueError: If none of the roots exist.
        """
        existing = [root for root in roots if root.exists()]
        for missing in set(roots) - set(existing):
            logger.warning("Watch root does not exist: %s", missing)
        if not existing:
            raise ValueError(f"No existing roots to scan: {[str(r) for r in roots]}")

        if len(existing) == 1:
            found = self._scan_root(existing[0])
        else:
            with ThreadPoolExecutor(
                max_workers=len(existing), thread_name_prefix="context-scan"
            ) as pool:
                found = [path for batch in pool.map(self._scan_root, existing) for path in batch]

        return sorted(set(found))

    def _scan_root(self, root: Path) -> list[Path]:
        if root.is_file():
            return [root] if self.validator.validate(root).accepted else []

        results: list[Path] = []
        visited: set[tuple[int, int]] = set()
        stack = [root]

        while stack:
            directory = stack.pop()
            try:
                stat = directory.stat()
            except OSError as e:
                logger.warning("Cannot stat directory %s: %s", directory, e)
                continue
            key = (stat.st_dev, stat.st_ino)
            if key in visited:
                logger.debug("Directory already visited, skipping: %s", directory)
                continue
            visited.add(key)

            try:
                entries = sorted(os.scandir(directory), key=lambda e: e.name)
            except OSError as e:
                logger.warning("Cannot read directory %s: %s", directory, e)
                continue

            subdirs: list[Path] = []
            for entry in entries:
                path = Path(entry.path)
                try:
                    if entry.is_symlink():
                        target = self.validator.symlink_handler.resolve(path)
                        if target is None:
                            continue
                        is_dir = target.is_dir()
                    else:
                        is_dir = entry.is_dir()
                except OSError as e:
                    logger.warning("Cannot inspect %s: %s", path, e)
                    continue

                if is_dir:
                    if self.validator.should_descend(path):
                        subdirs.append(path)
                elif self.validator.validate(path).accepted:
                    results.append(path)

            # Reverse so the stack pops subdirectories in name order
            stack.extend(reversed(subdirs))

        logger.debug("Scanned %s: %d eligible files", root, len(results))
        return results


def create_scanner(config: Config, roots: list[Path] | None = None) -> DirectoryScanner:
    """Build a scanner from the indexing configuration."""
    roots = roots or config.watch_paths
    indexing = config.indexing
    validator = PathValidator(
        root=config.project_root,
        path_filter=PathFilter.from_sources(
            config.project_root,
            indexing.ignore_patterns,
            use_gitignore=indexing.use_gitignore,
            use_contextignore=indexing.use_contextignore,
            use_dockerignore=indexing.use_dockerignore,
        ),
        extension_filter=ExtensionFilter(
            allowlist=indexing.allowed_extensions,
            blocklist=indexing.blocked_extensions,
        ),
        include_filter=IncludePathsFilter(indexing.include_paths, config.project_root),
        symlink_handler=SymlinkHandler(
            allowed_roots=config.watch_paths,
            follow=indexing.follow_symlinks,
            max_depth=indexing.max_symlink_depth,
        ),
        max_file_size_bytes=int(indexing.max_file_size_mb * 1024 * 1024),
    )
    return DirectoryScanner(validator)
