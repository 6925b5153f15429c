"""Path filters applied during discovery.

A candidate file is eligible only if it passes every filter, checked in this
order: symlink policy, ignore patterns, extension list, include paths, then
size and binary detection.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import pathspec

logger = logging.getLogger(__name__)

IGNORE_FILES = {
    "gitignore": ".gitignore",
    "contextignore": ".contextignore",
    "dockerignore": ".dockerignore",
}

BINARY_EXTENSIONS = {
    ".exe", ".dll", ".so", ".dylib", ".bin", ".dat", ".class", ".jar",
    ".war", ".zip", ".gz", ".tgz", ".tar", ".bz2", ".xz", ".7z",
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".ico", ".webp", ".heic",
    ".pdf", ".mp3", ".wav", ".flac", ".ogg", ".mp4", ".mkv", ".avi",
    ".mov", ".woff", ".woff2", ".ttf", ".otf", ".pyc", ".sqlite", ".db",
}

# Bytes sampled when sniffing for binary content
BINARY_SNIFF_BYTES = 8192
# Share of control bytes above which a file is treated as binary
BINARY_CONTROL_RATIO = 0.30
_TEXT_CONTROL_BYTES = {0x08, 0x09, 0x0A, 0x0C, 0x0D, 0x1B}


class PathFilter:
    """Gitignore-style matcher over paths relative to a root.

    Patterns follow gitignore semantics through ``pathspec``: the last
    matching pattern wins and ``!`` re-includes.
    """

    def __init__(self, patterns: list[str] | None = None):
        self.patterns = [
            line.rstrip()
            for line in patterns or []
            if line.strip() and not line.lstrip().startswith("#")
        ]
        self.spec = pathspec.GitIgnoreSpec.from_lines(self.patterns)

    @classmethod
    def from_sources(
        cls,
        root: Path,
        patterns: list[str],
        use_gitignore: bool = True,
        use_contextignore: bool = True,
        use_dockerignore: bool = True,
    ) -> "PathFilter":
        """Combine configured patterns with the ignore files found at root."""
        combined = list(patterns)
        enabled = {
            "gitignore": use_gitignore,
            "contextignore": use_contextignore,
            "dockerignore": use_dockerignore,
        }
        for key, filename in IGNORE_FILES.items():
            if not enabled[key]:
                continue
            ignore_file = root / filename
            if not ignore_file.is_file():
                continue
            try:
                combined.extend(ignore_file.read_text(encoding="utf-8").splitlines())
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Cannot read ignore file %s: %s", ignore_file, e)
        return cls(combined)

    def is_ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        if not self.patterns:
            return False
        # dir-only patterns ("cache/") need the trailing slash
        return self.spec.match_file(f"{rel_path}/" if is_dir else rel_path)


class ExtensionFilter:
    """Allowlist or blocklist of file extensions."""

    def __init__(self, allowlist: list[str] | None = None, blocklist: list[str] | None = None):
        if allowlist and blocklist:
            raise ValueError("Extension allowlist and blocklist are mutually exclusive")
        self.allowlist = {self._normalize(e) for e in allowlist or []}
        self.blocklist = {self._normalize(e) for e in blocklist or []}

    @staticmethod
    def _normalize(extension: str) -> str:
        extension = extension.strip().lower()
        return extension if extension.startswith(".") else f".{extension}"

    def accepts(self, path: Path) -> bool:
        suffix = path.suffix.lower()
        if self.allowlist:
            return suffix in self.allowlist
        if self.blocklist:
            return suffix not in self.blocklist
        return True


class IncludePathsFilter:
    """Restricts discovery to explicit include paths, when any are given."""

    def __init__(self, include_paths: list[str] | None, base_dir: Path):
        self.paths: list[Path] = []
        for entry in include_paths or []:
            candidate = Path(entry).expanduser()
            if not candidate.is_absolute():
                candidate = base_dir / candidate
            self.paths.append(Path(os.path.normpath(candidate)))

    def accepts(self, path: Path) -> bool:
        if not self.paths:
            return True
        return any(path == p or p in path.parents for p in self.paths)

    def may_contain(self, directory: Path) -> bool:
        """Whether a directory can still lead to an included path."""
        if not self.paths:
            return True
        return any(
            directory == p or p in directory.parents or directory in p.parents
            for p in self.paths
        )


class SymlinkHandler:
    """Decides whether a symlink may be followed.

    A link is followed only when following is enabled, its chain is no
    deeper than max_depth, it does not loop, and its final target lies
    inside one of the allowed roots.
    """

    def __init__(self, allowed_roots: list[Path], follow: bool = False, max_depth: int = 3):
        self.allowed_roots = [root.resolve() for root in allowed_roots]
        self.follow = follow
        self.max_depth = max_depth

    def resolve(self, path: Path) -> Path | None:
        """Return the final target of a symlink, or None if it must be skipped."""
        if not self.follow:
            return None
        current = path
        seen: set[str] = set()
        depth = 0
        while current.is_symlink():
            depth += 1
            if depth > self.max_depth:
                logger.warning("Symlink chain too deep, skipping: %s", path)
                return None
            key = os.path.normpath(str(current))
            if key in seen:
                logger.warning("Symlink loop detected, skipping: %s", path)
                return None
            seen.add(key)
            current = Path(os.path.normpath(current.parent / os.readlink(current)))
        try:
            target = current.resolve(strict=True)
        except (OSError, RuntimeError):
            logger.warning("Broken symlink, skipping: %s", path)
            return None
        if not self.is_within_roots(target):
            logger.warning("Symlink escapes allowed roots, skipping: %s -> %s", path, target)
            return None
        return target

    def is_within_roots(self, target: Path) -> bool:
        return any(target == root or root in target.parents for root in self.allowed_roots)


def is_binary(path: Path) -> bool:
    """Detect binary files by extension, then by sniffing leading bytes."""
    if path.suffix.lower() in BINARY_EXTENSIONS:
        return True
    try:
        with open(path, "rb") as f:
            sample = f.read(BINARY_SNIFF_BYTES)
    except OSError:
        return False
    if not sample:
        return False
    if b"\0" in sample:
        return True
    control = sum(1 for b in sample if b < 0x20 and b not in _TEXT_CONTROL_BYTES)
    return control / len(sample) > BINARY_CONTROL_RATIO


@dataclass
class Verdict:
    accepted: bool
    reason: str | None = None


class PathValidator:
    """Runs every filter over a candidate path."""

    def __init__(
        self,
        root: Path,
        path_filter: PathFilter,
        extension_filter: ExtensionFilter,
        include_filter: IncludePathsFilter,
        symlink_handler: SymlinkHandler,
        max_file_size_bytes: int,
    ):
        self.root = root
        self.path_filter = path_filter
        self.extension_filter = extension_filter
        self.include_filter = include_filter
        self.symlink_handler = symlink_handler
        self.max_file_size_bytes = max_file_size_bytes

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def should_descend(self, directory: Path) -> bool:
        rel = self._relative(directory)
        if rel != "." and self.path_filter.is_ignored(rel, is_dir=True):
            return False
        return self.include_filter.may_contain(directory)

    def validate(self, path: Path) -> Verdict:
        target = path
        if path.is_symlink():
            resolved = self.symlink_handler.resolve(path)
            if resolved is None:
                return Verdict(False, "symlink")
            target = resolved

        rel = self._relative(path)
        if self.path_filter.is_ignored(rel):
            return Verdict(False, "ignored")
        if not self.extension_filter.accepts(path):
            return Verdict(False, "extension")
        if not self.include_filter.accepts(path):
            return Verdict(False, "not included")
        try:
            size = target.stat().st_size
        except OSError as e:
            logger.warning("Cannot stat %s: %s", path, e)
            return Verdict(False, "unreadable")
        if size > self.max_file_size_bytes:
            return Verdict(False, "too large")
        if is_binary(target):
            return Verdict(False, "binary")
        return Verdict(True)
