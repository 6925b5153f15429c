"""Tests for discovery: path filters, metadata and the directory scanner."""

import os
from pathlib import Path

import pytest

from context_mcp.config import Config, IndexingConfig
from context_mcp.indexer.filters import (
    ExtensionFilter,
    IncludePathsFilter,
    PathFilter,
    SymlinkHandler,
    is_binary,
)
from context_mcp.indexer.metadata import (
    compute_fingerprint,
    compute_hash,
    detect_language,
    extract_metadata,
    relative_path,
)
from context_mcp.indexer.walker import create_scanner


class TestComputeHash:
    def test_computes_sha256(self):
        content = b"hello world"
        result = compute_hash(content)
        assert result == "b94d27b9934d3e08a52e52d7da7dabfac484efe37a5380ee9088f7ace2efcde9"

    def test_different_content_different_hash(self):
        assert compute_hash(b"foo") != compute_hash(b"bar")

    def test_fingerprint_depends_on_language(self):
        digest = compute_hash(b"x = 1")
        assert compute_fingerprint(digest, "python", 5) != compute_fingerprint(digest, "text", 5)


class TestMetadata:
    def test_detect_language_is_case_insensitive(self):
        assert detect_language(Path("Main.KT")) == "kotlin"
        assert detect_language(Path("notes.md")) == "markdown"
        assert detect_language(Path("unknown.xyz")) is None

    def test_relative_path_is_posix(self, tmp_path):
        assert relative_path(tmp_path / "a" / "b.py", tmp_path) == "a/b.py"

    def test_extract_metadata(self, tmp_path):
        path = tmp_path / "pkg" / "mod.py"
        path.parent.mkdir()
        path.write_text("x = 1\n")
        meta = extract_metadata(path, tmp_path)
        assert meta.rel_path == "pkg/mod.py"
        assert meta.size_bytes == 6
        assert meta.mtime_ns > 0
        assert meta.language == "python"
        assert meta.kind == "source"


class TestPathFilter:
    def test_plain_name_matches_at_any_depth(self):
        path_filter = PathFilter(["node_modules"])
        assert path_filter.is_ignored("node_modules", is_dir=True)
        assert path_filter.is_ignored("web/node_modules/lib/index.js")
        assert not path_filter.is_ignored("src/modules.py")

    def test_glob_and_anchored_patterns(self):
        path_filter = PathFilter(["*.log", "/build"])
        assert path_filter.is_ignored("logs/app.log")
        assert path_filter.is_ignored("build/out.js")
        assert not path_filter.is_ignored("src/build/out.js")

    def test_double_star(self):
        path_filter = PathFilter(["docs/**/draft.md"])
        assert path_filter.is_ignored("docs/draft.md")
        assert path_filter.is_ignored("docs/a/b/draft.md")
        assert not path_filter.is_ignored("src/draft.md")

    def test_negation_reincludes(self):
        path_filter = PathFilter(["*.md", "!README.md"])
        assert path_filter.is_ignored("notes.md")
        assert not path_filter.is_ignored("README.md")

    def test_dir_only_pattern(self):
        path_filter = PathFilter(["cache/"])
        assert path_filter.is_ignored("cache", is_dir=True)
        assert not path_filter.is_ignored("cache", is_dir=False)
        assert path_filter.is_ignored("cache/item.txt")

    def test_comments_and_blank_lines_ignored(self):
        path_filter = PathFilter(["# comment", "", "   "])
        assert path_filter.patterns == []
        assert not path_filter.is_ignored("anything.py")

    def test_gitignore_character_class_and_nested_negation(self):
        path_filter = PathFilter(["logs/*", "!logs/keep.log", "*.py[co]"])
        assert path_filter.is_ignored("logs/today.log")
        assert not path_filter.is_ignored("logs/keep.log")
        assert path_filter.is_ignored("pkg/mod.pyc")
        assert not path_filter.is_ignored("pkg/mod.py")

    def test_reads_ignore_files(self, tmp_path):
        (tmp_path / ".gitignore").write_text("secret/\n")
        (tmp_path / ".contextignore").write_text("*.sql\n")
        path_filter = PathFilter.from_sources(tmp_path, [])
        assert path_filter.is_ignored("secret/key.txt")
        assert path_filter.is_ignored("db/schema.sql")

    def test_ignore_files_can_be_disabled(self, tmp_path):
        (tmp_path / ".gitignore").write_text("secret/\n")
        path_filter = PathFilter.from_sources(tmp_path, [], use_gitignore=False)
        assert not path_filter.is_ignored("secret/key.txt")


class TestExtensionFilter:
    def test_allowlist(self):
        ext_filter = ExtensionFilter(allowlist=["py", ".MD"])
        assert ext_filter.accepts(Path("a.py"))
        assert ext_filter.accepts(Path("README.md"))
        assert not ext_filter.accepts(Path("a.sql"))

    def test_blocklist(self):
        ext_filter = ExtensionFilter(blocklist=[".sql"])
        assert ext_filter.accepts(Path("a.py"))
        assert not ext_filter.accepts(Path("a.sql"))

    def test_lists_are_mutually_exclusive(self):
        with pytest.raises(ValueError, match="mutually exclusive"):
            ExtensionFilter(allowlist=[".py"], blocklist=[".md"])


class TestIncludePathsFilter:
    def test_no_paths_accepts_everything(self, tmp_path):
        include = IncludePathsFilter([], tmp_path)
        assert include.accepts(tmp_path / "anything.py")

    def test_restricts_to_include_paths(self, tmp_path):
        include = IncludePathsFilter(["src"], tmp_path)
        assert include.accepts(tmp_path / "src" / "a.py")
        assert not include.accepts(tmp_path / "docs" / "a.md")
        assert include.may_contain(tmp_path)
        assert not include.may_contain(tmp_path / "docs")


class TestBinaryDetection:
    def test_binary_extension(self, tmp_path):
        path = tmp_path / "image.png"
        path.write_bytes(b"not really an image")
        assert is_binary(path)

    def test_null_bytes(self, tmp_path):
        path = tmp_path / "data.txt"
        path.write_bytes(b"abc\x00def")
        assert is_binary(path)

    def test_text_file(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("plain text\nwith lines\n")
        assert not is_binary(path)


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks not supported")
class TestSymlinkHandler:
    def test_not_followed_by_default(self, tmp_path):
        target = tmp_path / "real.py"
        target.write_text("x = 1\n")
        link = tmp_path / "link.py"
        link.symlink_to(target)
        assert SymlinkHandler([tmp_path]).resolve(link) is None

    def test_followed_inside_roots(self, tmp_path):
        target = tmp_path / "real.py"
        target.write_text("x = 1\n")
        link = tmp_path / "link.py"
        link.symlink_to(target)
        handler = SymlinkHandler([tmp_path], follow=True)
        assert handler.resolve(link) == target.resolve()

    def test_escape_rejected(self, tmp_path):
        root = tmp_path / "root"
        root.mkdir()
        outside = tmp_path / "outside.py"
        outside.write_text("x = 1\n")
        link = root / "link.py"
        link.symlink_to(outside)
        handler = SymlinkHandler([root], follow=True)
        assert handler.resolve(link) is None

    def test_loop_rejected(self, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.symlink_to(b)
        b.symlink_to(a)
        handler = SymlinkHandler([tmp_path], follow=True, max_depth=10)
        assert handler.resolve(a) is None

    def test_chain_too_deep(self, tmp_path):
        target = tmp_path / "real.py"
        target.write_text("x = 1\n")
        previous = target
        for i in range(3):
            link = tmp_path / f"link{i}.py"
            link.symlink_to(previous)
            previous = link
        handler = SymlinkHandler([tmp_path], follow=True, max_depth=2)
        assert handler.resolve(previous) is None


class TestDirectoryScanner:
    @pytest.fixture
    def tree(self, project, write_file):
        write_file("src/app.py", "def main():\n    pass\n")
        write_file("src/util.ts", "export const x = 1;\n")
        write_file("docs/guide.md", "# Guide\n")
        write_file("node_modules/lib/index.js", "module.exports = {};\n")
        write_file("build/out.py", "x = 1\n")
        write_file("image.png", "fake")
        write_file("notes.xyz", "unknown extension")
        (project / "blob.txt").write_bytes(b"\x00\x01\x02binary")
        return project

    def test_scans_eligible_files(self, tree, config):
        files = create_scanner(config).scan([tree])
        rel = [relative_path(f, tree) for f in files]
        assert rel == ["docs/guide.md", "src/app.py", "src/util.ts"]

    def test_results_are_sorted_and_unique(self, tree, config):
        files = create_scanner(config).scan([tree, tree / "src"])
        assert files == sorted(set(files))

    def test_respects_gitignore(self, tree, config, write_file):
        write_file(".gitignore", "docs/\n")
        files = create_scanner(config).scan([tree])
        assert all("docs" not in f.parts for f in files)

    def test_size_limit(self, tree, project, write_file):
        write_file("src/big.py", "x = 1\n" * 400)
        config = Config(
            project_root=project,
            watch_paths=[project],
            db_path=project.parent / "db",
            indexing=IndexingConfig(max_file_size_mb=0.001),
        )
        files = create_scanner(config).scan([tree])
        assert tree / "src" / "big.py" not in files
        assert tree / "src" / "app.py" in files

    def test_missing_roots_raise(self, config, tmp_path):
        with pytest.raises(ValueError, match="No existing roots"):
            create_scanner(config).scan([tmp_path / "missing"])

    def test_single_file_root(self, tree, config):
        files = create_scanner(config).scan([tree / "src" / "app.py"])
        assert files == [tree / "src" / "app.py"]
