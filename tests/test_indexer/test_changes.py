"""Tests for change detection against the catalog."""

import os

import pytest

from context_mcp.indexer.changes import ChangeDetector
from context_mcp.indexer.database import Database
from context_mcp.indexer.metadata import compute_hash, extract_metadata
from context_mcp.indexer.models import FileState


def catalog(db: Database, path, project) -> FileState:
    meta = extract_metadata(path, project)
    state = FileState(
        rel_path=meta.rel_path,
        abs_path=str(path),
        content_hash=compute_hash(path.read_bytes()),
        size_bytes=meta.size_bytes,
        mtime_ns=meta.mtime_ns,
        language=meta.language,
        kind=meta.kind,
    )
    db.sync_file_artifacts(state, [])
    return state


class TestChangeDetector:
    @pytest.fixture
    def detector(self, db, project):
        return ChangeDetector(db, project)

    def test_new_files(self, detector, write_file):
        a = write_file("a.py", "x = 1\n")
        changes = detector.detect([a])
        assert changes.new == [a]
        assert changes.has_changes

    def test_unchanged_file(self, detector, db, project, write_file):
        a = write_file("a.py", "x = 1\n")
        catalog(db, a, project)
        changes = detector.detect([a])
        assert changes.unchanged == [a]
        assert not changes.has_changes
        assert changes.touched == []

    def test_same_size_edit_with_preserved_mtime_is_modified(
        self, detector, db, project, write_file
    ):
        a = write_file("a.py", "y = 1\n")
        catalog(db, a, project)
        stat = a.stat()
        a.write_text("y = 2\n")
        os.utime(a, ns=(stat.st_atime_ns, stat.st_mtime_ns))

        changes = detector.detect([a])
        assert changes.modified == [a]
        assert changes.unchanged == []

    def test_modified_content(self, detector, db, project, write_file):
        a = write_file("a.py", "x = 1\n")
        catalog(db, a, project)
        a.write_text("x = 22\n")
        changes = detector.detect([a])
        assert changes.modified == [a]

    def test_touch_without_edit_is_unchanged(self, detector, db, project, write_file):
        a = write_file("a.py", "x = 1\n")
        catalog(db, a, project)
        stat = a.stat()
        os.utime(a, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))

        changes = detector.detect([a])
        assert changes.unchanged == [a]
        assert [m.rel_path for m in changes.touched] == ["a.py"]

    def test_deleted_files(self, detector, db, project, write_file):
        a = write_file("a.py", "x = 1\n")
        b = write_file("b.py", "y = 2\n")
        catalog(db, a, project)
        catalog(db, b, project)
        b.unlink()

        changes = detector.detect([a])
        assert changes.deleted == ["b.py"]

    def test_deletion_limited_to_scope(self, detector, db, project, write_file):
        a = write_file("src/a.py", "x = 1\n")
        b = write_file("docs/b.md", "# B\n")
        catalog(db, a, project)
        catalog(db, b, project)

        changes = detector.detect([a], scope=[project / "src"])
        assert changes.deleted == []
        assert changes.unchanged == [a]
