"""SQLite database management for the context index."""

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import numpy as np

from context_mcp.indexer.errors import StoreError
from context_mcp.indexer.metadata import FileMetadata
from context_mcp.indexer.models import (
    Chunk,
    ChunkArtifacts,
    ChunkKind,
    ChunkRecord,
    Embedding,
    FileArtifacts,
    FileState,
    Link,
    StoredChunk,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "2.0"

SCHEMA_SQL = """
-- contextMCP Index Schema v2.0
-- The index is derived data: a rebuild drops and recreates every table.

PRAGMA foreign_keys = ON;
PRAGMA journal_mode = WAL;

-- One row per tracked file; deleted files are flagged, not removed
CREATE TABLE IF NOT EXISTS file_state (
    file_id       INTEGER PRIMARY KEY AUTOINCREMENT,
    rel_path      TEXT NOT NULL UNIQUE,
    abs_path      TEXT NOT NULL,
    content_hash  TEXT NOT NULL,
    size_bytes    INTEGER NOT NULL,
    mtime_ns      INTEGER NOT NULL,
    language      TEXT,
    kind          TEXT,
    fingerprint   TEXT,
    indexed_at    TEXT NOT NULL DEFAULT (datetime('now')),
    is_deleted    INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_file_state_language ON file_state(language);
CREATE INDEX IF NOT EXISTS idx_file_state_deleted ON file_state(is_deleted);
CREATE INDEX IF NOT EXISTS idx_file_state_fingerprint ON file_state(fingerprint);

-- Chunks table
CREATE TABLE IF NOT EXISTS chunks (
    chunk_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    file_id      INTEGER NOT NULL,
    ordinal      INTEGER NOT NULL,
    kind         TEXT NOT NULL,
    start_line   INTEGER NOT NULL,
    end_line     INTEGER NOT NULL,
    token_count  INTEGER NOT NULL,
    content      TEXT NOT NULL,
    summary      TEXT,
    created_at   TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (file_id, ordinal),
    FOREIGN KEY (file_id) REFERENCES file_state(file_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_chunks_file ON chunks(file_id);
CREATE INDEX IF NOT EXISTS idx_chunks_kind ON chunks(kind);
CREATE INDEX IF NOT EXISTS idx_chunks_summary ON chunks(summary);

-- FTS5 virtual table
CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
    content,
    summary,
    content='chunks',
    content_rowid='chunk_id'
);

-- Triggers to keep FTS5 synchronized
CREATE TRIGGER IF NOT EXISTS chunks_ai AFTER INSERT ON chunks BEGIN
    INSERT INTO chunks_fts(rowid, content, summary)
    VALUES (NEW.chunk_id, NEW.content, NEW.summary);
END;

CREATE TRIGGER IF NOT EXISTS chunks_ad AFTER DELETE ON chunks BEGIN
    INSERT INTO chunks_fts(chunks_fts, rowid, content, summary)
    VALUES ('delete', OLD.chunk_id, OLD.content, OLD.summary);
END;

CREATE TRIGGER IF NOT EXISTS chunks_au AFTER UPDATE ON chunks BEGIN
    INSERT INTO chunks_fts(chunks_fts, rowid, content, summary)
    VALUES ('delete', OLD.chunk_id, OLD.content, OLD.summary);
    INSERT INTO chunks_fts(rowid, content, summary)
    VALUES (NEW.chunk_id, NEW.content, NEW.summary);
END;

-- Embeddings table (vector stored as little-endian float32 bytes)
CREATE TABLE IF NOT EXISTS embeddings (
    embedding_id  INTEGER PRIMARY KEY AUTOINCREMENT,
    chunk_id      INTEGER NOT NULL,
    model         TEXT NOT NULL,
    dimensions    INTEGER NOT NULL,
    vector        BLOB NOT NULL,
    created_at    TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (chunk_id, model),
    FOREIGN KEY (chunk_id) REFERENCES chunks(chunk_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_embeddings_model ON embeddings(model);

-- Links table
CREATE TABLE IF NOT EXISTS links (
    link_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    source_chunk_id  INTEGER NOT NULL,
    target_file_id   INTEGER NOT NULL,
    target_chunk_id  INTEGER,
    link_type        TEXT NOT NULL,
    label            TEXT,
    score            REAL,
    created_at       TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (source_chunk_id) REFERENCES chunks(chunk_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_links_source ON links(source_chunk_id);
CREATE INDEX IF NOT EXISTS idx_links_target ON links(target_file_id);

-- Bootstrap progress, used to resume an interrupted bootstrap
CREATE TABLE IF NOT EXISTS bootstrap_progress (
    path        TEXT PRIMARY KEY,
    status      TEXT NOT NULL,
    error       TEXT,
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Metadata table for index versioning
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);

INSERT OR REPLACE INTO meta (key, value) VALUES ('schema_version', '2.0');
INSERT OR IGNORE INTO meta (key, value) VALUES ('created_at', datetime('now'));
"""

DROP_SQL = """
DROP TRIGGER IF EXISTS chunks_ai;
DROP TRIGGER IF EXISTS chunks_ad;
DROP TRIGGER IF EXISTS chunks_au;
DROP TABLE IF EXISTS links;
DROP TABLE IF EXISTS embeddings;
DROP TABLE IF EXISTS chunks_fts;
DROP TABLE IF EXISTS chunks;
DROP TABLE IF EXISTS file_state;
DROP TABLE IF EXISTS bootstrap_progress;
DROP TABLE IF EXISTS meta;
"""


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _scope_clause(
    paths: list[str] | None,
    languages: list[str] | None,
    kinds: list[str] | None,
) -> tuple[str, list]:
    """Build the SQL filter shared by the chunk lookups.

    A scope path matches the file itself or anything below it as a
    directory; ``src`` never matches ``srcold/``.
    """
    clauses = ["f.is_deleted = 0"]
    params: list = []
    prefixes = [p.strip().strip("/") for p in paths or []]
    prefixes = [p for p in prefixes if p]
    if prefixes:
        clauses.append(
            "("
            + " OR ".join("f.rel_path = ? OR f.rel_path LIKE ? ESCAPE '\\'" for _ in prefixes)
            + ")"
        )
        for prefix in prefixes:
            params.extend([prefix, f"{_like_escape(prefix)}/%"])
    if languages:
        clauses.append(f"f.language IN ({', '.join('?' for _ in languages)})")
        params.extend(languages)
    if kinds:
        clauses.append(f"c.kind IN ({', '.join('?' for _ in kinds)})")
        params.extend(kinds)
    return " AND ".join(clauses), params


class Database:
    """SQLite database for the context index."""

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._connections: dict[int, tuple[threading.Thread, sqlite3.Connection]] = {}
        self._connections_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.db_path), timeout=30, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
            except (OSError, sqlite3.Error) as e:
                raise StoreError(f"Cannot open database {self.db_path}: {e}") from e
            self._local.conn = conn
            with self._connections_lock:
                self._prune_connections()
                self._connections[threading.get_ident()] = (threading.current_thread(), conn)
        return self._local.conn

    @contextmanager
    def _read_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for read operations."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
        except sqlite3.Error as e:
            raise StoreError(f"Database read failed: {e}") from e
        finally:
            cursor.close()

    @contextmanager
    def _write_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for write operations with locking."""
        with self._write_lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(f"Database write failed: {e}") from e
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def initialize(self) -> None:
        """Initialize the database schema.

        An index written by another schema version is dropped first; it is
        derived data and the next bootstrap rebuilds it.
        """
        with self._write_cursor() as cursor:
            cursor.execute("SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'meta'")
            if cursor.fetchone() is not None:
                cursor.execute("SELECT value FROM meta WHERE key = 'schema_version'")
                row = cursor.fetchone()
                found = row["value"] if row else None
                if found != SCHEMA_VERSION:
                    logger.warning(
                        "Index schema %s does not match %s, recreating", found, SCHEMA_VERSION
                    )
                    cursor.executescript(DROP_SQL)
            cursor.executescript(SCHEMA_SQL)

    @property
    def open_connections(self) -> int:
        """Number of live connections after closing those of finished threads."""
        with self._connections_lock:
            self._prune_connections()
            return len(self._connections)

    def _prune_connections(self) -> None:
        # caller holds _connections_lock
        for ident, (thread, conn) in list(self._connections.items()):
            if not thread.is_alive():
                conn.close()
                del self._connections[ident]

    def close(self) -> None:
        """Close every connection opened by this instance."""
        with self._connections_lock:
            connections, self._connections = self._connections, {}
        for _, conn in connections.values():
            conn.close()
        self._local = threading.local()

    def clear_context_data(self) -> None:
        """Drop and recreate all tables (destructive rebuild)."""
        logger.info("Clearing context data from %s", self.db_path)
        with self._write_cursor() as cursor:
            cursor.executescript(DROP_SQL)
            cursor.executescript(SCHEMA_SQL)
        logger.info("Context data cleared")

    def optimize(self) -> None:
        """Run store maintenance after a rebuild."""
        with self._write_cursor() as cursor:
            cursor.execute("INSERT INTO chunks_fts(chunks_fts) VALUES('optimize')")
        with self._write_cursor() as cursor:
            cursor.execute("ANALYZE")
            cursor.execute("VACUUM")

    # File state operations

    def _row_to_file_state(self, row: sqlite3.Row) -> FileState:
        return FileState(
            id=row["file_id"],
            rel_path=row["rel_path"],
            abs_path=row["abs_path"],
            content_hash=row["content_hash"],
            size_bytes=row["size_bytes"],
            mtime_ns=row["mtime_ns"],
            language=row["language"],
            kind=row["kind"],
            fingerprint=row["fingerprint"],
            indexed_at=datetime.fromisoformat(row["indexed_at"]),
            is_deleted=bool(row["is_deleted"]),
        )

    def get_file(self, rel_path: str) -> FileState | None:
        """Get a file row by relative path, including deleted rows."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT * FROM file_state WHERE rel_path = ?", (rel_path,))
            row = cursor.fetchone()
            return self._row_to_file_state(row) if row else None

    def get_catalog(self) -> dict[str, FileState]:
        """All non-deleted files keyed by relative path."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT * FROM file_state WHERE is_deleted = 0")
            return {row["rel_path"]: self._row_to_file_state(row) for row in cursor.fetchall()}

    def count_files(self) -> int:
        with self._read_cursor() as cursor:
            cursor.execute("SELECT COUNT(*) FROM file_state WHERE is_deleted = 0")
            return cursor.fetchone()[0]

    def mark_deleted(self, rel_paths: list[str]) -> int:
        """Soft-delete files and drop their chunks. Returns rows affected."""
        if not rel_paths:
            return 0
        with self._write_cursor() as cursor:
            count = 0
            for rel_path in rel_paths:
                cursor.execute(
                    """DELETE FROM chunks WHERE file_id IN
                    (SELECT file_id FROM file_state WHERE rel_path = ?)""",
                    (rel_path,),
                )
                cursor.execute(
                    """UPDATE file_state SET is_deleted = 1, indexed_at = datetime('now')
                    WHERE rel_path = ? AND is_deleted = 0""",
                    (rel_path,),
                )
                count += cursor.rowcount
            return count

    def touch_files(self, files: list[FileMetadata]) -> None:
        """Refresh size and mtime for files whose content did not change."""
        if not files:
            return
        with self._write_cursor() as cursor:
            cursor.executemany(
                "UPDATE file_state SET size_bytes = ?, mtime_ns = ? WHERE rel_path = ?",
                [(m.size_bytes, m.mtime_ns, m.rel_path) for m in files],
            )

    # Artifact operations

    def sync_file_artifacts(
        self, file_state: FileState, chunks: list[ChunkArtifacts]
    ) -> FileArtifacts:
        """Replace a file row and all of its chunks, embeddings and links.

        Runs in one transaction: on failure nothing is changed.
        """
        with self._write_cursor() as cursor:
            cursor.execute(
                """INSERT INTO file_state
                (rel_path, abs_path, content_hash, size_bytes, mtime_ns, language, kind, fingerprint)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(rel_path) DO UPDATE SET
                    abs_path = excluded.abs_path,
                    content_hash = excluded.content_hash,
                    size_bytes = excluded.size_bytes,
                    mtime_ns = excluded.mtime_ns,
                    language = excluded.language,
                    kind = excluded.kind,
                    fingerprint = excluded.fingerprint,
                    indexed_at = datetime('now'),
                    is_deleted = 0
                """,
                (
                    file_state.rel_path,
                    file_state.abs_path,
                    file_state.content_hash,
                    file_state.size_bytes,
                    file_state.mtime_ns,
                    file_state.language,
                    file_state.kind,
                    file_state.fingerprint,
                ),
            )
            cursor.execute(
                "SELECT file_id FROM file_state WHERE rel_path = ?", (file_state.rel_path,)
            )
            file_id = cursor.fetchone()["file_id"]

            cursor.execute("DELETE FROM chunks WHERE file_id = ?", (file_id,))

            for artifact in chunks:
                draft = artifact.chunk
                cursor.execute(
                    """INSERT INTO chunks
                    (file_id, ordinal, kind, start_line, end_line, token_count, content, summary)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        file_id,
                        draft.ordinal,
                        draft.kind.value,
                        draft.start_line,
                        draft.end_line,
                        draft.token_count,
                        draft.content,
                        draft.summary,
                    ),
                )
                chunk_id = cursor.lastrowid

                if artifact.vector is not None:
                    cursor.execute(
                        """INSERT INTO embeddings (chunk_id, model, dimensions, vector)
                        VALUES (?, ?, ?, ?)""",
                        (
                            chunk_id,
                            artifact.model or "",
                            len(artifact.vector),
                            np.asarray(artifact.vector, dtype="<f4").tobytes(),
                        ),
                    )

                for link in artifact.links:
                    cursor.execute(
                        "SELECT file_id FROM file_state WHERE rel_path = ? AND is_deleted = 0",
                        (link.target_path,),
                    )
                    target = cursor.fetchone()
                    if target is None:
                        continue
                    cursor.execute(
                        """INSERT INTO links
                        (source_chunk_id, target_file_id, link_type, label, score)
                        VALUES (?, ?, ?, ?, ?)""",
                        (chunk_id, target["file_id"], link.link_type, link.label, link.score),
                    )

            return self._load_artifacts(cursor, file_state.rel_path)  # type: ignore[return-value]

    def load_file_artifacts(self, rel_path: str) -> FileArtifacts | None:
        """Load a file with its chunks, embeddings and links."""
        with self._read_cursor() as cursor:
            return self._load_artifacts(cursor, rel_path)

    def _load_artifacts(self, cursor: sqlite3.Cursor, rel_path: str) -> FileArtifacts | None:
        cursor.execute("SELECT * FROM file_state WHERE rel_path = ?", (rel_path,))
        row = cursor.fetchone()
        if row is None:
            return None
        file_state = self._row_to_file_state(row)

        cursor.execute(
            "SELECT * FROM chunks WHERE file_id = ? ORDER BY ordinal", (file_state.id,)
        )
        stored = {r["chunk_id"]: StoredChunk(chunk=self._row_to_chunk(r)) for r in cursor.fetchall()}
        if stored:
            cursor.execute(
                """SELECT e.* FROM embeddings e JOIN chunks c ON c.chunk_id = e.chunk_id
                WHERE c.file_id = ? ORDER BY e.embedding_id""",
                (file_state.id,),
            )
            for r in cursor.fetchall():
                stored[r["chunk_id"]].embeddings.append(
                    Embedding(
                        id=r["embedding_id"],
                        chunk_id=r["chunk_id"],
                        model=r["model"],
                        dimensions=r["dimensions"],
                        vector=np.frombuffer(r["vector"], dtype="<f4"),
                        created_at=datetime.fromisoformat(r["created_at"]),
                    )
                )
            cursor.execute(
                """SELECT l.* FROM links l JOIN chunks c ON c.chunk_id = l.source_chunk_id
                WHERE c.file_id = ? ORDER BY l.link_id""",
                (file_state.id,),
            )
            for r in cursor.fetchall():
                stored[r["source_chunk_id"]].links.append(
                    Link(
                        id=r["link_id"],
                        source_chunk_id=r["source_chunk_id"],
                        target_file_id=r["target_file_id"],
                        target_chunk_id=r["target_chunk_id"],
                        link_type=r["link_type"],
                        label=r["label"],
                        score=r["score"],
                        created_at=datetime.fromisoformat(r["created_at"]),
                    )
                )
        return FileArtifacts(file=file_state, chunks=list(stored.values()))

    # Chunk operations

    def _row_to_chunk(self, row: sqlite3.Row) -> Chunk:
        return Chunk(
            id=row["chunk_id"],
            file_id=row["file_id"],
            ordinal=row["ordinal"],
            kind=ChunkKind(row["kind"]),
            start_line=row["start_line"],
            end_line=row["end_line"],
            token_count=row["token_count"],
            content=row["content"],
            summary=row["summary"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_record(self, row: sqlite3.Row, with_vector: bool = False) -> ChunkRecord:
        keys = row.keys()
        return ChunkRecord(
            chunk=self._row_to_chunk(row),
            rel_path=row["rel_path"],
            language=row["language"],
            vector=(
                np.frombuffer(row["vector"], dtype="<f4") if with_vector and row["vector"] else None
            ),
            rank=row["rank"] if "rank" in keys else None,
        )

    def get_chunks(self, file_id: int) -> list[Chunk]:
        """Get all chunks for a file in ordinal order."""
        with self._read_cursor() as cursor:
            cursor.execute(
                "SELECT * FROM chunks WHERE file_id = ? ORDER BY ordinal", (file_id,)
            )
            return [self._row_to_chunk(row) for row in cursor.fetchall()]

    def get_neighbors(self, file_id: int, ordinal: int, window: int) -> list[ChunkRecord]:
        """Chunks of the same file within +/- window ordinals, excluding the anchor."""
        with self._read_cursor() as cursor:
            cursor.execute(
                """SELECT c.*, f.rel_path, f.language FROM chunks c
                JOIN file_state f ON f.file_id = c.file_id
                WHERE c.file_id = ? AND c.ordinal BETWEEN ? AND ? AND c.ordinal != ?
                ORDER BY c.ordinal""",
                (file_id, ordinal - window, ordinal + window, ordinal),
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def fetch_vectors(
        self,
        model: str,
        paths: list[str] | None = None,
        languages: list[str] | None = None,
        kinds: list[str] | None = None,
    ) -> list[ChunkRecord]:
        """Chunks with their vector for one embedding model, scoped."""
        where, params = _scope_clause(paths, languages, kinds)
        with self._read_cursor() as cursor:
            cursor.execute(
                f"""SELECT c.*, f.rel_path, f.language, e.vector FROM embeddings e
                JOIN chunks c ON c.chunk_id = e.chunk_id
                JOIN file_state f ON f.file_id = c.file_id
                WHERE e.model = ? AND {where}
                ORDER BY c.chunk_id""",
                [model, *params],
            )
            return [self._row_to_record(row, with_vector=True) for row in cursor.fetchall()]

    def search_fulltext(
        self,
        match_query: str,
        paths: list[str] | None = None,
        languages: list[str] | None = None,
        kinds: list[str] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ChunkRecord]:
        """FTS5 search over chunk content and labels, best matches first."""
        where, params = _scope_clause(paths, languages, kinds)
        with self._read_cursor() as cursor:
            cursor.execute(
                f"""SELECT c.*, f.rel_path, f.language, bm25(chunks_fts) AS rank
                FROM chunks_fts
                JOIN chunks c ON chunks_fts.rowid = c.chunk_id
                JOIN file_state f ON f.file_id = c.file_id
                WHERE chunks_fts MATCH ? AND {where}
                ORDER BY rank, c.chunk_id
                LIMIT ? OFFSET ?""",
                [match_query, *params, limit, offset],
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def search_labels(
        self,
        names: list[str],
        paths: list[str] | None = None,
        languages: list[str] | None = None,
        kinds: list[str] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ChunkRecord]:
        """Chunks whose label contains any of the given names (case-insensitive)."""
        if not names:
            return []
        where, params = _scope_clause(paths, languages, kinds)
        name_clause = " OR ".join("LOWER(c.summary) LIKE ? ESCAPE '\\'" for _ in names)
        with self._read_cursor() as cursor:
            cursor.execute(
                f"""SELECT c.*, f.rel_path, f.language FROM chunks c
                JOIN file_state f ON f.file_id = c.file_id
                WHERE c.summary IS NOT NULL AND ({name_clause}) AND {where}
                ORDER BY c.chunk_id
                LIMIT ? OFFSET ?""",
                [*(f"%{_like_escape(n.lower())}%" for n in names), *params, limit, offset],
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    # Bootstrap progress operations

    def progress_initialize(self, paths: list[str]) -> None:
        """Register paths as pending, keeping the status of known ones."""
        with self._write_cursor() as cursor:
            cursor.executemany(
                "INSERT OR IGNORE INTO bootstrap_progress (path, status) VALUES (?, 'pending')",
                [(p,) for p in paths],
            )

    def progress_set(self, path: str, status: str, error: str | None = None) -> None:
        with self._write_cursor() as cursor:
            cursor.execute(
                """INSERT INTO bootstrap_progress (path, status, error) VALUES (?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    status = excluded.status,
                    error = excluded.error,
                    updated_at = datetime('now')""",
                (path, status, error),
            )

    def progress_counts(self) -> dict[str, int]:
        with self._read_cursor() as cursor:
            cursor.execute(
                "SELECT status, COUNT(*) AS n FROM bootstrap_progress GROUP BY status"
            )
            return {row["status"]: row["n"] for row in cursor.fetchall()}

    def progress_remaining(self) -> list[str]:
        with self._read_cursor() as cursor:
            cursor.execute(
                "SELECT path FROM bootstrap_progress WHERE status != 'completed' ORDER BY path"
            )
            return [row["path"] for row in cursor.fetchall()]

    def progress_reset(self) -> None:
        with self._write_cursor() as cursor:
            cursor.execute("DELETE FROM bootstrap_progress")

    # Statistics

    def get_stats(self) -> dict:
        """Row counts and language breakdown of the index."""
        with self._read_cursor() as cursor:
            cursor.execute(
                """SELECT
                    (SELECT COUNT(*) FROM file_state WHERE is_deleted = 0) AS files,
                    (SELECT COUNT(*) FROM file_state WHERE is_deleted = 1) AS deleted_files,
                    (SELECT COUNT(*) FROM chunks) AS chunks,
                    (SELECT COUNT(*) FROM embeddings) AS embeddings,
                    (SELECT COUNT(*) FROM links) AS links"""
            )
            totals = dict(cursor.fetchone())
            cursor.execute(
                """SELECT COALESCE(language, 'unknown') AS language, COUNT(*) AS n
                FROM file_state WHERE is_deleted = 0
                GROUP BY language ORDER BY n DESC, language"""
            )
            totals["languages"] = {row["language"]: row["n"] for row in cursor.fetchall()}
            cursor.execute("SELECT value FROM meta WHERE key = 'schema_version'")
            row = cursor.fetchone()
            totals["schema_version"] = row["value"] if row else None
            return totals
