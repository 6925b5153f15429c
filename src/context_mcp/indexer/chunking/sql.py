"""SQL chunking by statement."""

import re

from context_mcp.indexer.chunking.base import (
    STRUCTURED_ESTIMATOR,
    Chunker,
    Unit,
    is_blank,
)
from context_mcp.indexer.models import ChunkKind

OBJECT_PATTERN = re.compile(
    r"^(CREATE|ALTER|DROP)\s+(?:OR\s+REPLACE\s+)?(?:(?:GLOBAL|LOCAL)\s+)?"
    r"(?:TEMP(?:ORARY)?\s+)?(?:UNIQUE\s+)?(?:MATERIALIZED\s+)?"
    r"(TABLE|VIEW|INDEX|FUNCTION|PROCEDURE|TRIGGER|SCHEMA|SEQUENCE|TYPE|DATABASE|EXTENSION)\s+"
    r"(?:IF\s+(?:NOT\s+)?EXISTS\s+)?([\w.\"`\[\]]+)",
    re.IGNORECASE,
)
TARGET_PATTERN = re.compile(
    r"^(INSERT\s+INTO|UPDATE|DELETE\s+FROM|MERGE\s+INTO|TRUNCATE(?:\s+TABLE)?)\s+([\w.\"`\[\]]+)",
    re.IGNORECASE,
)
VERB_PATTERN = re.compile(r"^(\w+)")


def is_sql_comment(line: str) -> bool:
    return line.lstrip().startswith(("--", "/*", "*"))


def statement_label(text: str) -> str | None:
    """Short description of a statement, such as ``CREATE TABLE users``."""
    text = " ".join(text.split())
    match = OBJECT_PATTERN.match(text)
    if match:
        name = match.group(3).strip("\"`[]")
        return f"{match.group(1).upper()} {match.group(2).upper()} {name}"
    match = TARGET_PATTERN.match(text)
    if match:
        verb = " ".join(match.group(1).upper().split())
        name = match.group(2).strip("\"`[]")
        return f"{verb} {name}"
    match = VERB_PATTERN.match(text)
    return match.group(1).upper() if match else None


class SqlChunker(Chunker):
    """Splits at a ``;`` that ends a line; leading comments stay attached."""

    estimator = STRUCTURED_ESTIMATOR
    kinds = frozenset({ChunkKind.SQL_BLOCK, ChunkKind.BLOCK})

    def units(self, lines: list[str]) -> list[Unit]:
        units: list[Unit] = []
        start: int | None = None
        code_start: int | None = None
        for i, line in enumerate(lines):
            if is_blank(line):
                continue
            if start is None:
                start = i
            if code_start is None and not is_sql_comment(line):
                code_start = i
            if code_start is not None and line.rstrip().endswith(";"):
                units.append(self._unit(lines, start, i + 1, code_start))
                start = code_start = None
        if start is not None and code_start is not None:
            units.append(self._unit(lines, start, len(lines), code_start))
        return units

    def _unit(self, lines: list[str], start: int, end: int, code_start: int) -> Unit:
        head = " ".join(line.strip() for line in lines[code_start : min(end, code_start + 3)])
        return Unit(ChunkKind.SQL_BLOCK, start, end, statement_label(head))
