"""Python chunking by top-level definitions, using indentation."""

import re

from context_mcp.indexer.chunking.base import (
    CLOSING_CHARS,
    Chunker,
    Unit,
    assemble,
    declaration_units,
    indent_of,
    is_blank,
)
from context_mcp.indexer.models import ChunkDraft, ChunkKind

DEF_PATTERN = re.compile(r"^\s*(?:async\s+)?def\s+(\w+)")
CLASS_PATTERN = re.compile(r"^\s*class\s+(\w+)")
IMPORT_PATTERN = re.compile(r"^\s*(?:import\s+\w|from\s+[\w.]+\s+import\b)")
STRING_START_PATTERN = re.compile(r"^\s*[rRuUbBfF]{0,2}(\"\"\"|'''|\"|')")
TRIPLE_QUOTES = ('"""', "'''")


def string_mask(lines: list[str]) -> list[bool]:
    """Whether each line starts inside a triple-quoted string."""
    mask: list[bool] = []
    open_quote: str | None = None
    for line in lines:
        mask.append(open_quote is not None)
        i = 0
        while i < len(line):
            if open_quote is not None:
                end = line.find(open_quote, i)
                if end == -1:
                    break
                open_quote = None
                i = end + 3
                continue
            if line[i] == "#":
                break
            quote = line[i : i + 3]
            if quote in TRIPLE_QUOTES:
                open_quote = quote
                i += 3
                continue
            if line[i] in "\"'":
                end = line.find(line[i], i + 1)
                i = len(line) if end == -1 else end + 1
                continue
            i += 1
    return mask


def indent_statements(
    lines: list[str], mask: list[bool], lo: int, hi: int, indent: int
) -> list[int]:
    return [
        i
        for i in range(lo, hi)
        if not mask[i]
        and not is_blank(lines[i])
        and indent_of(lines[i]) == indent
        and not lines[i].lstrip().startswith(CLOSING_CHARS)
    ]


class PythonChunker(Chunker):
    """Emits docstring, header, function and class chunks.

    Classes over budget are broken into a class header plus one chunk per
    method; ``__init__`` is tagged as a constructor.
    """

    kinds = frozenset(
        {
            ChunkKind.DOCSTRING,
            ChunkKind.HEADER,
            ChunkKind.FUNCTION,
            ChunkKind.CLASS,
            ChunkKind.METHOD,
            ChunkKind.CONSTRUCTOR,
            ChunkKind.BLOCK,
        }
    )

    def _attachable(self, lines: list[str]):
        def check(index: int) -> bool:
            return lines[index].lstrip().startswith(("#", "@"))

        return check

    def units(self, lines: list[str]) -> list[Unit]:
        mask = string_mask(lines)
        starts = indent_statements(lines, mask, 0, len(lines), 0)
        first_code = next(
            (i for i in starts if not lines[i].lstrip().startswith("#")), None
        )

        def classify(index: int) -> tuple[ChunkKind, str | None] | None:
            line = lines[index]
            if index == first_code and STRING_START_PATTERN.match(line):
                return ChunkKind.DOCSTRING, "module docstring"
            if IMPORT_PATTERN.match(line) or line.startswith("from __future__"):
                return ChunkKind.HEADER, "imports"
            match = DEF_PATTERN.match(line)
            if match:
                return ChunkKind.FUNCTION, match.group(1)
            match = CLASS_PATTERN.match(line)
            if match:
                return ChunkKind.CLASS, match.group(1)
            return None

        return declaration_units(lines, starts, len(lines), classify, self._attachable(lines))

    def split(self, lines: list[str], unit: Unit) -> list[ChunkDraft]:
        if unit.kind != ChunkKind.CLASS:
            return super().split(lines, unit)

        mask = string_mask(lines)
        class_line = next(
            (i for i in range(unit.start, unit.end) if CLASS_PATTERN.match(lines[i])), None
        )
        if class_line is None:
            return super().split(lines, unit)
        body = [
            i
            for i in range(class_line + 1, unit.end)
            if not mask[i] and not is_blank(lines[i])
        ]
        if not body:
            return super().split(lines, unit)

        owner = unit.label or "class"
        body_indent = indent_of(lines[body[0]])
        starts = indent_statements(lines, mask, body[0], unit.end, body_indent)

        def classify(index: int) -> tuple[ChunkKind, str | None] | None:
            match = DEF_PATTERN.match(lines[index])
            if match:
                name = match.group(1)
                if name == "__init__":
                    return ChunkKind.CONSTRUCTOR, f"{owner}.{name}"
                return ChunkKind.METHOD, f"{owner}.{name}"
            match = CLASS_PATTERN.match(lines[index])
            if match:
                return ChunkKind.CLASS, f"{owner}.{match.group(1)}"
            return None

        members = declaration_units(lines, starts, unit.end, classify, self._attachable(lines))
        if not members:
            return super().split(lines, unit)

        header = Unit(ChunkKind.CLASS, unit.start, members[0].start, owner)
        drafts: list[ChunkDraft] = []
        for part in assemble(lines, [header, *members], unit.start, unit.end):
            drafts.extend(self.emit(lines, part))
        return drafts
