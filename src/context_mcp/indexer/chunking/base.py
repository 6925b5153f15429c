"""Shared chunking primitives: token estimation, line coverage and splitting.

Chunkers work on line ranges. ``lo``/``hi`` and ``Unit.start``/``Unit.end``
are 0-based and half-open; ``ChunkDraft`` line numbers are 1-based and
inclusive.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from context_mcp.indexer.models import ChunkDraft, ChunkKind

# Continuation lines never start a statement in brace languages
CLOSING_CHARS = tuple("})]")
SUMMARY_MAX_CHARS = 80


@dataclass(frozen=True)
class TokenEstimator:
    """Character-ratio token estimate shared by chunking and the query budget."""

    chars_per_token: float

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return max(1, math.ceil(len(text) / self.chars_per_token))

    def estimate_span(self, lines: list[str], start: int, end: int) -> int:
        """Estimate for lines[start:end] joined with newlines, without joining."""
        if end <= start:
            return 0
        length = sum(len(line) for line in lines[start:end]) + (end - start - 1)
        if length == 0:
            return 0
        return max(1, math.ceil(length / self.chars_per_token))


PROSE_ESTIMATOR = TokenEstimator(4.0)
CODE_ESTIMATOR = TokenEstimator(3.5)
STRUCTURED_ESTIMATOR = TokenEstimator(3.0)


@dataclass
class Unit:
    """A structural unit found by a chunker."""

    kind: ChunkKind
    start: int
    end: int
    label: str | None = None
    data: Any = None


def split_lines(text: str) -> list[str]:
    """Split on newlines, dropping one trailing empty line and any CR."""
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def is_blank(line: str) -> bool:
    return not line.strip()


def indent_of(line: str) -> int:
    return len(line) - len(line.lstrip())


def first_line_summary(lines: list[str], start: int, end: int) -> str | None:
    for line in lines[start:end]:
        text = line.strip()
        if text:
            return text[:SUMMARY_MAX_CHARS]
    return None


def make_draft(
    lines: list[str],
    start: int,
    end: int,
    kind: ChunkKind,
    label: str | None,
    estimator: TokenEstimator,
) -> ChunkDraft:
    content = "\n".join(lines[start:end])
    return ChunkDraft(
        kind=kind,
        start_line=start + 1,
        end_line=end,
        content=content,
        token_count=estimator.estimate(content),
        summary=label,
    )


def assemble(
    lines: list[str],
    units: list[Unit],
    lo: int,
    hi: int,
    filler: Callable[[str], bool] = is_blank,
    gap_kind: ChunkKind = ChunkKind.BLOCK,
    gap_label: str | None = None,
) -> list[Unit]:
    """Turn structural units into a gap-free cover of lines[lo:hi].

    Gaps made only of filler lines are merged into the previous unit (or the
    next one at the start of the range). Any other gap becomes a unit of
    ``gap_kind``. Overlapping units are clipped.
    """
    covered: list[Unit] = []
    cursor = lo

    def fill(gap_start: int, gap_end: int, following: Unit | None) -> None:
        if gap_end <= gap_start:
            return
        if all(filler(line) for line in lines[gap_start:gap_end]):
            if covered:
                covered[-1].end = gap_end
            elif following is not None:
                following.start = gap_start
            else:
                covered.append(Unit(gap_kind, gap_start, gap_end, gap_label))
            return
        covered.append(Unit(gap_kind, gap_start, gap_end, gap_label))

    for unit in sorted(units, key=lambda u: (u.start, u.end)):
        start = max(unit.start, lo, cursor)
        end = min(unit.end, hi)
        if end <= start:
            continue
        unit = Unit(unit.kind, start, end, unit.label, unit.data)
        fill(cursor, start, unit)
        covered.append(unit)
        cursor = end
    fill(cursor, hi, None)
    return covered


def split_with_overlap(
    lines: list[str],
    unit: Unit,
    estimator: TokenEstimator,
    max_tokens: int,
    overlap_percent: int = 0,
) -> list[ChunkDraft]:
    """Greedily pack a unit's lines into parts of at most max_tokens.

    The trailing lines of each part worth at most ``overlap_percent`` of the
    budget are repeated at the start of the next part. A single line larger
    than the budget forms a part of its own.
    """
    overlap_budget = max_tokens * overlap_percent / 100
    spans: list[tuple[int, int]] = []
    i = unit.start
    while i < unit.end:
        j = i + 1
        while j < unit.end and estimator.estimate_span(lines, i, j + 1) <= max_tokens:
            j += 1
        spans.append((i, j))
        if j >= unit.end:
            break
        k = j
        if overlap_budget > 0:
            while k - 1 > i and estimator.estimate_span(lines, k - 1, j) <= overlap_budget:
                k -= 1
            if k < j and estimator.estimate_span(lines, k, j + 1) > max_tokens:
                k = j
        i = k
    return _label_parts(lines, spans, unit, estimator)


def pack_paragraphs(
    lines: list[str],
    unit: Unit,
    estimator: TokenEstimator,
    max_tokens: int,
    label_parts: bool = True,
) -> list[ChunkDraft]:
    """Pack blank-line separated paragraphs of a unit, without overlap.

    Blank lines stay with the paragraph before them. A paragraph that is
    itself over budget is split by lines.
    """
    paragraphs: list[tuple[int, int]] = []
    start = unit.start
    has_text = not is_blank(lines[unit.start])
    for i in range(unit.start + 1, unit.end):
        blank = is_blank(lines[i])
        if not blank and has_text and is_blank(lines[i - 1]):
            paragraphs.append((start, i))
            start = i
        has_text = has_text or not blank
    paragraphs.append((start, unit.end))

    spans: list[tuple[int, int]] = []
    current: tuple[int, int] | None = None
    for p_start, p_end in paragraphs:
        if estimator.estimate_span(lines, p_start, p_end) > max_tokens:
            if current is not None:
                spans.append(current)
                current = None
            piece = Unit(unit.kind, p_start, p_end)
            spans.extend(
                (d.start_line - 1, d.end_line)
                for d in split_with_overlap(lines, piece, estimator, max_tokens)
            )
            continue
        if current is None:
            current = (p_start, p_end)
        elif estimator.estimate_span(lines, current[0], p_end) <= max_tokens:
            current = (current[0], p_end)
        else:
            spans.append(current)
            current = (p_start, p_end)
    if current is not None:
        spans.append(current)

    if not label_parts:
        return [
            make_draft(lines, s, e, unit.kind, first_line_summary(lines, s, e), estimator)
            for s, e in spans
        ]
    return _label_parts(lines, spans, unit, estimator)


def _label_parts(
    lines: list[str],
    spans: list[tuple[int, int]],
    unit: Unit,
    estimator: TokenEstimator,
) -> list[ChunkDraft]:
    if len(spans) == 1:
        s, e = spans[0]
        return [make_draft(lines, s, e, unit.kind, unit.label, estimator)]
    total = len(spans)
    base = unit.label or unit.kind.value
    return [
        make_draft(lines, s, e, unit.kind, f"{base} (part {n}/{total})", estimator)
        for n, (s, e) in enumerate(spans, start=1)
    ]


def declaration_units(
    lines: list[str],
    starts: list[int],
    hi: int,
    classify: Callable[[int], tuple[ChunkKind, str | None] | None],
    is_attachable: Callable[[int], bool],
) -> list[Unit]:
    """Build units from statement start lines.

    Attachable statements (comments, docs, decorators) join the declaration
    that follows them. A declaration runs until the next non-attachable
    statement, minus trailing blank and attachable lines. Consecutive header
    units are merged.
    """
    units: list[Unit] = []
    pending: list[int] = []
    last_end = 0

    for k, index in enumerate(starts):
        if is_attachable(index):
            pending.append(index)
            continue
        classified = classify(index)
        if classified is None:
            pending = []
            continue
        kind, label = classified
        start = next((p for p in pending if p >= last_end), index)
        pending = []

        end = hi
        for later in starts[k + 1 :]:
            if not is_attachable(later):
                end = later
                break
        # Comments and decorators at the declaration level belong to what follows
        level = indent_of(lines[index]) + 1
        while end - 1 > index and (
            is_blank(lines[end - 1])
            or (is_attachable(end - 1) and indent_of(lines[end - 1]) <= level)
        ):
            end -= 1

        if units and kind == ChunkKind.HEADER and units[-1].kind == ChunkKind.HEADER:
            units[-1].end = end
        else:
            units.append(Unit(kind, start, end, label))
        last_end = end
    return units


def strip_code(line: str, in_comment: bool) -> tuple[str, bool]:
    """Remove string literals and comments from a C-family line.

    Returns the remaining code and whether a block comment is still open.
    """
    out: list[str] = []
    i = 0
    while i < len(line):
        if in_comment:
            end = line.find("*/", i)
            if end == -1:
                return "".join(out), True
            i = end + 2
            in_comment = False
            continue
        if line.startswith("//", i):
            break
        if line.startswith("/*", i):
            in_comment = True
            i += 2
            continue
        ch = line[i]
        if ch in "\"'`":
            j = i + 1
            while j < len(line) and line[j] != ch:
                j += 2 if line[j] == "\\" else 1
            i = j + 1
            continue
        out.append(ch)
        i += 1
    return "".join(out), in_comment


def brace_depths(lines: list[str]) -> tuple[list[int], list[bool]]:
    """Brace depth at the start of each line, and whether it starts in a comment."""
    depths: list[int] = []
    in_comments: list[bool] = []
    depth = 0
    in_comment = False
    for line in lines:
        depths.append(depth)
        in_comments.append(in_comment)
        code, in_comment = strip_code(line, in_comment)
        depth = max(0, depth + code.count("{") - code.count("}"))
    return depths, in_comments


def brace_statements(
    lines: list[str],
    depths: list[int],
    depth: int,
    lo: int,
    hi: int,
) -> list[int]:
    """Statement start lines at a brace depth.

    Only lines at the shallowest indentation among the candidates count, so
    wrapped continuation lines are skipped.
    """
    candidates = [
        i
        for i in range(lo, hi)
        if depths[i] == depth
        and not is_blank(lines[i])
        and not lines[i].lstrip().startswith(CLOSING_CHARS + ("{", ".", "?", ":", "|", "&", ","))
    ]
    if not candidates:
        return []
    base = min(indent_of(lines[i]) for i in candidates)
    return [i for i in candidates if indent_of(lines[i]) == base]


def is_c_comment(line: str, in_comment: bool) -> bool:
    text = line.lstrip()
    return in_comment or text.startswith(("//", "/*", "*"))


class Chunker:
    """Base class for a family chunker.

    Subclasses implement ``units`` and may override ``split`` for
    family-specific handling of oversized units.
    """

    estimator: TokenEstimator = CODE_ESTIMATOR
    kinds: frozenset[ChunkKind] = frozenset({ChunkKind.BLOCK})

    def __init__(self, max_tokens: int, overlap_percent: int = 0):
        if max_tokens < 1:
            raise ValueError(f"max_tokens must be >= 1, got {max_tokens}")
        self.max_tokens = max_tokens
        self.overlap_percent = overlap_percent

    def units(self, lines: list[str]) -> list[Unit]:
        raise NotImplementedError

    def split(self, lines: list[str], unit: Unit) -> list[ChunkDraft]:
        return split_with_overlap(
            lines, unit, self.estimator, self.max_tokens, self.overlap_percent
        )

    def emit(self, lines: list[str], unit: Unit) -> list[ChunkDraft]:
        """Emit one unit, splitting it when it is over budget."""
        if self.estimator.estimate_span(lines, unit.start, unit.end) <= self.max_tokens:
            return [make_draft(lines, unit.start, unit.end, unit.kind, unit.label, self.estimator)]
        return self.split(lines, unit)

    def chunk(self, content: str) -> list[ChunkDraft]:
        if not content.strip():
            return []
        lines = split_lines(content)
        drafts: list[ChunkDraft] = []
        for unit in assemble(lines, self.units(lines), 0, len(lines)):
            drafts.extend(self.emit(lines, unit))
        return drafts
