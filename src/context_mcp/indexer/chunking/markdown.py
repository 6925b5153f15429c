"""Markdown chunking by headings, with fenced code kept separate."""

import re

from context_mcp.indexer.chunking.base import (
    PROSE_ESTIMATOR,
    Chunker,
    Unit,
    first_line_summary,
    is_blank,
    pack_paragraphs,
    split_with_overlap,
)
from context_mcp.indexer.models import ChunkDraft, ChunkKind

HEADING_PATTERN = re.compile(r"^\s{0,3}(#{1,6})\s+(.*?)\s*#*\s*$")
FENCE_OPEN_PATTERN = re.compile(r"^\s{0,3}(`{3,}|~{3,})\s*([\w+#.-]*)")
FRONTMATTER_END = {"---", "..."}


class MarkdownChunker(Chunker):
    """Splits Markdown into heading sections, code blocks and front-matter."""

    estimator = PROSE_ESTIMATOR
    kinds = frozenset(
        {
            ChunkKind.MARKDOWN_SECTION,
            ChunkKind.CODE_BLOCK,
            ChunkKind.HEADER,
            ChunkKind.PARAGRAPH,
            ChunkKind.BLOCK,
        }
    )

    def units(self, lines: list[str]) -> list[Unit]:
        units: list[Unit] = []
        start = 0

        if lines and lines[0].strip() == "---":
            for i in range(1, len(lines)):
                if lines[i].strip() in FRONTMATTER_END:
                    units.append(Unit(ChunkKind.HEADER, 0, i + 1, "front matter"))
                    start = i + 1
                    break

        heading: str | None = None
        segment_start = start
        fence: str | None = None
        fence_start = 0
        fence_label: str | None = None

        def flush(end: int) -> None:
            if any(not is_blank(line) for line in lines[segment_start:end]):
                if heading is not None:
                    units.append(Unit(ChunkKind.MARKDOWN_SECTION, segment_start, end, heading))
                else:
                    label = first_line_summary(lines, segment_start, end)
                    units.append(Unit(ChunkKind.PARAGRAPH, segment_start, end, label))

        for i in range(start, len(lines)):
            line = lines[i]
            if fence is not None:
                stripped = line.strip()
                if stripped.startswith(fence) and not stripped.strip(fence[0]):
                    units.append(Unit(ChunkKind.CODE_BLOCK, fence_start, i + 1, fence_label))
                    fence = None
                    segment_start = i + 1
                continue

            fence_match = FENCE_OPEN_PATTERN.match(line)
            if fence_match:
                flush(i)
                fence = fence_match.group(1)
                fence_start = i
                fence_label = fence_match.group(2) or heading
                continue

            heading_match = HEADING_PATTERN.match(line)
            if heading_match:
                flush(i)
                heading = heading_match.group(2) or heading_match.group(1)
                segment_start = i

        if fence is not None:
            units.append(Unit(ChunkKind.CODE_BLOCK, fence_start, len(lines), fence_label))
        else:
            flush(len(lines))
        return units

    def split(self, lines: list[str], unit: Unit) -> list[ChunkDraft]:
        if unit.kind == ChunkKind.CODE_BLOCK:
            return split_with_overlap(lines, unit, self.estimator, self.max_tokens)
        return pack_paragraphs(lines, unit, self.estimator, self.max_tokens)
