"""Plain text chunking by paragraphs."""

from context_mcp.indexer.chunking.base import (
    PROSE_ESTIMATOR,
    Chunker,
    Unit,
    pack_paragraphs,
)
from context_mcp.indexer.models import ChunkDraft, ChunkKind


class PlainTextChunker(Chunker):
    """Packs paragraphs up to the budget; the fallback for unknown files."""

    estimator = PROSE_ESTIMATOR
    kinds = frozenset({ChunkKind.PARAGRAPH})

    def units(self, lines: list[str]) -> list[Unit]:
        return [Unit(ChunkKind.PARAGRAPH, 0, len(lines))]

    def emit(self, lines: list[str], unit: Unit) -> list[ChunkDraft]:
        return pack_paragraphs(
            lines, unit, self.estimator, self.max_tokens, label_parts=False
        )
