"""Neighbor expansion: pull adjacent chunks of the same file into the result."""

import logging

from context_mcp.indexer.database import Database
from context_mcp.indexer.errors import StoreError
from context_mcp.query.models import ContextScope, ContextSnippet

logger = logging.getLogger(__name__)

NEIGHBOR_SCORE_FACTOR = 0.5


class NeighborExpander:
    def __init__(self, db: Database):
        self.db = db

    def expand(
        self,
        snippets: list[ContextSnippet],
        window: int,
        scope: ContextScope | None = None,
    ) -> list[ContextSnippet]:
        """Insert chunks within ``window`` ordinals right after their anchor.

        Neighbors score half their anchor and carry a ``neighbor_of`` tag.
        A chunk already present in the list is never added twice, and a
        neighbor outside ``scope`` (kind, language, paths, excludes) is dropped.
        """
        if window <= 0 or not snippets:
            return list(snippets)

        seen = {s.key for s in snippets}
        expanded: list[ContextSnippet] = []
        for snippet in snippets:
            expanded.append(snippet)
            if snippet.file_id is None or snippet.ordinal is None:
                continue
            try:
                records = self.db.get_neighbors(snippet.file_id, snippet.ordinal, window)
            except StoreError as e:
                logger.warning("Failed to fetch neighbors for chunk %s: %s", snippet.chunk_id, e)
                continue
            for record in records:
                key = (record.chunk.id, record.rel_path)
                if key in seen:
                    continue
                if scope is not None and not scope.admits(
                    record.rel_path, record.language, record.chunk.kind
                ):
                    continue
                seen.add(key)
                expanded.append(
                    ContextSnippet.from_record(
                        record,
                        snippet.score * NEIGHBOR_SCORE_FACTOR,
                        "neighbor",
                        neighbor_of=snippet.chunk_id,
                    )
                )
        logger.debug("Neighbor expansion added %d chunks", len(expanded) - len(snippets))
        return expanded
