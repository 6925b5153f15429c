"""Maximal marginal relevance reranking."""

from collections.abc import Sequence

import numpy as np

from context_mcp.query.models import ContextSnippet


def similarity_matrix(vectors: Sequence[np.ndarray | None]) -> np.ndarray:
    """Pairwise cosine similarity of ``vectors`` as a square float32 matrix.

    Rows for missing, empty or zero vectors, and for vectors whose dimension
    differs from the first usable one, are all zero.
    """
    size = len(vectors)
    matrix = np.zeros((size, size), dtype="float32")
    present = [i for i, v in enumerate(vectors) if v is not None and len(v) > 0]
    if not present:
        return matrix
    dimension = len(vectors[present[0]])
    present = [i for i in present if len(vectors[i]) == dimension]
    stacked = np.vstack([np.asarray(vectors[i], dtype="float32") for i in present])
    norms = np.linalg.norm(stacked, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    unit = stacked / norms
    matrix[np.ix_(present, present)] = unit @ unit.T
    return matrix


class MmrReranker:
    """Greedy MMR: trade relevance against similarity to what is already picked.

    At each step the remaining snippet maximizing
    ``lambda * relevance - (1 - lambda) * max_similarity_to_selected`` is
    selected. Ties go to the higher relevance, then to the earlier position.
    """

    def rerank(
        self,
        snippets: Sequence[ContextSnippet],
        lambda_: float,
        vectors: Sequence[np.ndarray | None] | None = None,
    ) -> list[ContextSnippet]:
        """Reorder snippets.

        Args:
            snippets: Candidates, usually in relevance order.
            lambda_: 1.0 is pure relevance, 0.0 pure diversity.
            vectors: One vector per snippet; defaults to ``snippet.vector``.
                Snippets without a vector count as dissimilar to everything.
        """
        if not 0.0 <= lambda_ <= 1.0:
            raise ValueError(f"lambda must be between 0 and 1, got {lambda_}")
        if vectors is None:
            vectors = [s.vector for s in snippets]
        if len(vectors) != len(snippets):
            raise ValueError("vectors and snippets must have the same length")

        similarities = similarity_matrix(vectors)
        remaining = list(range(len(snippets)))
        selected: list[int] = []
        while remaining:
            best = None
            best_key = None
            for position in remaining:
                similarity = float(similarities[position, selected].max()) if selected else 0.0
                relevance = snippets[position].score
                mmr = lambda_ * relevance - (1.0 - lambda_) * similarity
                key = (mmr, relevance, -position)
                if best_key is None or key > best_key:
                    best, best_key = position, key
            selected.append(best)
            remaining.remove(best)
        return [snippets[i] for i in selected]
