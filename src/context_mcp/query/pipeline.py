"""Query pipeline: fan out, deduplicate, filter, rerank, expand, budget."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from context_mcp.config import QueryConfig
from context_mcp.indexer.embedding import Embedder, EmbeddingCache
from context_mcp.query.models import ContextScope, ContextSnippet, TokenBudget
from context_mcp.query.neighbors import NeighborExpander
from context_mcp.query.providers import ContextProvider, ProviderRegistry
from context_mcp.query.rerank import MmrReranker
from context_mcp.results import Ok, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class QueryRequest:
    text: str
    scope: ContextScope = field(default_factory=ContextScope)
    max_tokens: int | None = None
    k: int | None = None
    providers: list[str] | None = None


@dataclass
class QueryResult:
    snippets: list[ContextSnippet]
    metadata: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "snippets": [s.to_dict() for s in self.snippets],
            "metadata": self.metadata,
        }


@dataclass
class _ProviderRun:
    provider_id: str
    snippets: list[ContextSnippet]
    duration_ms: int
    error: str | None = None


def deduplicate(snippets: list[ContextSnippet]) -> list[ContextSnippet]:
    """Collapse snippets sharing (chunk_id, path), keeping the best score.

    Provider names are merged into ``sources`` and counted in ``source_count``.
    """
    ordered = sorted(snippets, key=lambda s: (-s.score, s.path, s.chunk_id))
    merged: dict[tuple[int, str], ContextSnippet] = {}
    for snippet in ordered:
        existing = merged.get(snippet.key)
        if existing is None:
            snippet.metadata["sources"] = list(snippet.metadata.get("sources", []))
            merged[snippet.key] = snippet
            continue
        for source in snippet.metadata.get("sources", []):
            if source not in existing.metadata["sources"]:
                existing.metadata["sources"].append(source)
        if existing.vector is None and snippet.vector is not None:
            existing.vector = snippet.vector
    for snippet in merged.values():
        snippet.metadata["source_count"] = len(snippet.metadata["sources"])
    return list(merged.values())


def select_within_budget(
    snippets: list[ContextSnippet], k: int, budget: TokenBudget
) -> tuple[list[ContextSnippet], int]:
    """Accept snippets in order until k are taken or the next one does not fit."""
    selected: list[ContextSnippet] = []
    used = 0
    for snippet in snippets:
        if len(selected) >= k:
            break
        if used + snippet.token_count > budget.available:
            break
        selected.append(snippet)
        used += snippet.token_count
    return selected, used


class QueryPipeline:
    def __init__(
        self,
        config: QueryConfig,
        registry: ProviderRegistry,
        embedder: Embedder,
        cache: EmbeddingCache,
        expander: NeighborExpander | None = None,
        reranker: MmrReranker | None = None,
        executor: ThreadPoolExecutor | None = None,
    ):
        """Without an ``executor`` each query runs its providers on a short-lived pool."""
        self.config = config
        self.registry = registry
        self.embedder = embedder
        self.cache = cache
        self.expander = expander
        self.reranker = reranker or MmrReranker()
        self.executor = executor

    def _validate(self, request: QueryRequest) -> Ok[tuple[int, int]] | ValidationError:
        errors = []
        if not request.text or not request.text.strip():
            errors.append("query must not be blank")
        k = request.k if request.k is not None else self.config.default_k
        if k < 1:
            errors.append(f"k must be >= 1, got {k}")
        max_tokens = (
            request.max_tokens
            if request.max_tokens is not None
            else self.config.default_max_tokens
        )
        if max_tokens < 1:
            errors.append(f"max_tokens must be >= 1, got {max_tokens}")
        if request.providers:
            unknown = [p for p in request.providers if self.registry.get(p) is None]
            if unknown:
                errors.append(
                    f"Unknown providers: {', '.join(unknown)} "
                    f"(available: {', '.join(self.registry.ids)})"
                )
        if errors:
            return ValidationError(errors)
        if max_tokens > self.config.max_tokens_cap:
            logger.debug("Clamping max_tokens %d to %d", max_tokens, self.config.max_tokens_cap)
            max_tokens = self.config.max_tokens_cap
        return Ok((k, max_tokens))

    def query(self, request: QueryRequest) -> Ok[QueryResult] | ValidationError:
        outcome = self._validate(request)
        if isinstance(outcome, ValidationError):
            return outcome
        k, max_tokens = outcome.value
        budget = TokenBudget(max_tokens)

        providers = self.registry.select(request.providers)
        if not providers:
            logger.warning("No context providers enabled")
            return Ok(
                QueryResult(
                    snippets=[],
                    metadata={
                        **self._empty_metadata(max_tokens),
                        "warning": "No context providers are enabled",
                    },
                )
            )

        runs = self._fan_out(providers, request.text, request.scope, budget)
        gathered = [s for run in runs for s in run.snippets]
        unique = deduplicate(gathered)

        ranked = [s for s in unique if s.score >= self.config.min_score]
        filtered = len(unique) - len(ranked)

        if self.config.rerank_enabled and len(ranked) > 1:
            vectors = [self._vector_for(s) for s in ranked]
            ranked = self.reranker.rerank(ranked, self.config.mmr_lambda, vectors)

        if self.config.neighbor_window > 0 and self.expander is not None:
            ranked = self.expander.expand(ranked, self.config.neighbor_window, request.scope)

        selected, used = select_within_budget(ranked, k, budget)
        logger.debug(
            "Query returned %d of %d unique hits (%d tokens)", len(selected), len(unique), used
        )

        metadata = {
            "totalHits": len(gathered),
            "uniqueHits": len(unique),
            "filteredBelowMinScore": filtered,
            "returnedHits": len(selected),
            "tokensUsed": used,
            "tokensRequested": max_tokens,
            "providers": {run.provider_id: self._diagnostics(run) for run in runs},
        }
        return Ok(QueryResult(snippets=selected, metadata=metadata))

    def _fan_out(
        self,
        providers: list[ContextProvider],
        text: str,
        scope: ContextScope,
        budget: TokenBudget,
    ) -> list[_ProviderRun]:
        if self.executor is not None:
            futures = [self.executor.submit(self._run, p, text, scope, budget) for p in providers]
            return [f.result() for f in futures]
        with ThreadPoolExecutor(
            max_workers=len(providers), thread_name_prefix="context-query"
        ) as pool:
            futures = [pool.submit(self._run, p, text, scope, budget) for p in providers]
            return [f.result() for f in futures]

    def _run(
        self,
        provider: ContextProvider,
        text: str,
        scope: ContextScope,
        budget: TokenBudget,
    ) -> _ProviderRun:
        started = time.monotonic()
        try:
            snippets = provider.get_context(text, scope, budget)
        except Exception as e:
            logger.warning("Context provider %s failed: %s", provider.id, e)
            return _ProviderRun(
                provider.id, [], int((time.monotonic() - started) * 1000), error=str(e)
            )
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.debug("Provider %s returned %d snippets in %dms", provider.id, len(snippets), duration_ms)
        return _ProviderRun(provider.id, snippets, duration_ms)

    def _diagnostics(self, run: _ProviderRun) -> dict[str, Any]:
        if run.error is not None:
            return {"error": run.error, "durationMs": run.duration_ms}
        return {
            "snippets": len(run.snippets),
            "durationMs": run.duration_ms,
            "weight": self.registry.weight(run.provider_id),
        }

    def _vector_for(self, snippet: ContextSnippet) -> np.ndarray:
        if snippet.vector is not None:
            return snippet.vector
        return self.cache.get_or_embed(snippet.chunk_id, snippet.text, self.embedder)

    @staticmethod
    def _empty_metadata(max_tokens: int) -> dict[str, Any]:
        return {
            "totalHits": 0,
            "uniqueHits": 0,
            "filteredBelowMinScore": 0,
            "returnedHits": 0,
            "tokensUsed": 0,
            "tokensRequested": max_tokens,
            "providers": {},
        }
