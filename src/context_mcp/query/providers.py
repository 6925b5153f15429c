"""Context providers: semantic, full-text and symbol lookups over the index."""

import logging
import re
from collections.abc import Callable
from typing import Protocol

import numpy as np

from context_mcp.config import ProviderConfig
from context_mcp.indexer.database import Database
from context_mcp.indexer.embedding import Embedder, cosine_scores
from context_mcp.indexer.models import ChunkKind, ChunkRecord
from context_mcp.query.models import ContextScope, ContextSnippet, TokenBudget

logger = logging.getLogger(__name__)

DEFAULT_STOPWORDS = frozenset(
    "a an and are as at be by for from has how in is it of on or that the to "
    "was what where which who why will with".split()
)

KEYWORD_PATTERN = re.compile(r"\w+")
QUALIFIED_PATTERN = re.compile(r"\b(?:[A-Za-z_][A-Za-z0-9_]*\.)+[A-Za-z_][A-Za-z0-9_]*\b")
CAMEL_PATTERN = re.compile(r"\b[A-Z][A-Za-z0-9]{2,}\b|\b[a-z]+[A-Z][A-Za-z0-9]*\b")
SNAKE_PATTERN = re.compile(r"\b[A-Za-z]+_[A-Za-z0-9_]+\b")
CALL_PATTERN = re.compile(r"\b([A-Za-z_][A-Za-z0-9_]*)\s*\(")
LABEL_WORD_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

KIND_WEIGHTS = {
    ChunkKind.CLASS: 1.0,
    ChunkKind.INTERFACE: 1.0,
    ChunkKind.ENUM: 1.0,
    ChunkKind.FUNCTION: 0.85,
    ChunkKind.METHOD: 0.85,
    ChunkKind.CONSTRUCTOR: 0.85,
    ChunkKind.SQL_BLOCK: 0.75,
}
DEFAULT_KIND_WEIGHT = 0.6
EXACT_MATCH = 1.0
PARTIAL_MATCH = 0.6


class ContextProvider(Protocol):
    """Anything that can return scored snippets for a query."""

    id: str

    def get_context(
        self, query: str, scope: ContextScope, budget: TokenBudget
    ) -> list[ContextSnippet]: ...


def _outside_scope(record: ChunkRecord, scope: ContextScope) -> bool:
    return bool(scope.exclude_patterns) and scope.excludes(record.rel_path)


def _collect_in_scope(
    fetch: Callable[[int, int], list[ChunkRecord]], scope: ContextScope, limit: int
) -> list[ChunkRecord]:
    """Page through ``fetch(limit, offset)`` until ``limit`` records survive the excludes."""
    kept: list[ChunkRecord] = []
    offset = 0
    while len(kept) < limit:
        page = fetch(limit, offset)
        kept.extend(record for record in page if not _outside_scope(record, scope))
        if len(page) < limit:
            break
        offset += limit
    return kept[:limit]


def extract_keywords(query: str, stopwords: frozenset[str] = DEFAULT_STOPWORDS) -> list[str]:
    """Distinct lower-cased words of two or more characters, minus stopwords."""
    keywords: list[str] = []
    for word in KEYWORD_PATTERN.findall(query.lower()):
        if len(word) >= 2 and word not in stopwords and word not in keywords:
            keywords.append(word)
    return keywords


def extract_symbols(query: str) -> list[str]:
    """Identifier-looking tokens: dotted names, CamelCase, snake_case, calls."""
    symbols: list[str] = []
    for pattern in (QUALIFIED_PATTERN, CAMEL_PATTERN, SNAKE_PATTERN):
        for match in pattern.finditer(query):
            if match.group(0) not in symbols:
                symbols.append(match.group(0))
    for name in CALL_PATTERN.findall(query):
        if name not in symbols:
            symbols.append(name)
    return symbols


class SemanticProvider:
    """Cosine similarity between the query and stored chunk vectors."""

    id = "semantic"

    def __init__(self, db: Database, embedder: Embedder, max_results: int = 50):
        self.db = db
        self.embedder = embedder
        self.max_results = max_results

    def get_context(
        self, query: str, scope: ContextScope, budget: TokenBudget
    ) -> list[ContextSnippet]:
        if not query.strip():
            return []
        query_vector = self.embedder.embed(query)
        records = [
            record
            for record in self.db.fetch_vectors(
                self.embedder.model, scope.paths, scope.languages, scope.kind_values
            )
            if not _outside_scope(record, scope) and record.vector is not None
        ]
        usable = [r for r in records if len(r.vector) == len(query_vector)]
        if len(usable) != len(records):
            logger.debug(
                "Skipping %d chunks with mismatched vector dimension", len(records) - len(usable)
            )
        if not usable:
            return []

        matrix = np.vstack([record.vector for record in usable])
        scores = cosine_scores(matrix, query_vector)
        chunk_ids = np.array([record.chunk.id for record in usable])
        order = np.lexsort((chunk_ids, -scores))[: self.max_results]
        return [
            ContextSnippet.from_record(
                usable[i],
                float(scores[i]),
                self.id,
                vector=usable[i].vector,
                similarity=round(float(scores[i]), 4),
            )
            for i in order
            if scores[i] > 0
        ]


class FullTextProvider:
    """SQLite FTS5 keyword search.

    The score is the fraction of query keywords that appear in the chunk.
    """

    id = "full_text"

    def __init__(
        self,
        db: Database,
        stopwords: frozenset[str] = DEFAULT_STOPWORDS,
        max_results: int = 50,
    ):
        self.db = db
        self.stopwords = stopwords
        self.max_results = max_results

    def get_context(
        self, query: str, scope: ContextScope, budget: TokenBudget
    ) -> list[ContextSnippet]:
        keywords = extract_keywords(query, self.stopwords)
        if not keywords:
            return []
        match_query = " OR ".join(f'"{k}"' for k in keywords)
        records = _collect_in_scope(
            lambda limit, offset: self.db.search_fulltext(
                match_query,
                scope.paths,
                scope.languages,
                scope.kind_values,
                limit=limit,
                offset=offset,
            ),
            scope,
            self.max_results,
        )
        snippets = []
        for record in records:
            haystack = f"{record.chunk.content}\n{record.chunk.summary or ''}".lower()
            present = sum(1 for k in keywords if k in haystack)
            snippets.append(
                ContextSnippet.from_record(
                    record,
                    present / len(keywords),
                    self.id,
                    matched_keywords=present,
                )
            )
        snippets.sort(key=lambda s: (-s.score, s.path, s.chunk_id))
        return snippets


class SymbolProvider:
    """Matches identifiers in the query against chunk labels."""

    id = "symbol"

    def __init__(self, db: Database, max_results: int = 50):
        self.db = db
        self.max_results = max_results

    def get_context(
        self, query: str, scope: ContextScope, budget: TokenBudget
    ) -> list[ContextSnippet]:
        symbols = extract_symbols(query)
        if not symbols:
            return []
        names = {s.lower() for s in symbols}
        names.update(s.rsplit(".", 1)[-1].lower() for s in symbols if "." in s)
        records = _collect_in_scope(
            lambda limit, offset: self.db.search_labels(
                sorted(names),
                scope.paths,
                scope.languages,
                scope.kind_values,
                limit=limit,
                offset=offset,
            ),
            scope,
            self.max_results,
        )
        snippets = []
        for record in records:
            label = (record.chunk.summary or "").lower()
            words = {w.lower() for w in LABEL_WORD_PATTERN.findall(label)}
            words.add(label)
            match = EXACT_MATCH if names & words else PARTIAL_MATCH
            weight = KIND_WEIGHTS.get(record.chunk.kind, DEFAULT_KIND_WEIGHT)
            snippets.append(
                ContextSnippet.from_record(
                    record,
                    (match + weight) / 2,
                    self.id,
                    exact=match == EXACT_MATCH,
                )
            )
        snippets.sort(key=lambda s: (-s.score, s.path, s.chunk_id))
        return snippets


class ProviderRegistry:
    """Providers keyed by id, with per-provider enable flag and weight."""

    def __init__(self, settings: dict[str, ProviderConfig] | None = None):
        self.settings = dict(settings or {})
        self._providers: dict[str, ContextProvider] = {}

    def register(self, provider: ContextProvider) -> None:
        self._providers[provider.id] = provider
        logger.debug("Registered context provider: %s", provider.id)

    def get(self, provider_id: str) -> ContextProvider | None:
        return self._providers.get(provider_id)

    @property
    def ids(self) -> list[str]:
        return list(self._providers)

    def weight(self, provider_id: str) -> float:
        """Configured weight of a provider, 1.0 when unset.

        Weights are reported in the per-provider query diagnostics only; they
        never scale snippet scores, which stay comparable across providers
        through the fixed 0..1 scoring of each one.
        """
        setting = self.settings.get(provider_id)
        return setting.weight if setting is not None else 1.0

    def is_enabled(self, provider_id: str) -> bool:
        setting = self.settings.get(provider_id)
        return setting.enabled if setting is not None else True

    def select(self, requested: list[str] | None = None) -> list[ContextProvider]:
        """Providers to run: the explicit selection, or every enabled one.

        Raises:
            KeyError: If a requested id is not registered.
        """
        if requested:
            unknown = [p for p in requested if p not in self._providers]
            if unknown:
                raise KeyError(", ".join(unknown))
            return [self._providers[p] for p in dict.fromkeys(requested)]
        return [p for pid, p in self._providers.items() if self.is_enabled(pid)]
