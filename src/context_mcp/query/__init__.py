"""
Query package for contextMCP.

Answers context queries against the index: several providers are consulted
in parallel, their hits merged and reranked, and the result trimmed to a
token budget.
"""

from context_mcp.query.models import ContextScope, ContextSnippet, TokenBudget
from context_mcp.query.neighbors import NeighborExpander
from context_mcp.query.pipeline import QueryPipeline, QueryRequest, QueryResult
from context_mcp.query.providers import (
    ContextProvider,
    FullTextProvider,
    ProviderRegistry,
    SemanticProvider,
    SymbolProvider,
)
from context_mcp.query.rerank import MmrReranker

__all__ = [
    "ContextProvider",
    "ContextScope",
    "ContextSnippet",
    "FullTextProvider",
    "MmrReranker",
    "NeighborExpander",
    "ProviderRegistry",
    "QueryPipeline",
    "QueryRequest",
    "QueryResult",
    "SemanticProvider",
    "SymbolProvider",
    "TokenBudget",
]
