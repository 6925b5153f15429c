"""MCP tools for contextMCP server.

This module defines the tools exposed by the MCP server:
- query_context: Token-budgeted retrieval across all context providers
- refresh_context: Incremental re-index of changed files
- rebuild_context: Destructive full rebuild (requires confirm=true)
- get_job_status / clear_completed_jobs: Background job bookkeeping
- index_status: Store statistics and service state
"""

import logging
from collections.abc import Callable
from typing import Any

from fastmcp import FastMCP

from context_mcp.engine import ContextEngine
from context_mcp.indexer.models import ChunkKind
from context_mcp.jobs import RebuildRequest, RefreshRequest
from context_mcp.query.models import ContextScope
from context_mcp.query.pipeline import QueryRequest
from context_mcp.results import ValidationError

logger = logging.getLogger(__name__)


def parse_kinds(kinds: list[str] | None) -> list[ChunkKind]:
    """Known chunk kinds from user input; unknown names are dropped with a warning."""
    parsed: list[ChunkKind] = []
    for name in kinds or []:
        kind = ChunkKind.parse(name)
        if kind is None:
            logger.warning("Ignoring unknown chunk kind: %s", name)
        elif kind not in parsed:
            parsed.append(kind)
    return parsed


def register_tools(mcp: FastMCP, engine: ContextEngine) -> dict[str, Callable[..., Any]]:
    """Register all tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        engine: Engine that owns the index and services

    Returns:
        The tool functions by name, undecorated.
    """

    def query_context(
        query: str,
        k: int | None = None,
        max_tokens: int | None = None,
        paths: list[str] | None = None,
        languages: list[str] | None = None,
        kinds: list[str] | None = None,
        exclude_patterns: list[str] | None = None,
        providers: list[str] | None = None,
    ) -> dict:
        """Retrieve the most relevant indexed chunks for a query.

        Semantic, symbol and full-text providers are queried in parallel;
        hits are merged, filtered by minimum score, reranked for diversity
        and trimmed to the token budget.

        Args:
            query: Natural language question or identifier
            k: Maximum number of snippets (default from config)
            max_tokens: Token budget for all snippets together
            paths: Restrict to these project-relative path prefixes
            languages: Restrict to these languages (e.g. "python", "kotlin")
            kinds: Restrict to these chunk kinds (e.g. "function", "class")
            exclude_patterns: Glob patterns of paths to leave out
            providers: Run only these providers ("semantic", "symbol", "full_text")

        Returns:
            Dict with:
            - status: "ok" or "error"
            - snippets: Ranked snippets with path, lines, score and text
            - metadata: Hit counts, token usage and per-provider diagnostics
            - errors: Validation messages when status is "error"
        """
        try:
            scope = ContextScope(
                paths=list(paths or []),
                languages=list(languages or []),
                kinds=parse_kinds(kinds),
                exclude_patterns=list(exclude_patterns or []),
            )
        except ValueError as e:
            return {"status": "error", "errors": [str(e)], "snippets": [], "metadata": {}}

        outcome = engine.pipeline.query(
            QueryRequest(text=query, scope=scope, max_tokens=max_tokens, k=k, providers=providers)
        )
        if isinstance(outcome, ValidationError):
            return {"status": "error", "errors": outcome.errors, "snippets": [], "metadata": {}}
        return {"status": "ok", **outcome.value.to_dict()}

    def refresh_context(
        paths: list[str] | None = None,
        force: bool = False,
        async_mode: bool = False,
        parallelism: int | None = None,
    ) -> dict:
        """Re-index files that changed since the last index run.

        Args:
            paths: Files or directories to refresh (default: all watch roots)
            force: Re-index unchanged files too
            async_mode: Run in the background and return a job id
            parallelism: Number of files indexed concurrently

        Returns:
            Dict with status, per-category counts and a summary message.
        """
        return engine.refreshes.refresh(
            RefreshRequest(
                paths=paths, force=force, async_mode=async_mode, parallelism=parallelism
            )
        ).to_dict()

    def rebuild_context(
        confirm: bool = False,
        async_mode: bool = False,
        paths: list[str] | None = None,
        validate_only: bool = False,
        parallelism: int | None = None,
    ) -> dict:
        """Clear the index and rebuild it from scratch.

        This is destructive: confirm=true is required. Use validate_only=true
        to check the parameters without touching the index.

        Args:
            confirm: Must be true to proceed
            async_mode: Run in the background and return a job id
            paths: Restrict the rebuild to these roots
            validate_only: Only validate the request
            parallelism: Number of files indexed concurrently

        Returns:
            Dict with status, phase, file counts, timing and any
            validation errors.
        """
        return engine.rebuilds.rebuild(
            RebuildRequest(
                confirm=confirm,
                async_mode=async_mode,
                paths=paths,
                validate_only=validate_only,
                parallelism=parallelism,
            )
        ).to_dict()

    def get_job_status(job_id: str) -> dict:
        """Get the state of a background rebuild or refresh.

        Args:
            job_id: Id returned by an async rebuild_context or refresh_context

        Returns:
            The job record, or an error if the id is unknown.
        """
        job = engine.jobs.get(job_id)
        if job is None:
            return {"status": "error", "error": f"Job not found: {job_id}"}
        return job.to_dict()

    def clear_completed_jobs() -> dict:
        """Forget all finished background jobs."""
        removed = engine.jobs.remove_completed()
        return {"status": "ok", "removed": removed}

    def index_status() -> dict:
        """Get index statistics, watcher state and embedding cache stats."""
        return {"status": "ok", **engine.status()}

    tools = {
        "query_context": query_context,
        "refresh_context": refresh_context,
        "rebuild_context": rebuild_context,
        "get_job_status": get_job_status,
        "clear_completed_jobs": clear_completed_jobs,
        "index_status": index_status,
    }
    for fn in tools.values():
        mcp.tool()(fn)
    return tools
