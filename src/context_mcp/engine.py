"""Wiring of the indexing, job and query components around one store."""

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from context_mcp.config import Config
from context_mcp.indexer.bootstrap import BootstrapOrchestrator, BootstrapResult
from context_mcp.indexer.chunking import ChunkerRegistry
from context_mcp.indexer.database import Database
from context_mcp.indexer.embedding import Embedder, EmbeddingCache, create_embedder
from context_mcp.indexer.indexer import BatchIndexer, FileIndexer, IncrementalIndexer
from context_mcp.indexer.walker import create_scanner
from context_mcp.jobs import JobStore, RebuildService, RefreshService
from context_mcp.query.neighbors import NeighborExpander
from context_mcp.query.pipeline import QueryPipeline
from context_mcp.query.providers import (
    FullTextProvider,
    ProviderRegistry,
    SemanticProvider,
    SymbolProvider,
)
from context_mcp.watcher import WatcherDaemon, WatcherRegistry

logger = logging.getLogger(__name__)


class ContextEngine:
    """Owns the store and every service built on it.

    Args:
        config: Configuration instance with all settings.
        embedder: Override the embedder built from ``config.embedding``.
    """

    def __init__(self, config: Config, embedder: Embedder | None = None):
        self.config = config
        self.db = Database(config.db_path)
        self.embedder = embedder or create_embedder(config.embedding)
        self.cache = EmbeddingCache(config.embedding.cache_size)
        self.chunkers = ChunkerRegistry(config.chunking)
        self.scanner = create_scanner(config)
        self.file_indexer = FileIndexer(config, self.db, self.chunkers, self.embedder)
        self.batch_indexer = BatchIndexer(self.file_indexer)
        self.incremental = IncrementalIndexer(config, self.db, self.scanner, self.batch_indexer)

        self.jobs = JobStore()
        self.watchers = WatcherRegistry()
        self.executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="context-job")
        self.query_executor = ThreadPoolExecutor(max_workers=3, thread_name_prefix="context-query")
        self.rebuilds = RebuildService(
            config,
            self.db,
            self.jobs,
            self.watchers,
            self.create_bootstrapper,
            self.executor,
            on_cleared=self.cache.clear,
        )
        self.refreshes = RefreshService(
            config, self.incremental, self.jobs, self.watchers, self.executor
        )

        self.providers = ProviderRegistry(config.providers)
        self.providers.register(SemanticProvider(self.db, self.embedder))
        self.providers.register(SymbolProvider(self.db))
        self.providers.register(FullTextProvider(self.db))
        self.pipeline = QueryPipeline(
            config.query,
            self.providers,
            self.embedder,
            self.cache,
            expander=NeighborExpander(self.db),
            executor=self.query_executor,
        )

    def initialize(self) -> None:
        logger.info("Initializing database at %s", self.config.db_path)
        self.db.initialize()

    def create_bootstrapper(
        self, roots: list[Path] | None = None, parallelism: int | None = None
    ) -> BootstrapOrchestrator:
        scanner = create_scanner(self.config, roots) if roots else self.scanner
        return BootstrapOrchestrator(
            self.config,
            self.db,
            scanner,
            self.batch_indexer,
            parallelism=parallelism,
            roots=roots,
        )

    def bootstrap(self, resume: bool = False) -> BootstrapResult:
        return self.create_bootstrapper().bootstrap(resume=resume)

    def start_watcher(self) -> WatcherDaemon:
        watcher = WatcherDaemon(self.incremental, self.config.watcher.interval)
        self.watchers.register(watcher)
        watcher.start()
        return watcher

    def stop_watcher(self) -> None:
        watcher = self.watchers.unregister()
        if watcher is not None:
            watcher.stop()

    def status(self) -> dict[str, Any]:
        watcher = self.watchers.active
        return {
            "project_root": str(self.config.project_root),
            "watch_paths": [str(p) for p in self.config.watch_paths],
            "embedding_model": self.embedder.model,
            "index": self.db.get_stats(),
            "cache": self.cache.stats(),
            "rebuild_in_progress": self.rebuilds.in_progress,
            "watcher": {
                "running": watcher is not None and watcher.is_running,
                "paused": watcher is not None and watcher.is_paused,
                "cycles": watcher.cycles if watcher is not None else 0,
            },
            "providers": {
                pid: {
                    "enabled": self.providers.is_enabled(pid),
                    "weight": self.providers.weight(pid),
                }
                for pid in self.providers.ids
            },
        }

    def close(self) -> None:
        self.stop_watcher()
        self.executor.shutdown(wait=True)
        self.query_executor.shutdown(wait=True)
        close = getattr(self.embedder, "close", None)
        if close is not None:
            close()
        self.db.close()
