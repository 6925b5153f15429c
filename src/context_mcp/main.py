"""Main entry point for contextmcp MCP server."""

import argparse
import logging
import sys

from fastmcp import FastMCP

from context_mcp.config import Config
from context_mcp.engine import ContextEngine
from context_mcp.jobs import RebuildRequest
from context_mcp.tools import register_tools

logger = logging.getLogger(__name__)

TRANSPORTS = ("stdio", "sse")


def create_server(
    config: Config, engine: ContextEngine | None = None, watch: bool | None = None
) -> FastMCP:
    """Create and configure the MCP server with all components.

    Args:
        config: Configuration instance with all settings.
        engine: Prebuilt engine; one is created from config when omitted.
        watch: Override ``config.watcher.enabled``.
    """
    engine = engine or ContextEngine(config)
    engine.initialize()

    # Bootstrap if the index is empty
    if engine.db.count_files() == 0:
        logger.info("Index is empty, performing initial bootstrap...")
        result = engine.bootstrap()
        logger.info(
            "Initial bootstrap complete: %d/%d files indexed",
            result.successful_files,
            result.total_files,
        )

    if config.watcher.enabled if watch is None else watch:
        logger.info("Starting watcher...")
        engine.start_watcher()
    else:
        logger.info("Watcher disabled, skipping")

    mcp = FastMCP(
        name="contextMCP",
        instructions=(
            "contextMCP indexes the source tree of a project and answers context "
            "queries. Use query_context to retrieve relevant code and documentation "
            "within a token budget, refresh_context after editing files, and "
            "index_status to inspect the index."
        ),
    )

    logger.info("Registering tools...")
    register_tools(mcp, engine)

    logger.info("Server configured successfully")
    return mcp


def main() -> None:
    """Main function - starts the MCP server."""
    parser = argparse.ArgumentParser(
        description="contextMCP - context indexing and retrieval MCP server"
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Clear and rebuild the index before starting",
    )
    parser.add_argument(
        "--no-watch",
        action="store_true",
        help="Do not start the background file watcher",
    )
    parser.add_argument(
        "--transport",
        choices=TRANSPORTS,
        default="sse",
        help="MCP transport (default: sse)",
    )
    args = parser.parse_args()

    try:
        config = Config.from_env()
    except ValueError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    # Configure logging here to avoid side effects on import
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Print startup banner
    logger.info("=" * 50)
    logger.info("contextMCP starting...")
    logger.info("  ROOT:      %s", config.project_root)
    logger.info("  WATCH:     %s", ", ".join(str(p) for p in config.watch_paths))
    logger.info("  DB:        %s", config.db_path)
    logger.info("  PORT:      %s", config.port)
    logger.info("  EMBEDDING: %s", config.embedding.base_url or config.embedding.model)
    logger.info("  WATCHER:   %s", "disabled" if args.no_watch else "enabled")
    logger.info("=" * 50)

    engine = ContextEngine(config)
    try:
        if args.rebuild:
            logger.info("Rebuild requested...")
            engine.initialize()
            result = engine.rebuilds.rebuild(RebuildRequest(confirm=True))
            logger.info("Rebuild %s: %s", result.status, result.message)
            if result.status in ("error", "failed"):
                sys.exit(1)

        mcp = create_server(config, engine, watch=False if args.no_watch else None)
        if args.transport == "stdio":
            logger.info("Starting MCP server on stdio...")
            mcp.run(transport="stdio")
        else:
            logger.info("Starting MCP server on port %s...", config.port)
            mcp.run(transport="sse", host="0.0.0.0", port=config.port)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)
    except Exception:
        logger.exception("Server error")
        sys.exit(1)
    finally:
        engine.close()


if __name__ == "__main__":
    main()
