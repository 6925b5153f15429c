"""Shared fixtures for contextmcp tests."""

from pathlib import Path

import pytest

from context_mcp.config import Config, WatcherConfig
from context_mcp.engine import ContextEngine
from context_mcp.indexer.database import Database


@pytest.fixture
def project(tmp_path) -> Path:
    """Empty project root."""
    root = tmp_path / "project"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def config(project, tmp_path) -> Config:
    """Config rooted at the project, with the database outside of it."""
    return Config(
        project_root=project,
        watch_paths=[project],
        db_path=tmp_path / "index.db",
        watcher=WatcherConfig(enabled=False),
    )


@pytest.fixture
def db(config):
    database = Database(config.db_path)
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def engine(config):
    context_engine = ContextEngine(config)
    context_engine.initialize()
    yield context_engine
    context_engine.close()


@pytest.fixture
def write_file(project):
    """Write a file under the project root, creating parent directories."""

    def write(rel_path: str, content: str) -> Path:
        path = project / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return write
