"""Tests for config module."""

import os
from pathlib import Path

import pytest

from context_mcp.config import (
    Config,
    IndexingConfig,
    QueryConfig,
    get_config,
    reset_config,
)

ENV_VARS = [
    "CONTEXT_ROOT",
    "CONTEXT_CONFIG",
    "CONTEXT_WATCH_PATHS",
    "CONTEXT_DB",
    "CONTEXT_PORT",
    "CONTEXT_PARALLELISM",
    "CONTEXT_EMBEDDING_URL",
    "CONTEXT_EMBEDDING_MODEL",
    "CONTEXT_WATCH_INTERVAL",
    "CONTEXT_WATCH_ENABLED",
    "CONTEXT_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CONTEXT_ROOT", str(tmp_path))
    reset_config()
    yield
    reset_config()


def test_config_defaults(tmp_path):
    """Test config loads with defaults when no env vars set."""
    config = Config.from_env()
    root = tmp_path.resolve()
    assert config.project_root == root
    assert config.watch_paths == [root]
    assert config.db_path == root / ".context" / "index.db"
    assert config.port == 8080
    assert config.log_level == "INFO"
    assert config.bootstrap.parallel_workers == 4
    assert config.query.default_k == 12
    assert config.embedding.dimension == 384


def test_config_default_providers():
    """Test the three providers are enabled with their default weights."""
    config = Config.from_env()
    assert set(config.enabled_providers) == {"semantic", "symbol", "full_text"}
    assert config.providers["semantic"].weight == 0.6
    assert config.providers["full_text"].weight == 0.1


def test_config_from_env(monkeypatch, tmp_path):
    """Test config loads from environment variables."""
    (tmp_path / "src").mkdir()
    (tmp_path / "docs").mkdir()
    monkeypatch.setenv("CONTEXT_WATCH_PATHS", f"src{os.pathsep}docs")
    monkeypatch.setenv("CONTEXT_DB", str(tmp_path / "custom.db"))
    monkeypatch.setenv("CONTEXT_PORT", "9000")
    monkeypatch.setenv("CONTEXT_PARALLELISM", "8")
    monkeypatch.setenv("CONTEXT_WATCH_INTERVAL", "5")
    monkeypatch.setenv("CONTEXT_WATCH_ENABLED", "false")
    monkeypatch.setenv("CONTEXT_EMBEDDING_URL", "http://localhost:11434")
    monkeypatch.setenv("CONTEXT_LOG_LEVEL", "debug")

    config = Config.from_env()
    root = tmp_path.resolve()
    assert config.watch_paths == [root / "src", root / "docs"]
    assert config.db_path == tmp_path / "custom.db"
    assert config.port == 9000
    assert config.bootstrap.parallel_workers == 8
    assert config.watcher.interval == 5
    assert config.watcher.enabled is False
    assert config.embedding.base_url == "http://localhost:11434"
    assert config.log_level == "DEBUG"


def test_config_from_env_creates_new_instances():
    """Test Config.from_env() creates new instances each time."""
    config1 = Config.from_env()
    config2 = Config.from_env()
    assert config1 is not config2


def test_config_invalid_port_non_numeric(monkeypatch):
    """Test config raises error for non-numeric port."""
    monkeypatch.setenv("CONTEXT_PORT", "not_a_number")
    with pytest.raises(ValueError, match="Invalid CONTEXT_PORT"):
        Config.from_env()


def test_config_invalid_port_out_of_range(monkeypatch):
    """Test config raises error for port out of valid range."""
    monkeypatch.setenv("CONTEXT_PORT", "70000")
    with pytest.raises(ValueError, match="Port must be between 1 and 65535"):
        Config.from_env()


def test_config_invalid_parallelism(monkeypatch):
    """Test parallelism below one is rejected."""
    monkeypatch.setenv("CONTEXT_PARALLELISM", "0")
    with pytest.raises(ValueError, match="Invalid CONTEXT_PARALLELISM"):
        Config.from_env()


def test_config_yaml_file(tmp_path):
    """Test .context.yaml at the root is merged under the environment."""
    (tmp_path / ".context.yaml").write_text(
        """
port: 7000
query:
  default_k: 5
  min_score: 0.5
providers:
  full_text:
    enabled: false
chunking:
  code_max_tokens: 300
""",
        encoding="utf-8",
    )
    config = Config.from_env()
    assert config.port == 7000
    assert config.query.default_k == 5
    assert config.query.min_score == 0.5
    assert config.chunking.code_max_tokens == 300
    assert "full_text" not in config.enabled_providers
    assert config.providers["semantic"].enabled is True


def test_config_env_overrides_yaml(monkeypatch, tmp_path):
    """Test environment variables win over the YAML file."""
    config_file = tmp_path / "custom.yaml"
    config_file.write_text("port: 7000\n", encoding="utf-8")
    monkeypatch.setenv("CONTEXT_CONFIG", str(config_file))
    monkeypatch.setenv("CONTEXT_PORT", "7100")
    assert Config.from_env().port == 7100


def test_config_yaml_unknown_key(tmp_path):
    """Test unknown keys in the YAML file are rejected."""
    (tmp_path / ".context.yaml").write_text("colour: blue\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Unknown configuration keys: colour"):
        Config.from_env()


def test_config_yaml_unknown_section_key(tmp_path):
    """Test unknown keys inside a section are rejected."""
    (tmp_path / ".context.yaml").write_text("query:\n  top_k: 3\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Unknown keys in config section 'query'"):
        Config.from_env()


def test_config_yaml_blocklist_replaces_allowlist(tmp_path):
    """Test a blocklist alone clears the default allowlist."""
    (tmp_path / ".context.yaml").write_text(
        "indexing:\n  blocked_extensions: ['.sql']\n", encoding="utf-8"
    )
    config = Config.from_env()
    assert config.indexing.allowed_extensions == []
    assert config.indexing.blocked_extensions == [".sql"]


def test_config_rejects_allow_and_block_lists(tmp_path):
    """Test allowlist and blocklist cannot both be set."""
    with pytest.raises(ValueError, match="mutually exclusive"):
        Config(
            project_root=tmp_path,
            watch_paths=[tmp_path],
            db_path=tmp_path / "db",
            indexing=IndexingConfig(allowed_extensions=[".py"], blocked_extensions=[".md"]),
        )


def test_config_rejects_invalid_mmr_lambda(tmp_path):
    """Test mmr_lambda must be within [0, 1]."""
    with pytest.raises(ValueError, match="mmr_lambda"):
        Config(
            project_root=tmp_path,
            watch_paths=[tmp_path],
            db_path=tmp_path / "db",
            query=QueryConfig(mmr_lambda=1.5),
        )


def test_get_config_is_cached():
    """Test get_config returns the same instance until reset."""
    first = get_config()
    assert get_config() is first
    reset_config()
    assert get_config() is not first


def test_config_watch_path_tilde_expansion(monkeypatch):
    """Test watch paths expand the home directory."""
    monkeypatch.setenv("CONTEXT_WATCH_PATHS", "~/somewhere")
    config = Config.from_env()
    assert config.watch_paths[0] == (Path.home() / "somewhere").resolve()
