"""Configuration module for contextmcp.

Settings come from three layers, lowest precedence first:

1. Dataclass defaults.
2. An optional YAML file (``CONTEXT_CONFIG``, or ``<root>/.context.yaml``).
3. ``CONTEXT_*`` environment variables.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_ALLOWED_EXTENSIONS = [
    ".py",
    ".kt",
    ".kts",
    ".java",
    ".cs",
    ".ts",
    ".tsx",
    ".js",
    ".jsx",
    ".md",
    ".markdown",
    ".txt",
    ".rst",
    ".json",
    ".yaml",
    ".yml",
    ".sql",
]

DEFAULT_IGNORE_PATTERNS = [
    ".git",
    "node_modules",
    "build",
    "dist",
    ".venv",
    "venv",
    "target",
    "__pycache__",
    ".context",
]


@dataclass
class IndexingConfig:
    """File selection rules."""

    allowed_extensions: list[str] = field(
        default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS)
    )
    blocked_extensions: list[str] = field(default_factory=list)
    ignore_patterns: list[str] = field(
        default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS)
    )
    include_paths: list[str] = field(default_factory=list)
    use_gitignore: bool = True
    use_contextignore: bool = True
    use_dockerignore: bool = True
    follow_symlinks: bool = False
    max_symlink_depth: int = 3
    max_file_size_mb: float = 5.0
    warn_file_size_mb: float = 2.0


@dataclass
class EmbeddingConfig:
    """Embedding backend settings."""

    model: str = "hash-embedding"
    dimension: int = 384
    batch_size: int = 64
    base_url: str | None = None  # Ollama-compatible endpoint; local hashing if unset
    timeout: float = 30.0
    cache_size: int = 2048


@dataclass
class ChunkingConfig:
    """Per-family chunk budgets."""

    markdown_max_tokens: int = 400
    code_max_tokens: int = 600
    structured_max_tokens: int = 500
    text_max_tokens: int = 400
    overlap_percent: int = 15


@dataclass
class QueryConfig:
    """Retrieval defaults."""

    default_k: int = 12
    default_max_tokens: int = 4000
    max_tokens_cap: int = 32000
    min_score: float = 0.3
    mmr_lambda: float = 0.5
    rerank_enabled: bool = True
    neighbor_window: int = 0


@dataclass
class ProviderConfig:
    """Enable flag and weight for one context provider.

    The weight is informational: it is echoed in query diagnostics and does
    not change snippet scores.
    """

    enabled: bool = True
    weight: float = 1.0


def _default_providers() -> dict[str, ProviderConfig]:
    return {
        "semantic": ProviderConfig(weight=0.6),
        "symbol": ProviderConfig(weight=0.3),
        "full_text": ProviderConfig(weight=0.1),
    }


@dataclass
class BootstrapConfig:
    parallel_workers: int = 4


@dataclass
class WatcherConfig:
    enabled: bool = True
    interval: int = 30  # seconds


@dataclass
class Config:
    """Application configuration."""

    project_root: Path
    watch_paths: list[Path]
    db_path: Path
    port: int = 8080
    log_level: str = "INFO"
    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    providers: dict[str, ProviderConfig] = field(default_factory=_default_providers)
    bootstrap: BootstrapConfig = field(default_factory=BootstrapConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)

    def __post_init__(self) -> None:
        if self.indexing.allowed_extensions and self.indexing.blocked_extensions:
            raise ValueError(
                "allowed_extensions and blocked_extensions are mutually exclusive"
            )
        if self.bootstrap.parallel_workers < 1:
            raise ValueError(
                f"parallel_workers must be >= 1, got {self.bootstrap.parallel_workers}"
            )
        if self.embedding.dimension < 1:
            raise ValueError(f"Embedding dimension must be >= 1, got {self.embedding.dimension}")
        if self.embedding.batch_size < 1:
            raise ValueError(f"Embedding batch_size must be >= 1, got {self.embedding.batch_size}")
        if not 0.0 <= self.query.mmr_lambda <= 1.0:
            raise ValueError(f"mmr_lambda must be between 0 and 1, got {self.query.mmr_lambda}")
        if self.query.neighbor_window < 0:
            raise ValueError("neighbor_window must be non-negative")
        if not 0 <= self.chunking.overlap_percent < 100:
            raise ValueError("overlap_percent must be in [0, 100)")

    @property
    def enabled_providers(self) -> dict[str, ProviderConfig]:
        return {name: p for name, p in self.providers.items() if p.enabled}

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from the YAML file and environment variables."""
        default_root = str(Path.cwd())
        project_root = Path(os.getenv("CONTEXT_ROOT", default_root)).expanduser().resolve()

        config_file = os.getenv("CONTEXT_CONFIG")
        if config_file:
            data = load_yaml_file(Path(config_file).expanduser())
        elif (project_root / ".context.yaml").is_file():
            data = load_yaml_file(project_root / ".context.yaml")
        else:
            data = {}

        sections: dict[str, Any] = {}
        for name, section_cls in (
            ("indexing", IndexingConfig),
            ("embedding", EmbeddingConfig),
            ("chunking", ChunkingConfig),
            ("query", QueryConfig),
            ("bootstrap", BootstrapConfig),
            ("watcher", WatcherConfig),
        ):
            values = data.pop(name, None) or {}
            sections[name] = _build_section(section_cls, values, name)
            if (
                name == "indexing"
                and "blocked_extensions" in values
                and "allowed_extensions" not in values
            ):
                # A blocklist replaces the default allowlist
                sections[name].allowed_extensions = []

        providers = _default_providers()
        for name, values in (data.pop("providers", None) or {}).items():
            providers[name] = _build_section(ProviderConfig, values or {}, f"providers.{name}")

        port = data.pop("port", 8080)
        log_level = data.pop("log_level", "INFO")
        watch_values = data.pop("watch_paths", None)
        db_value = data.pop("db_path", None)
        if data:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(data))}")

        # Environment overrides
        port_str = os.getenv("CONTEXT_PORT", str(port))
        try:
            port = int(port_str)
            if not 1 <= port <= 65535:
                raise ValueError(f"Port must be between 1 and 65535, got {port}")
        except ValueError as e:
            raise ValueError(f"Invalid CONTEXT_PORT value '{port_str}': {e}") from e

        watch_env = os.getenv("CONTEXT_WATCH_PATHS")
        if watch_env:
            watch_values = [p for p in watch_env.split(os.pathsep) if p]
        watch_paths = [
            _resolve(project_root, p) for p in (watch_values or [str(project_root)])
        ]

        default_db = str(project_root / ".context" / "index.db")
        db_path = Path(os.getenv("CONTEXT_DB", db_value or default_db)).expanduser()

        parallelism = os.getenv("CONTEXT_PARALLELISM")
        if parallelism is not None:
            sections["bootstrap"].parallel_workers = _parse_int(
                "CONTEXT_PARALLELISM", parallelism, minimum=1
            )

        interval = os.getenv("CONTEXT_WATCH_INTERVAL")
        if interval is not None:
            sections["watcher"].interval = _parse_int(
                "CONTEXT_WATCH_INTERVAL", interval, minimum=1
            )

        watch_enabled = os.getenv("CONTEXT_WATCH_ENABLED")
        if watch_enabled is not None:
            sections["watcher"].enabled = watch_enabled.lower() not in ("0", "false", "no")

        embedding_url = os.getenv("CONTEXT_EMBEDDING_URL")
        if embedding_url:
            sections["embedding"].base_url = embedding_url
        embedding_model = os.getenv("CONTEXT_EMBEDDING_MODEL")
        if embedding_model:
            sections["embedding"].model = embedding_model

        log_level = os.getenv("CONTEXT_LOG_LEVEL", log_level).upper()

        return cls(
            project_root=project_root,
            watch_paths=watch_paths,
            db_path=db_path,
            port=port,
            log_level=log_level,
            providers=providers,
            **sections,
        )


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Read a YAML configuration file into a dict."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ValueError(f"Cannot read config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def _build_section(section_cls: type, values: dict[str, Any], name: str) -> Any:
    if not isinstance(values, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(
            f"Unknown keys in config section '{name}': {', '.join(sorted(unknown))}"
        )
    return section_cls(**values)


def _parse_int(name: str, value: str, minimum: int) -> int:
    try:
        parsed = int(value)
    except ValueError as e:
        raise ValueError(f"Invalid {name} value '{value}': {e}") from e
    if parsed < minimum:
        raise ValueError(f"Invalid {name} value '{value}': must be >= {minimum}")
    return parsed


def _resolve(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = root / path
    return path.resolve()


# Global config instance (lazy loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _config
    _config = None
