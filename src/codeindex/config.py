"""codeindex configuration loader.

Priority (high → low):
  1. Keyword arguments to the facades  (handled at call site)
  2. Environment variables  (QDRANT_URL, OLLAMA_URL, CODEINDEX_* ...)
  3. Explicit config file, or ./codeindex.yaml in the project directory
  4. Global ~/.codeindex/config.yaml
  5. Hardcoded defaults

Config files must never contain API keys; OPENAI_API_KEY and QDRANT_API_KEY
are read from the environment only.  All YAML reads use yaml.safe_load().
Path mappings are read once here and never reloaded.
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from codeindex.exceptions import ConfigError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_PATH: Path = Path.home() / ".codeindex" / "config.yaml"
_PROJECT_CONFIG_NAME: str = "codeindex.yaml"

_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)|_token$|^token$|_secret$|^secret$|passw(?:ord|d)|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["database", "vector_store", "embedding", "scanner", "watcher", "path_mappings"]
)

VECTOR_STORE_BACKENDS: frozenset[str] = frozenset(["qdrant", "local"])
EMBEDDING_BACKENDS: frozenset[str] = frozenset(["ollama", "openai", "sentence-transformers"])


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class DatabaseCfg:
    """Metadata store location (codeindex.yaml: database:)."""

    url: str | None = None
    data_dir: str = str(Path.home() / ".codeindex")


@dataclass
class VectorStoreCfg:
    """Vector store connection (codeindex.yaml: vector_store:)."""

    backend: str = "qdrant"
    url: str = "http://localhost:6333"
    collection: str = "code_index"
    timeout: float = 30.0
    api_key: str | None = None  # environment only


@dataclass
class EmbeddingCfg:
    """Embedding provider selection (codeindex.yaml: embedding:)."""

    backend: str = "ollama"
    model: str | None = None
    base_url: str | None = None
    dimensions: int | None = None
    timeout: float = 30.0
    max_concurrency: int = 4
    batch_size: int = 256


@dataclass
class ScannerCfg:
    """File eligibility and chunk sizing (codeindex.yaml: scanner:)."""

    max_file_size: int = 10 * 1024 * 1024
    max_chunk_lines: int = 200
    max_chunk_chars: int = 8000
    extra_ignore_dirs: list[str] = field(default_factory=list)


@dataclass
class WatcherCfg:
    """Background watcher (codeindex.yaml: watcher:)."""

    enabled: bool = True
    debounce_seconds: float = 0.5


@dataclass
class PathMappingCfg:
    """One host-path → local-path prefix substitution."""

    host: str
    local: str


@dataclass
class CodeIndexConfig:
    """Root configuration object, built by load_config() from merged layers."""

    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    vector_store: VectorStoreCfg = field(default_factory=VectorStoreCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    scanner: ScannerCfg = field(default_factory=ScannerCfg)
    watcher: WatcherCfg = field(default_factory=WatcherCfg)
    path_mappings: list[PathMappingCfg] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else str(k)
                if _API_KEY_RE.search(str(k)):
                    msg = (
                        f"Config '{source}' contains a forbidden key '{full}'. "
                        "API keys must be set via environment variables, not config files."
                    )
                    raise ConfigError(msg)
                _scan(v, full)
        elif isinstance(obj, list):
            for item in obj:
                _scan(item, path)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' (ignored).",
                UserWarning,
                stacklevel=4,
            )


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in '{path}': {e}"
        raise ConfigError(msg) from e
    if not isinstance(raw, dict):
        msg = f"Config '{path}' must be a mapping at the top level"
        raise ConfigError(msg)
    _check_no_api_keys(raw, path)
    _warn_unknown_keys(raw, path)
    return raw


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def parse_path_mappings(value: str) -> list[PathMappingCfg]:
    """Parse ``"/host1:/local1,/host2:/local2"`` into mapping entries."""
    mappings: list[PathMappingCfg] = []
    for raw in value.split(","):
        item = raw.strip()
        if not item:
            continue
        host, sep, local = item.partition(":")
        if not sep or not host.strip() or not local.strip():
            msg = f"Invalid path mapping {item!r}; expected 'host_path:local_path'"
            raise ConfigError(msg)
        mappings.append(PathMappingCfg(host=host.strip(), local=local.strip()))
    return mappings


def _cfg_from_dict(data: dict[str, Any]) -> CodeIndexConfig:
    cfg = CodeIndexConfig()

    if db := data.get("database"):
        cfg.database = DatabaseCfg(
            url=db.get("url", cfg.database.url),
            data_dir=str(Path(db.get("data_dir", cfg.database.data_dir)).expanduser()),
        )

    if vs := data.get("vector_store"):
        cfg.vector_store = VectorStoreCfg(
            backend=str(vs.get("backend", cfg.vector_store.backend)),
            url=str(vs.get("url", cfg.vector_store.url)),
            collection=str(vs.get("collection", cfg.vector_store.collection)),
            timeout=float(vs.get("timeout", cfg.vector_store.timeout)),
        )

    if em := data.get("embedding"):
        cfg.embedding = EmbeddingCfg(
            backend=str(em.get("backend", cfg.embedding.backend)),
            model=em.get("model", cfg.embedding.model),
            base_url=em.get("base_url", cfg.embedding.base_url),
            dimensions=_optional_int(em.get("dimensions", cfg.embedding.dimensions)),
            timeout=float(em.get("timeout", cfg.embedding.timeout)),
            max_concurrency=int(em.get("max_concurrency", cfg.embedding.max_concurrency)),
            batch_size=int(em.get("batch_size", cfg.embedding.batch_size)),
        )

    if sc := data.get("scanner"):
        cfg.scanner = ScannerCfg(
            max_file_size=int(sc.get("max_file_size", cfg.scanner.max_file_size)),
            max_chunk_lines=int(sc.get("max_chunk_lines", cfg.scanner.max_chunk_lines)),
            max_chunk_chars=int(sc.get("max_chunk_chars", cfg.scanner.max_chunk_chars)),
            extra_ignore_dirs=[str(d) for d in sc.get("extra_ignore_dirs", [])],
        )

    if wa := data.get("watcher"):
        cfg.watcher = WatcherCfg(
            enabled=bool(wa.get("enabled", cfg.watcher.enabled)),
            debounce_seconds=float(wa.get("debounce_seconds", cfg.watcher.debounce_seconds)),
        )

    for item in data.get("path_mappings") or []:
        if not isinstance(item, dict) or "host" not in item or "local" not in item:
            msg = f"Invalid path mapping {item!r}; expected a mapping with 'host' and 'local'"
            raise ConfigError(msg)
        cfg.path_mappings.append(PathMappingCfg(host=str(item["host"]), local=str(item["local"])))

    return cfg


def _apply_env_overrides(cfg: CodeIndexConfig) -> CodeIndexConfig:
    """Apply environment variable overrides (layer 2)."""
    env = os.environ
    if url := env.get("CODEINDEX_DATABASE_URL"):
        cfg.database.url = url
    if data_dir := env.get("CODEINDEX_DATA_DIR"):
        cfg.database.data_dir = str(Path(data_dir).expanduser())
    if url := env.get("QDRANT_URL"):
        cfg.vector_store.url = url
    if collection := env.get("QDRANT_CODE_COLLECTION"):
        cfg.vector_store.collection = collection
    if api_key := env.get("QDRANT_API_KEY"):
        cfg.vector_store.api_key = api_key
    if backend := env.get("CODEINDEX_EMBEDDING_BACKEND"):
        cfg.embedding.backend = backend
    if model := env.get("CODEINDEX_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if url := env.get("OLLAMA_URL"):
        if cfg.embedding.backend == "ollama":
            cfg.embedding.base_url = url
    if mappings := env.get("CODEINDEX_PATH_MAPPINGS"):
        cfg.path_mappings = parse_path_mappings(mappings)
    return cfg


def validate_config(cfg: CodeIndexConfig) -> None:
    """Raise ConfigError for values no component can work with."""
    if cfg.vector_store.backend not in VECTOR_STORE_BACKENDS:
        msg = (
            f"Unknown vector_store.backend {cfg.vector_store.backend!r}; "
            f"expected one of {sorted(VECTOR_STORE_BACKENDS)}"
        )
        raise ConfigError(msg)
    if cfg.embedding.backend not in EMBEDDING_BACKENDS:
        msg = (
            f"Unknown embedding.backend {cfg.embedding.backend!r}; "
            f"expected one of {sorted(EMBEDDING_BACKENDS)}"
        )
        raise ConfigError(msg)
    if cfg.embedding.max_concurrency < 1:
        msg = "embedding.max_concurrency must be at least 1"
        raise ConfigError(msg)
    if cfg.scanner.max_chunk_lines < 1 or cfg.scanner.max_chunk_chars < 1:
        msg = "scanner.max_chunk_lines and scanner.max_chunk_chars must be positive"
        raise ConfigError(msg)
    if cfg.watcher.debounce_seconds < 0:
        msg = "watcher.debounce_seconds must not be negative"
        raise ConfigError(msg)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    config_path: Path | str | None = None,
    *,
    project_dir: Path | None = None,
    global_config_path: Path | None = None,
) -> CodeIndexConfig:
    """Load and return a merged *CodeIndexConfig*.

    Args:
        config_path: Explicit config file.  When given, ``codeindex.yaml`` in
            the project directory is not consulted.
        project_dir: Directory to search for *codeindex.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: On invalid YAML, API-key-like fields, malformed path
            mappings, or unknown backends.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH

    merged: dict[str, Any] = {}
    if global_path.exists():
        merged = _deep_merge(merged, _read_yaml(global_path))

    if config_path is not None:
        explicit = Path(config_path)
        if not explicit.exists():
            msg = f"Config file not found: {explicit}"
            raise ConfigError(msg)
        merged = _deep_merge(merged, _read_yaml(explicit))
    else:
        project_path = (project_dir if project_dir is not None else Path.cwd()) / _PROJECT_CONFIG_NAME
        if project_path.exists():
            merged = _deep_merge(merged, _read_yaml(project_path))

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    validate_config(cfg)
    return cfg
