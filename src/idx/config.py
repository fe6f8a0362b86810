"""idx configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (IDX_EMBEDDING_MODEL, IDX_EMBEDDING_API_BASE, IDX_CONCURRENCY)
  3. Per-project idx.yaml  (project root, next to .index/)
  4. Global ~/.idx/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".idx"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
PROJECT_CONFIG_NAME: str = "idx.yaml"
INDEX_DIR_NAME: str = ".index"

# Fields that suggest an API key; forbidden in global config.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "indexing", "fetch", "registries", "discovery", "watch"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding provider configuration (idx.yaml: embedding:).

    Attributes:
        model: LiteLLM model string (provider/model format).
        api_base: Optional OpenAI-compatible endpoint URL.
        dimensions: Requested output dimensions; None uses the model default.
        batch_size: Maximum inputs per request.
        max_batch_chars: Maximum summed input characters per request.
        max_input_chars: Each chunk's text is truncated to this before embedding.
        max_retries: Attempts per batch for transient failures.
        requests_per_minute: Shared rate limit across all workers (0 = unlimited).
        max_concurrent: Maximum in-flight embedding requests across all workers.
    """

    model: str = "openai/text-embedding-3-small"
    api_base: str | None = None
    dimensions: int | None = None
    batch_size: int = 100
    max_batch_chars: int = 200_000
    max_input_chars: int = 6_000
    max_retries: int = 3
    requests_per_minute: int = 0
    max_concurrent: int = 2


@dataclass
class IndexingCfg:
    """Worker pool configuration (idx.yaml: indexing:)."""

    concurrency: int = 4
    max_file_bytes: int = 1_048_576


@dataclass
class FetchCfg:
    """Registry download retry policy (idx.yaml: fetch:)."""

    max_attempts: int = 3
    backoff: float = 0.5
    timeout: float = 60.0


@dataclass
class RegistriesCfg:
    """Registry base URLs (idx.yaml: registries:). Override to use a mirror."""

    npm: str = "https://registry.npmjs.org"
    crates: str = "https://static.crates.io"
    pypi: str = "https://pypi.org"
    go: str = "https://proxy.golang.org"
    maven: str = "https://repo1.maven.org/maven2"


@dataclass
class DiscoveryCfg:
    """Manifest discovery limits (idx.yaml: discovery:).

    Attributes:
        roots: Subdirectories (relative to the project root) to search. Empty
            means the whole project.
        exclude: Glob patterns of relative directories to skip.
    """

    roots: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)


@dataclass
class WatchCfg:
    """Watch mode configuration (idx.yaml: watch:)."""

    debounce: float = 2.0


@dataclass
class IdxConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    indexing: IndexingCfg = field(default_factory=IndexingCfg)
    fetch: FetchCfg = field(default_factory=FetchCfg)
    registries: RegistriesCfg = field(default_factory=RegistriesCfg)
    discovery: DiscoveryCfg = field(default_factory=DiscoveryCfg)
    watch: WatchCfg = field(default_factory=WatchCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export IDX_EMBEDDING_API_KEY=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config '{path}' must be a mapping at the top level.")
    return data


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


def _positive_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc
    if number < 1:
        raise ConfigError(f"{name} must be >= 1, got {number}")
    return number


def _cfg_from_dict(data: dict[str, Any]) -> IdxConfig:
    """Build an *IdxConfig* from a merged raw YAML dict."""
    cfg = IdxConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        d = cfg.embedding
        dims = e.get("dimensions", d.dimensions)
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", d.model)),
            api_base=e.get("api_base") or d.api_base,
            dimensions=_positive_int(dims, "embedding.dimensions") if dims else None,
            batch_size=_positive_int(e.get("batch_size", d.batch_size), "embedding.batch_size"),
            max_batch_chars=_positive_int(
                e.get("max_batch_chars", d.max_batch_chars), "embedding.max_batch_chars"
            ),
            max_input_chars=_positive_int(
                e.get("max_input_chars", d.max_input_chars), "embedding.max_input_chars"
            ),
            max_retries=_positive_int(e.get("max_retries", d.max_retries), "embedding.max_retries"),
            requests_per_minute=int(e.get("requests_per_minute", d.requests_per_minute)),
            max_concurrent=_positive_int(
                e.get("max_concurrent", d.max_concurrent), "embedding.max_concurrent"
            ),
        )

    if "indexing" in data:
        i = data["indexing"] or {}
        cfg.indexing = IndexingCfg(
            concurrency=_positive_int(
                i.get("concurrency", cfg.indexing.concurrency), "indexing.concurrency"
            ),
            max_file_bytes=_positive_int(
                i.get("max_file_bytes", cfg.indexing.max_file_bytes), "indexing.max_file_bytes"
            ),
        )

    if "fetch" in data:
        f = data["fetch"] or {}
        cfg.fetch = FetchCfg(
            max_attempts=_positive_int(
                f.get("max_attempts", cfg.fetch.max_attempts), "fetch.max_attempts"
            ),
            backoff=float(f.get("backoff", cfg.fetch.backoff)),
            timeout=float(f.get("timeout", cfg.fetch.timeout)),
        )

    if "registries" in data:
        r = data["registries"] or {}
        d = cfg.registries
        cfg.registries = RegistriesCfg(
            npm=str(r.get("npm", d.npm)).rstrip("/"),
            crates=str(r.get("crates", d.crates)).rstrip("/"),
            pypi=str(r.get("pypi", d.pypi)).rstrip("/"),
            go=str(r.get("go", d.go)).rstrip("/"),
            maven=str(r.get("maven", d.maven)).rstrip("/"),
        )

    if "discovery" in data:
        ds = data["discovery"] or {}
        cfg.discovery = DiscoveryCfg(
            roots=[str(x) for x in ds.get("roots", [])],
            exclude=[str(x) for x in ds.get("exclude", [])],
        )

    if "watch" in data:
        w = data["watch"] or {}
        cfg.watch = WatchCfg(debounce=float(w.get("debounce", cfg.watch.debounce)))

    return cfg


def _apply_env_overrides(cfg: IdxConfig) -> IdxConfig:
    """Apply IDX_* environment variable overrides."""
    if model := os.environ.get("IDX_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if api_base := os.environ.get("IDX_EMBEDDING_API_BASE"):
        cfg.embedding.api_base = api_base
    if concurrency := os.environ.get("IDX_CONCURRENCY"):
        cfg.indexing.concurrency = _positive_int(concurrency, "IDX_CONCURRENCY")
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> IdxConfig:
    """Load and return a merged *IdxConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *idx.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If a config file is malformed, a value is out of range,
            or the global config contains API-key-like fields.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _check_no_api_keys(raw_project, project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)
    return _apply_env_overrides(cfg)


def embedding_api_key() -> str | None:
    """Return the explicit embedding API key, if one is set.

    ``IDX_EMBEDDING_API_KEY`` wins; otherwise None, and LiteLLM falls back to
    the provider's standard variable (e.g. ``OPENAI_API_KEY``).
    """
    return os.environ.get("IDX_EMBEDDING_API_KEY") or None


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from *start* looking for an existing ``.index/`` directory.

    Returns:
        The directory containing ``.index/``, or None if none is found.
    """
    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / INDEX_DIR_NAME).is_dir():
            return candidate
    return None
