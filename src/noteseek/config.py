"""noteseek configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (NOTESEEK_RETRIEVAL_MODE, NOTESEEK_EMBEDDING_MODEL,
     NOTESEEK_EMBEDDING_BASE_URL, and the key env var named by embedding.key_env)
  3. Per-project noteseek.yaml
  4. Global ~/.noteseek/config.yaml  (defaults only — no API keys)
  5. Hardcoded defaults

Resolution happens once: load_config() returns a frozen NoteseekConfig that is
passed unchanged to everything downstream.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".noteseek"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "noteseek.yaml"

DEFAULT_KEY_ENV = "NOTESEEK_EMBEDDING_API_KEY"

RETRIEVAL_MODES: frozenset[str] = frozenset(["vector", "keyword"])

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate keys like key_env, max_retries, top_k.
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

_KNOWN_SECTIONS: frozenset[str] = frozenset(["corpus", "retrieval", "embedding", "cache"])

_DEFAULT_DIRS: dict[str, str] = {
    "notes": "inputs/notes",
    "prompts": "inputs/prompts",
    "rubrics": "inputs/rubrics",
    "knowledge": "inputs/knowledge",
    "examples": "inputs/examples",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when configuration is invalid, forbidden, or incomplete."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CorpusCfg:
    """Corpus sources (noteseek.yaml: corpus:).

    Attributes:
        dirs: Directory per kind. Relative paths are resolved against the
            project directory by load_config().
        max_chunk_len: Character ceiling for packed paragraphs.
        max_file_size: Files above this many bytes are skipped.
    """

    dirs: dict[str, Path] = field(
        default_factory=lambda: {k: Path(v) for k, v in _DEFAULT_DIRS.items()}
    )
    max_chunk_len: int = 1200
    max_file_size: int = 1024 * 1024


@dataclass(frozen=True)
class RetrievalCfg:
    """Retrieval pipeline configuration (noteseek.yaml: retrieval:)."""

    mode: str = "vector"  # vector | keyword
    top_k: int = 5
    min_score: float = 0.1
    max_queries: int = 8
    concurrency: int = 4


@dataclass(frozen=True)
class VectorCfg:
    """Embedding provider configuration (noteseek.yaml: embedding:).

    ``api_key`` is never read from YAML; it comes from the environment
    variable named by ``key_env``.
    """

    provider: str = "openai_compatible"
    base_url: str = ""
    model: str = ""
    api_key: str = field(default="", repr=False)
    key_env: str = DEFAULT_KEY_ENV
    timeout_sec: float = 30.0
    max_retries: int = 2
    batch_size: int = 16
    query_max_chars: int = 1500

    @property
    def is_complete(self) -> bool:
        return bool(self.provider and self.base_url and self.api_key and self.model)

    @property
    def cache_key(self) -> str:
        """Identity of the (provider, endpoint, model) triple."""
        return f"{self.provider}|{self.base_url}|{self.model}"

    def require_complete(self) -> None:
        """Raise ConfigError unless provider, base_url, api_key and model are all set."""
        missing = [
            name
            for name, value in (
                ("provider", self.provider),
                ("base_url", self.base_url),
                ("api_key", self.api_key),
                ("model", self.model),
            )
            if not value
        ]
        if missing:
            raise ConfigError(
                "Vector retrieval config incomplete: missing "
                + ", ".join(missing)
                + f". Set them under 'embedding:' (api key via ${self.key_env})."
            )


@dataclass(frozen=True)
class NoteseekConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    corpus: CorpusCfg = field(default_factory=CorpusCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    embedding: VectorCfg = field(default_factory=VectorCfg)
    cache_dir: Path = Path(".noteseek") / "cache"


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
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {DEFAULT_KEY_ENV}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: NoteseekConfig) -> None:
    if cfg.retrieval.mode not in RETRIEVAL_MODES:
        raise ConfigError(
            f"retrieval.mode must be one of {sorted(RETRIEVAL_MODES)}, "
            f"got '{cfg.retrieval.mode}'"
        )
    for name, value in (
        ("retrieval.top_k", cfg.retrieval.top_k),
        ("retrieval.max_queries", cfg.retrieval.max_queries),
        ("retrieval.concurrency", cfg.retrieval.concurrency),
        ("corpus.max_chunk_len", cfg.corpus.max_chunk_len),
        ("corpus.max_file_size", cfg.corpus.max_file_size),
        ("embedding.batch_size", cfg.embedding.batch_size),
    ):
        if value < 1:
            raise ConfigError(f"{name} must be >= 1, got {value}")
    if cfg.embedding.max_retries < 0:
        raise ConfigError(
            f"embedding.max_retries must be >= 0, got {cfg.embedding.max_retries}"
        )


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


def _resolve_dir(raw: str | Path, project_dir: Path) -> Path:
    p = Path(raw).expanduser()
    return p if p.is_absolute() else (project_dir / p)


def _cfg_from_dict(data: dict[str, Any], project_dir: Path) -> NoteseekConfig:
    """Build a *NoteseekConfig* from a merged raw YAML dict."""
    defaults = NoteseekConfig()

    c = data.get("corpus") or {}
    raw_dirs = c.get("dirs")
    dirs = {str(k): str(v) for k, v in (raw_dirs if raw_dirs is not None else _DEFAULT_DIRS).items()}
    corpus = CorpusCfg(
        dirs={kind: _resolve_dir(path, project_dir) for kind, path in dirs.items()},
        max_chunk_len=int(c.get("max_chunk_len", defaults.corpus.max_chunk_len)),
        max_file_size=int(c.get("max_file_size", defaults.corpus.max_file_size)),
    )

    r = data.get("retrieval") or {}
    retrieval = RetrievalCfg(
        mode=str(r.get("mode", defaults.retrieval.mode)).lower(),
        top_k=int(r.get("top_k", defaults.retrieval.top_k)),
        min_score=float(r.get("min_score", defaults.retrieval.min_score)),
        max_queries=int(r.get("max_queries", defaults.retrieval.max_queries)),
        concurrency=int(r.get("concurrency", defaults.retrieval.concurrency)),
    )

    e = data.get("embedding") or {}
    d = defaults.embedding
    embedding = VectorCfg(
        provider=str(e.get("provider", d.provider)),
        base_url=str(e.get("base_url", d.base_url)).rstrip("/"),
        model=str(e.get("model", d.model)),
        key_env=str(e.get("key_env", d.key_env)),
        timeout_sec=float(e.get("timeout_sec", d.timeout_sec)),
        max_retries=int(e.get("max_retries", d.max_retries)),
        batch_size=int(e.get("batch_size", d.batch_size)),
        query_max_chars=int(e.get("query_max_chars", d.query_max_chars)),
    )

    cache = data.get("cache") or {}
    cache_dir = _resolve_dir(cache.get("dir", defaults.cache_dir), project_dir)

    return NoteseekConfig(
        corpus=corpus, retrieval=retrieval, embedding=embedding, cache_dir=cache_dir
    )


def _apply_env_overrides(cfg: NoteseekConfig) -> NoteseekConfig:
    """Apply NOTESEEK_* environment variable overrides and pick up the API key."""
    retrieval = cfg.retrieval
    if mode := os.environ.get("NOTESEEK_RETRIEVAL_MODE"):
        retrieval = replace(retrieval, mode=mode.lower())

    embedding = cfg.embedding
    if model := os.environ.get("NOTESEEK_EMBEDDING_MODEL"):
        embedding = replace(embedding, model=model)
    if base_url := os.environ.get("NOTESEEK_EMBEDDING_BASE_URL"):
        embedding = replace(embedding, base_url=base_url.rstrip("/"))
    embedding = replace(embedding, api_key=os.environ.get(embedding.key_env, ""))

    return replace(cfg, retrieval=retrieval, embedding=embedding)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> NoteseekConfig:
    """Load and return a merged, validated *NoteseekConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function
    (use ``dataclasses.replace``; the config is immutable).

    Args:
        project_dir: Directory to search for *noteseek.yaml*. Defaults to CWD.
            Relative corpus and cache paths resolve against it.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or any
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = (project_dir if project_dir is not None else Path.cwd()).resolve()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    try:
        cfg = _cfg_from_dict(merged, search_dir)
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg
