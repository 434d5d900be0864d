"""Tests for the noteseek config loader."""

from __future__ import annotations

import warnings
from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest
import yaml

from noteseek.config import (
    DEFAULT_KEY_ENV,
    ConfigError,
    NoteseekConfig,
    VectorCfg,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        DEFAULT_KEY_ENV,
        "NOTESEEK_RETRIEVAL_MODE",
        "NOTESEEK_EMBEDDING_MODEL",
        "NOTESEEK_EMBEDDING_BASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def missing_global(tmp_path: Path) -> Path:
    return tmp_path / "nonexistent" / "config.yaml"


# ---------------------------------------------------------------------------
# Defaults: no config files present
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path, missing_global: Path) -> None:
    """No config files → all hardcoded defaults."""
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)

    assert cfg.retrieval.mode == "vector"
    assert cfg.retrieval.top_k == 5
    assert cfg.retrieval.min_score == pytest.approx(0.1)
    assert cfg.retrieval.max_queries == 8
    assert cfg.corpus.max_chunk_len == 1200
    assert cfg.corpus.max_file_size == 1024 * 1024
    assert cfg.embedding.provider == "openai_compatible"
    assert cfg.embedding.batch_size == 16
    assert cfg.embedding.key_env == DEFAULT_KEY_ENV
    assert cfg.embedding.api_key == ""
    assert not cfg.embedding.is_complete


def test_default_dirs_resolve_against_project(tmp_path: Path, missing_global: Path) -> None:
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    root = tmp_path.resolve()
    assert cfg.corpus.dirs["notes"] == root / "inputs" / "notes"
    assert set(cfg.corpus.dirs) == {"notes", "prompts", "rubrics", "knowledge", "examples"}
    assert cfg.cache_dir == root / ".noteseek" / "cache"


def test_config_is_immutable(tmp_path: Path, missing_global: Path) -> None:
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    with pytest.raises(FrozenInstanceError):
        cfg.retrieval.top_k = 99  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Global + per-project layering
# ---------------------------------------------------------------------------


def test_load_config_global_overrides_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"retrieval": {"top_k": 9}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.retrieval.top_k == 9
    assert cfg.retrieval.mode == "vector"


def test_load_config_global_empty_file(tmp_path: Path) -> None:
    """Empty global config file → defaults (no crash)."""
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text("# nothing here\n", encoding="utf-8")

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.retrieval.top_k == 5


def test_load_config_project_partial_override(tmp_path: Path) -> None:
    """Per-project can override a single field; global values for other fields survive."""
    global_cfg = tmp_path / "global.yaml"
    _write_yaml(global_cfg, {"retrieval": {"top_k": 20, "min_score": 0.3}})
    _write_yaml(tmp_path / "noteseek.yaml", {"retrieval": {"top_k": 4}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.retrieval.top_k == 4
    assert cfg.retrieval.min_score == pytest.approx(0.3)  # global value preserved


def test_project_embedding_section(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(
        tmp_path / "noteseek.yaml",
        {
            "embedding": {
                "provider": "volc_doubao",
                "base_url": "https://ark.example.com/",
                "model": "doubao-embedding",
                "timeout_sec": 10,
                "max_retries": 0,
            }
        },
    )
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.embedding.provider == "volc_doubao"
    assert cfg.embedding.base_url == "https://ark.example.com"  # trailing slash trimmed
    assert cfg.embedding.timeout_sec == pytest.approx(10.0)
    assert cfg.embedding.max_retries == 0


def test_corpus_dirs_replace_defaults(tmp_path: Path, missing_global: Path) -> None:
    absolute = tmp_path / "elsewhere"
    _write_yaml(
        tmp_path / "noteseek.yaml",
        {"corpus": {"dirs": {"notes": "my-notes", "knowledge": str(absolute)}}},
    )
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.corpus.dirs == {
        "notes": tmp_path.resolve() / "my-notes",
        "knowledge": absolute,
    }


def test_cache_dir_override(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(tmp_path / "noteseek.yaml", {"cache": {"dir": "var/vectors"}})
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.cache_dir == tmp_path.resolve() / "var" / "vectors"


# ---------------------------------------------------------------------------
# API key handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "bad_key",
    ["api_key", "apikey", "OPENAI_API_KEY", "secret", "password", "token", "api-key"],
)
def test_global_config_rejects_api_key_fields(tmp_path: Path, bad_key: str) -> None:
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text(f"{bad_key}: sk-abc123\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_global_config_rejects_nested_api_key(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"embedding": {"api_key": "sk-secret"}})

    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_global_config_allows_key_env(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"embedding": {"key_env": "MY_EMBED_KEY", "max_retries": 1}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.embedding.key_env == "MY_EMBED_KEY"


def test_api_key_read_from_default_env(
    tmp_path: Path, missing_global: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv(DEFAULT_KEY_ENV, "sk-from-env")
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.embedding.api_key == "sk-from-env"


def test_api_key_read_from_custom_env(
    tmp_path: Path, missing_global: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_yaml(tmp_path / "noteseek.yaml", {"embedding": {"key_env": "ARK_API_KEY"}})
    monkeypatch.setenv("ARK_API_KEY", "ark-123")
    monkeypatch.setenv(DEFAULT_KEY_ENV, "ignored")
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.embedding.api_key == "ark-123"


def test_api_key_not_in_repr() -> None:
    assert "sk-hidden" not in repr(VectorCfg(api_key="sk-hidden"))


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------


def test_env_var_overrides_project_file(
    tmp_path: Path, missing_global: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_yaml(
        tmp_path / "noteseek.yaml",
        {"retrieval": {"mode": "vector"}, "embedding": {"model": "small", "base_url": "https://a"}},
    )
    monkeypatch.setenv("NOTESEEK_RETRIEVAL_MODE", "KEYWORD")
    monkeypatch.setenv("NOTESEEK_EMBEDDING_MODEL", "large")
    monkeypatch.setenv("NOTESEEK_EMBEDDING_BASE_URL", "https://b/")

    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.retrieval.mode == "keyword"
    assert cfg.embedding.model == "large"
    assert cfg.embedding.base_url == "https://b"


def test_env_var_absent_does_not_override(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(tmp_path / "noteseek.yaml", {"embedding": {"model": "small"}})
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.embedding.model == "small"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def test_unknown_mode_rejected(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(tmp_path / "noteseek.yaml", {"retrieval": {"mode": "hybrid"}})
    with pytest.raises(ConfigError, match="retrieval.mode"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


@pytest.mark.parametrize(
    ("section", "key"),
    [
        ("retrieval", "top_k"),
        ("retrieval", "max_queries"),
        ("retrieval", "concurrency"),
        ("corpus", "max_chunk_len"),
        ("embedding", "batch_size"),
    ],
)
def test_non_positive_values_rejected(
    tmp_path: Path, missing_global: Path, section: str, key: str
) -> None:
    _write_yaml(tmp_path / "noteseek.yaml", {section: {key: 0}})
    with pytest.raises(ConfigError, match=f"{section}.{key}"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


def test_negative_retries_rejected(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(tmp_path / "noteseek.yaml", {"embedding": {"max_retries": -1}})
    with pytest.raises(ConfigError, match="max_retries"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


def test_malformed_value_is_config_error(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(tmp_path / "noteseek.yaml", {"retrieval": {"top_k": "many"}})
    with pytest.raises(ConfigError, match="Invalid configuration value"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    """Unknown top-level key in config emits UserWarning (not error)."""
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"unknown_section": {"foo": "bar"}})

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)

    assert any("unknown_section" in str(w.message) for w in caught)
    assert isinstance(cfg, NoteseekConfig)


# ---------------------------------------------------------------------------
# VectorCfg
# ---------------------------------------------------------------------------


def test_require_complete_lists_missing_fields() -> None:
    cfg = VectorCfg(base_url="", model="m", api_key="")
    with pytest.raises(ConfigError, match="missing base_url, api_key"):
        cfg.require_complete()


def test_require_complete_passes_when_complete() -> None:
    VectorCfg(base_url="https://x", model="m", api_key="k").require_complete()


def test_cache_key_ignores_api_key() -> None:
    a = VectorCfg(base_url="https://x", model="m", api_key="k1")
    b = VectorCfg(base_url="https://x", model="m", api_key="k2")
    assert a.cache_key == b.cache_key == "openai_compatible|https://x|m"
