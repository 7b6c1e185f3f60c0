"""Tests for the caseforge config loader."""

from __future__ import annotations

import stat
import warnings
from pathlib import Path

import pytest
import yaml

from caseforge.config import (
    CaseforgeConfig,
    ConfigError,
    ensure_global_config,
    load_config,
    validate_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture
def missing_global(tmp_path: Path) -> Path:
    return tmp_path / "nonexistent" / "config.yaml"


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path, missing_global):
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)

    assert cfg.store.path == ".caseforge.db"
    assert cfg.store.collection == "testcases"
    assert cfg.embedding.model == "openai/text-embedding-3-small"
    assert cfg.embedding.dimensions == 1536
    assert cfg.ingestion.concurrency == 50
    assert cfg.ingestion.max_retries == 3
    assert cfg.retrieval.fusion == "weighted"
    assert cfg.retrieval.rrf_k == 60
    assert cfg.retrieval.dedup_threshold == 0.9
    assert cfg.jobs.retention_seconds == 3600.0


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_project_overrides_global(tmp_path):
    global_path = tmp_path / "home" / "config.yaml"
    _write_yaml(global_path, {"embedding": {"model": "cohere/embed-english-v3.0", "dimensions": 1024}})
    _write_yaml(tmp_path / "caseforge.yaml", {"embedding": {"dimensions": 512}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_path)

    assert cfg.embedding.model == "cohere/embed-english-v3.0"
    assert cfg.embedding.dimensions == 512


def test_retrieval_section_parsed(tmp_path, missing_global):
    _write_yaml(
        tmp_path / "caseforge.yaml",
        {
            "retrieval": {
                "fusion": "rrf",
                "limit": 3,
                "abbreviations": {"2fa": "two factor authentication"},
                "synonyms": {"login": "signin, logon"},
            },
            "store": {"lexical_fields": ["title", "steps"]},
        },
    )
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)

    assert cfg.retrieval.fusion == "rrf"
    assert cfg.retrieval.limit == 3
    assert cfg.retrieval.abbreviations == {"2fa": "two factor authentication"}
    assert cfg.retrieval.synonyms == {"login": ["signin", "logon"]}
    assert cfg.store.lexical_fields == ["title", "steps"]


def test_env_overrides(tmp_path, missing_global, monkeypatch):
    _write_yaml(tmp_path / "caseforge.yaml", {"store": {"path": "from-yaml.db"}})
    monkeypatch.setenv("CASEFORGE_DB", "/data/env.db")
    monkeypatch.setenv("CASEFORGE_EMBEDDING_MODEL", "voyage/voyage-3")

    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)

    assert cfg.store.path == "/data/env.db"
    assert cfg.embedding.model == "voyage/voyage-3"


def test_empty_yaml_uses_defaults(tmp_path, missing_global):
    (tmp_path / "caseforge.yaml").write_text("", encoding="utf-8")
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.retrieval.top_k == 10


def test_unknown_section_warns(tmp_path, missing_global):
    _write_yaml(tmp_path / "caseforge.yaml", {"chunkers": {"size": 1}})
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert any("chunkers" in str(w.message) for w in caught)


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("key", ["api_key", "openai_api_key", "token", "client_secret", "password"])
def test_global_config_rejects_api_keys(tmp_path, key):
    global_path = tmp_path / "home" / "config.yaml"
    _write_yaml(global_path, {"embedding": {key: "sk-123"}})
    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(project_dir=tmp_path, global_config_path=global_path)


def test_global_config_allows_token_counts(tmp_path):
    global_path = tmp_path / "home" / "config.yaml"
    _write_yaml(global_path, {"summary": {"max_tokens": 100}, "embedding": {"price_per_1k_tokens": 0.1}})
    cfg = load_config(project_dir=tmp_path, global_config_path=global_path)
    assert cfg.summary.max_tokens == 100


@pytest.mark.parametrize(
    "section, values",
    [
        ("ingestion", {"concurrency": 0}),
        ("ingestion", {"concurrency": 101}),
        ("ingestion", {"max_retries": 0}),
        ("ingestion", {"inter_batch_delay": 0.01, "min_delay": 0.05}),
        ("retrieval", {"fusion": "borda"}),
        ("retrieval", {"lexical_weight": -0.1}),
        ("retrieval", {"lexical_weight": 0, "vector_weight": 0}),
        ("retrieval", {"dedup_threshold": 1.5}),
        ("retrieval", {"num_candidates": 5, "top_k": 10}),
        ("jobs", {"max_active": 0}),
    ],
)
def test_out_of_range_values_rejected(tmp_path, missing_global, section, values):
    _write_yaml(tmp_path / "caseforge.yaml", {section: values})
    with pytest.raises(ConfigError):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


def test_validate_config_accepts_defaults():
    validate_config(CaseforgeConfig())


# ---------------------------------------------------------------------------
# ensure_global_config
# ---------------------------------------------------------------------------


def test_ensure_global_config_creates_file(tmp_path):
    target = tmp_path / "home" / ".caseforge" / "config.yaml"
    path = ensure_global_config(target)

    assert path == target
    assert target.exists()
    assert stat.S_IMODE(target.stat().st_mode) == 0o600
    data = yaml.safe_load(target.read_text(encoding="utf-8"))
    assert data["embedding"]["model"] == "openai/text-embedding-3-small"


def test_ensure_global_config_keeps_existing(tmp_path):
    target = tmp_path / "config.yaml"
    target.write_text("embedding:\n  model: custom/model\n", encoding="utf-8")
    ensure_global_config(target)
    assert "custom/model" in target.read_text(encoding="utf-8")


def test_generated_global_config_loads(tmp_path):
    target = ensure_global_config(tmp_path / "g" / "config.yaml")
    cfg = load_config(project_dir=tmp_path, global_config_path=target)
    assert cfg.summary.model == "openai/gpt-4o-mini"
