"""caseforge configuration: layered YAML plus environment overrides.

Later layers win:
  defaults < ~/.caseforge/config.yaml < ./caseforge.yaml < CASEFORGE_* env vars < CLI flags

The global file holds model choices only. Provider credentials come from the
environment, so any key in it that looks like a secret is rejected. YAML is
always parsed with yaml.safe_load().
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

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".caseforge"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "caseforge.yaml"

# Key names that look like credentials; rejected in the global file.
# Does NOT match legitimate config keys like max_tokens or price_per_1k_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # auth_token, access_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["store", "embedding", "ingestion", "retrieval", "jobs", "summary"]
)

_FUSION_METHODS: frozenset[str] = frozenset(["weighted", "reciprocal", "rrf"])

_DEFAULT_LEXICAL_FIELDS = ["id", "title", "description", "steps", "expectedResults", "module"]
_DEFAULT_TEXT_FIELDS = ["id", "module", "title", "description", "steps", "expectedResults"]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class StoreCfg:
    """Document store location and index names (caseforge.yaml: store:)."""

    path: str = ".caseforge.db"
    collection: str = "testcases"
    lexical_index: str = "lexical_index"
    vector_index: str = "vector_index"
    lexical_fields: list[str] = field(default_factory=lambda: list(_DEFAULT_LEXICAL_FIELDS))
    timeout_seconds: float = 30.0


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (caseforge.yaml: embedding:).

    Attributes:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Vector length produced by *model*.
        price_per_1k_tokens: Fallback USD price when the provider reports no cost.
        timeout_seconds: Per-call timeout; a timeout is retried as transient.
        text_fields: Record fields rendered into the embedding input text.
    """

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    price_per_1k_tokens: float = 0.00002
    timeout_seconds: float = 60.0
    text_fields: list[str] = field(default_factory=lambda: list(_DEFAULT_TEXT_FIELDS))


@dataclass
class IngestionCfg:
    """Bounded-concurrency ingestion tuning (caseforge.yaml: ingestion:)."""

    concurrency: int = 50
    max_retries: int = 3
    batch_size: int = 100
    write_batch_size: int = 200
    backoff_base: float = 1.0
    backoff_max: float = 10.0
    inter_batch_delay: float = 0.2
    min_delay: float = 0.05
    delay_step: float = 0.002


@dataclass
class RetrievalCfg:
    """Hybrid retrieval and fusion configuration (caseforge.yaml: retrieval:)."""

    fusion: str = "weighted"
    lexical_weight: float = 0.5
    vector_weight: float = 0.5
    top_k: int = 10
    limit: int = 5
    rrf_k: int = 60
    num_candidates: int = 100
    dedup_threshold: float = 0.9
    fuzzy_max_edits: int = 1
    fuzzy_prefix_length: int = 3
    max_synonym_variations: int = 3
    abbreviations: dict[str, str] = field(default_factory=dict)
    synonyms: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class JobsCfg:
    """Job tracker retention and backpressure (caseforge.yaml: jobs:)."""

    retention_seconds: float = 3600.0
    sweep_interval_seconds: float = 600.0
    max_active: int = 4


@dataclass
class SummaryCfg:
    """LLM summarization of search results (caseforge.yaml: summary:)."""

    model: str = "openai/gpt-4o-mini"
    max_tokens: int = 400


@dataclass
class CaseforgeConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    store: StoreCfg = field(default_factory=StoreCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    ingestion: IngestionCfg = field(default_factory=IngestionCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    jobs: JobsCfg = field(default_factory=JobsCfg)
    summary: SummaryCfg = field(default_factory=SummaryCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _secret_keys(obj: Any, prefix: str = "") -> list[str]:
    """Dotted paths of every nested key that looks like a credential."""
    if not isinstance(obj, dict):
        return []
    found: list[str] = []
    for key, value in obj.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if _API_KEY_RE.search(str(key)):
            found.append(dotted)
        found.extend(_secret_keys(value, dotted))
    return found


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if the global file carries anything credential-like."""
    offending = _secret_keys(data)
    if offending:
        first = offending[0]
        env_name = first.rsplit(".", 1)[-1].upper().replace("-", "_")
        raise ConfigError(
            f"'{source}' has a forbidden key '{first}'.\n"
            f"  Provider keys are read from the environment only.\n"
            f"  Delete it from {source.name} and run:  export {env_name}=<value>"
        )


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Ignoring unknown section '{key}' in '{source}'",
                UserWarning,
                stacklevel=4,
            )


def validate_config(cfg: CaseforgeConfig) -> None:
    """Raise ConfigError for out-of-range values."""
    ing = cfg.ingestion
    if not 1 <= ing.concurrency <= 100:
        raise ConfigError(f"ingestion.concurrency must be in 1..100, got {ing.concurrency}")
    if ing.max_retries < 1:
        raise ConfigError(f"ingestion.max_retries must be >= 1, got {ing.max_retries}")
    if ing.batch_size < 1 or ing.write_batch_size < 1:
        raise ConfigError("ingestion.batch_size and ingestion.write_batch_size must be >= 1")
    if ing.min_delay < 0 or ing.inter_batch_delay < ing.min_delay:
        raise ConfigError("ingestion.inter_batch_delay must be >= ingestion.min_delay >= 0")

    ret = cfg.retrieval
    if ret.fusion not in _FUSION_METHODS:
        raise ConfigError(
            f"retrieval.fusion must be one of {sorted(_FUSION_METHODS)}, got '{ret.fusion}'"
        )
    if ret.lexical_weight < 0 or ret.vector_weight < 0:
        raise ConfigError("retrieval weights must be >= 0")
    if ret.lexical_weight + ret.vector_weight <= 0:
        raise ConfigError("at least one retrieval weight must be > 0")
    if not 0.0 <= ret.dedup_threshold <= 1.0:
        raise ConfigError(f"retrieval.dedup_threshold must be in [0, 1], got {ret.dedup_threshold}")
    if ret.num_candidates < ret.top_k:
        raise ConfigError("retrieval.num_candidates must be >= retrieval.top_k")

    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if cfg.jobs.max_active < 1:
        raise ConfigError(f"jobs.max_active must be >= 1, got {cfg.jobs.max_active}")


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


def _str_list(raw: Any, default: list[str]) -> list[str]:
    if raw is None:
        return list(default)
    if isinstance(raw, str):
        return [s.strip() for s in raw.split(",") if s.strip()]
    return [str(s) for s in raw]


def _cfg_from_dict(data: dict[str, Any]) -> CaseforgeConfig:
    """Build a *CaseforgeConfig* from a merged raw YAML dict."""
    cfg = CaseforgeConfig()

    if "store" in data:
        s = data["store"] or {}
        cfg.store = StoreCfg(
            path=str(s.get("path", cfg.store.path)),
            collection=str(s.get("collection", cfg.store.collection)),
            lexical_index=str(s.get("lexical_index", cfg.store.lexical_index)),
            vector_index=str(s.get("vector_index", cfg.store.vector_index)),
            lexical_fields=_str_list(s.get("lexical_fields"), cfg.store.lexical_fields),
            timeout_seconds=float(s.get("timeout_seconds", cfg.store.timeout_seconds)),
        )

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            price_per_1k_tokens=float(
                e.get("price_per_1k_tokens", cfg.embedding.price_per_1k_tokens)
            ),
            timeout_seconds=float(e.get("timeout_seconds", cfg.embedding.timeout_seconds)),
            text_fields=_str_list(e.get("text_fields"), cfg.embedding.text_fields),
        )

    if "ingestion" in data:
        i = data["ingestion"] or {}
        d = cfg.ingestion
        cfg.ingestion = IngestionCfg(
            concurrency=int(i.get("concurrency", d.concurrency)),
            max_retries=int(i.get("max_retries", d.max_retries)),
            batch_size=int(i.get("batch_size", d.batch_size)),
            write_batch_size=int(i.get("write_batch_size", d.write_batch_size)),
            backoff_base=float(i.get("backoff_base", d.backoff_base)),
            backoff_max=float(i.get("backoff_max", d.backoff_max)),
            inter_batch_delay=float(i.get("inter_batch_delay", d.inter_batch_delay)),
            min_delay=float(i.get("min_delay", d.min_delay)),
            delay_step=float(i.get("delay_step", d.delay_step)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        d = cfg.retrieval
        cfg.retrieval = RetrievalCfg(
            fusion=str(r.get("fusion", d.fusion)),
            lexical_weight=float(r.get("lexical_weight", d.lexical_weight)),
            vector_weight=float(r.get("vector_weight", d.vector_weight)),
            top_k=int(r.get("top_k", d.top_k)),
            limit=int(r.get("limit", d.limit)),
            rrf_k=int(r.get("rrf_k", d.rrf_k)),
            num_candidates=int(r.get("num_candidates", d.num_candidates)),
            dedup_threshold=float(r.get("dedup_threshold", d.dedup_threshold)),
            fuzzy_max_edits=int(r.get("fuzzy_max_edits", d.fuzzy_max_edits)),
            fuzzy_prefix_length=int(r.get("fuzzy_prefix_length", d.fuzzy_prefix_length)),
            max_synonym_variations=int(
                r.get("max_synonym_variations", d.max_synonym_variations)
            ),
            abbreviations={
                str(k): str(v) for k, v in (r.get("abbreviations") or {}).items()
            },
            synonyms={
                str(k): _str_list(v, []) for k, v in (r.get("synonyms") or {}).items()
            },
        )

    if "jobs" in data:
        j = data["jobs"] or {}
        cfg.jobs = JobsCfg(
            retention_seconds=float(j.get("retention_seconds", cfg.jobs.retention_seconds)),
            sweep_interval_seconds=float(
                j.get("sweep_interval_seconds", cfg.jobs.sweep_interval_seconds)
            ),
            max_active=int(j.get("max_active", cfg.jobs.max_active)),
        )

    if "summary" in data:
        sm = data["summary"] or {}
        cfg.summary = SummaryCfg(
            model=str(sm.get("model", cfg.summary.model)),
            max_tokens=int(sm.get("max_tokens", cfg.summary.max_tokens)),
        )

    return cfg


def _apply_env_overrides(cfg: CaseforgeConfig) -> CaseforgeConfig:
    """Apply CASEFORGE_* environment variable overrides."""
    if model := os.environ.get("CASEFORGE_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("CASEFORGE_SUMMARY_MODEL"):
        cfg.summary.model = model
    if path := os.environ.get("CASEFORGE_DB"):
        cfg.store.path = path
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _read_layer(path: Path, *, forbid_secrets: bool = False) -> dict[str, Any]:
    """Parse one YAML layer; a missing or empty file is an empty layer."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{path}' must contain a mapping of sections, got {type(data).__name__}")
    if forbid_secrets:
        _check_no_api_keys(data, path)
    _warn_unknown_keys(data, path)
    return data


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> CaseforgeConfig:
    """Merge the global file, caseforge.yaml and CASEFORGE_* variables.

    ``--db`` and ``--collection`` are applied by the CLI on the returned object.

    Args:
        project_dir: Where to look for caseforge.yaml (current directory if None).
        global_config_path: Global file to read instead of ~/.caseforge/config.yaml.

    Raises:
        ConfigError: A secret-looking key in the global file, a malformed
            file, or a value outside its allowed range.
    """
    global_path = global_config_path or _GLOBAL_CONFIG_PATH
    project_path = (project_dir or Path.cwd()) / _PROJECT_CONFIG_NAME

    merged = _deep_merge(
        _read_layer(global_path, forbid_secrets=True),
        _read_layer(project_path),
    )
    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    validate_config(cfg)
    return cfg


_GLOBAL_TEMPLATE = """\
# caseforge defaults shared by every project on this machine.
# Provider keys are read from the environment only, e.g.
#   export OPENAI_API_KEY=sk-...

embedding:
  model: openai/text-embedding-3-small
  dimensions: 1536

summary:
  model: openai/gpt-4o-mini
"""


def ensure_global_config(global_config_path: Path | None = None) -> Path:
    """Write the default global config once; an existing file is left alone.

    The directory is created 0o700 and the file 0o600.
    """
    target = global_config_path or _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    if not target.exists():
        target.write_text(_GLOBAL_TEMPLATE, encoding="utf-8")
        target.chmod(0o600)
    return target
