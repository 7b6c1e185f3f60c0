"""Tests for caseforge rich error messages."""

from __future__ import annotations

import pytest

from caseforge.cli.errors import (
    err_config,
    err_input_file,
    err_job_limit,
    err_no_api_key,
    err_no_db,
    err_precondition,
    err_provider,
    warn_degraded,
)
from caseforge.errors import PreconditionError, TerminalProviderError, TransientProviderError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _has_action(msg: str) -> bool:
    """Every error must name an actionable instruction."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "set:", "use:", "fix ", "retry", "check ", "wait "])


# ---------------------------------------------------------------------------
# err_no_api_key
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "provider,expected_env",
    [
        ("openai", "OPENAI_API_KEY"),
        ("cohere", "COHERE_API_KEY"),
        ("voyage", "VOYAGE_API_KEY"),
        ("myprovider", "MYPROVIDER_API_KEY"),
    ],
)
def test_err_no_api_key_names_env_var(provider: str, expected_env: str) -> None:
    msg = err_no_api_key(provider)
    assert expected_env in msg
    assert provider in msg
    assert _has_action(msg)


# ---------------------------------------------------------------------------
# err_no_db / err_precondition
# ---------------------------------------------------------------------------


def test_err_no_db_contains_path() -> None:
    msg = err_no_db("data/store.db")
    assert "data/store.db" in msg
    assert "caseforge init" in msg


def test_err_precondition_database() -> None:
    exc = PreconditionError(PreconditionError.DATABASE, "x.db", "No database at 'x.db'")
    msg = err_precondition(exc)
    assert "x.db" in msg
    assert "caseforge init" in msg


def test_err_precondition_collection() -> None:
    exc = PreconditionError(PreconditionError.COLLECTION, "stories", "Collection 'stories' not found")
    msg = err_precondition(exc)
    assert "Collection 'stories' not found" in msg
    assert "caseforge init --collection stories" in msg


def test_err_precondition_documents() -> None:
    exc = PreconditionError(PreconditionError.DOCUMENTS, "testcases", "Collection 'testcases' is empty")
    msg = err_precondition(exc)
    assert "caseforge ingest" in msg


def test_err_precondition_index() -> None:
    exc = PreconditionError(PreconditionError.INDEX, "vector_index", "Search index 'vector_index' not found")
    msg = err_precondition(exc)
    assert "vector_index" in msg
    assert "caseforge init" in msg
    assert _has_action(msg)


# ---------------------------------------------------------------------------
# err_provider
# ---------------------------------------------------------------------------


def test_err_provider_transient_suggests_retry() -> None:
    msg = err_provider(TransientProviderError("rate limited", status=429))
    assert "HTTP 429" in msg
    assert "rate limited" in msg
    assert "retry" in msg.lower()


def test_err_provider_terminal_points_at_config() -> None:
    msg = err_provider(TerminalProviderError("unknown model"))
    assert "HTTP" not in msg
    assert "unknown model" in msg
    assert "api key" in msg.lower()


# ---------------------------------------------------------------------------
# Other messages
# ---------------------------------------------------------------------------


def test_err_config_names_files() -> None:
    msg = err_config("ingestion.concurrency must be between 1 and 100")
    assert "ingestion.concurrency" in msg
    assert "caseforge.yaml" in msg


def test_err_input_file() -> None:
    msg = err_input_file("cases.json", "expected a JSON array")
    assert "cases.json" in msg
    assert "'id'" in msg


def test_err_job_limit() -> None:
    msg = err_job_limit("3 ingestion jobs already running")
    assert "jobs.max_active" in msg
    assert _has_action(msg)


def test_warn_degraded_lists_methods_sorted() -> None:
    msg = warn_degraded({"vector": "no vector index", "lexical": "no lexical index"})
    assert "degraded" in msg
    assert msg.index("lexical: no lexical index") < msg.index("vector: no vector index")
    assert "caseforge init" in msg
