"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from caseforge.db.connection import Database
from caseforge.db.models import EmbeddingMetadata, Record
from caseforge.db.schema import initialize
from caseforge.db.store import DocumentStore
from caseforge.embedding.client import Embedding
from caseforge.errors import TerminalProviderError, TransientProviderError

COLLECTION = "testcases"
LEXICAL_FIELDS = ["id", "title", "description", "module"]
DIMS = 3


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    """Never read the developer's ~/.caseforge/config.yaml or CASEFORGE_* vars."""
    monkeypatch.setattr(
        "caseforge.config._GLOBAL_CONFIG_PATH", tmp_path / "global" / "config.yaml"
    )
    for var in ("CASEFORGE_EMBEDDING_MODEL", "CASEFORGE_SUMMARY_MODEL", "CASEFORGE_DB"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".caseforge.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / ".caseforge.db"


@pytest.fixture
def store(db_path) -> DocumentStore:
    """Store with the test collection, a lexical index and a 3-dim vector index."""
    s = DocumentStore(db_path, timeout=10.0)
    s.provision(
        COLLECTION,
        lexical_index=("lexical_index", LEXICAL_FIELDS),
        vector_index=("vector_index", "test/embed", DIMS),
    )
    return s


def make_record(record_id: str, title: str = "", vector: list[float] | None = None, **fields):
    """Record with optional embedding (metadata attached together)."""
    meta = None
    if vector is not None:
        meta = EmbeddingMetadata(
            model="test/embed",
            tokens=5,
            cost=0.0001,
            api_source="test",
            created_at="2026-01-01T00:00:00+00:00",
        )
    return Record(
        record_id=record_id,
        title=title,
        fields={k: str(v) for k, v in fields.items()},
        source_file="cases.json",
        embedding=vector,
        embedding_metadata=meta,
    )


class FakeEmbedder:
    """Deterministic async embedder.

    ``vectors`` maps a substring of the input text to the vector returned;
    the first match wins. ``failures`` maps a substring to a list of
    exceptions raised on successive calls before succeeding.
    """

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        failures: dict[str, list[Exception]] | None = None,
        default: list[float] | None = None,
        tokens: int = 10,
        cost: float = 0.001,
    ) -> None:
        self.vectors = vectors or {}
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.default = default or [1.0, 0.0, 0.0]
        self.tokens = tokens
        self.cost = cost
        self.calls: list[str] = []

    async def embed(self, text: str) -> Embedding:
        self.calls.append(text)
        for key, errors in self.failures.items():
            if key in text and errors:
                raise errors.pop(0)
        vector = next((v for k, v in self.vectors.items() if k in text), self.default)
        return Embedding(
            vector=list(vector),
            tokens=self.tokens,
            cost=self.cost,
            model="test/embed",
            api_source="test",
        )


def transient(msg: str = "rate limited") -> TransientProviderError:
    return TransientProviderError(msg, status=429)


def terminal(msg: str = "bad request") -> TerminalProviderError:
    return TerminalProviderError(msg, status=400)


async def no_sleep(_seconds: float) -> None:
    return None
