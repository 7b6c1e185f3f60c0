"""Domain models for the caseforge document store."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class EmbeddingMetadata:
    model: str
    tokens: int
    cost: float
    api_source: str
    created_at: str

    def to_json(self) -> str:
        return json.dumps(
            {
                "model": self.model,
                "cost": self.cost,
                "tokens": self.tokens,
                "apiSource": self.api_source,
                "createdAt": self.created_at,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> EmbeddingMetadata:
        data = json.loads(raw)
        return cls(
            model=data["model"],
            tokens=int(data["tokens"]),
            cost=float(data["cost"]),
            api_source=data["apiSource"],
            created_at=data["createdAt"],
        )


@dataclass
class Record:
    """A test case, user story or similar document.

    ``record_id`` is supplied by the caller and is not guaranteed unique;
    ``store_id`` is the store key, set once the record has been persisted.
    ``fields`` holds every named string field outside the core schema.
    """

    record_id: str
    title: str = ""
    fields: dict[str, str] = field(default_factory=dict)
    source_file: str = ""
    embedding: list[float] | None = None
    embedding_metadata: EmbeddingMetadata | None = None
    created_at: str | None = None
    store_id: int | None = None

    def get(self, name: str, default: str = "") -> str:
        """Return a field by name, looking at the core schema first."""
        if name == "id":
            return self.record_id
        if name == "title":
            return self.title
        if name == "sourceFile":
            return self.source_file
        return self.fields.get(name, default)

    def to_dict(self) -> dict[str, Any]:
        """Flat view of the record, as shown to API/CLI callers (no vector)."""
        out: dict[str, Any] = {"id": self.record_id, "title": self.title}
        out.update(self.fields)
        if self.source_file:
            out["sourceFile"] = self.source_file
        if self.created_at:
            out["createdAt"] = self.created_at
        return out


@dataclass
class SearchIndex:
    name: str
    collection: str
    kind: str                      # lexical | vector
    table_name: str
    fields: list[str] = field(default_factory=list)   # lexical only
    model: str | None = None                          # vector only
    dimensions: int | None = None                     # vector only


@dataclass(frozen=True)
class FuzzyConfig:
    """Approximate term matching for lexical search.

    FTS5 has no edit-distance matching; a fuzzy term is widened to a prefix
    query keeping ``max(prefix_length, len(term) - max_edits)`` characters.
    """

    max_edits: int = 1
    prefix_length: int = 3

    def widen(self, term: str) -> str:
        keep = max(self.prefix_length, len(term) - self.max_edits)
        return term[:keep]
