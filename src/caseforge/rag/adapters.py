"""Lexical and vector search adapters.

Each adapter issues one query against its index and returns ranked
Candidates carrying a method-native raw score. The two scales are not
comparable, so each candidate keeps its method and the name of its raw
score field (``lexicalScore`` or ``vectorScore``).

Field filters are applied as an exact-match post-filter over the ranked
candidates, not pushed into the index query: filter fields need not be part
of the index definition. When filtering, ten times as many candidates are
fetched so the filtered list can still fill ``num_candidates``.
"""

from __future__ import annotations

from dataclasses import dataclass

from caseforge.db.models import FuzzyConfig, Record
from caseforge.db.store import DocumentStore

LEXICAL = "lexical"
VECTOR = "vector"

SCORE_FIELDS: dict[str, str] = {LEXICAL: "lexicalScore", VECTOR: "vectorScore"}

_FILTER_OVERFETCH = 10


@dataclass
class Candidate:
    """One ranked hit from a single retrieval method.

    Attributes:
        record: The matched record.
        method: ``lexical`` or ``vector``.
        raw_score: Method-native score (higher is better).
        rank: 1-based position within this method's list.
        normalized: Min-max normalized score, set by the normalizer.
    """

    record: Record
    method: str
    raw_score: float
    rank: int
    normalized: float = 0.0

    @property
    def store_id(self) -> int:
        if self.record.store_id is None:
            raise ValueError(f"record '{self.record.record_id}' has no store id")
        return self.record.store_id

    @property
    def score_field(self) -> str:
        return SCORE_FIELDS[self.method]


def apply_filters(
    hits: list[tuple[Record, float]], filters: dict[str, str] | None
) -> list[tuple[Record, float]]:
    """Keep hits whose fields equal every filter value exactly."""
    if not filters:
        return hits
    return [
        (record, score)
        for record, score in hits
        if all(record.get(name) == value for name, value in filters.items())
    ]


def _to_candidates(
    hits: list[tuple[Record, float]], method: str, limit: int
) -> list[Candidate]:
    return [
        Candidate(record=record, method=method, raw_score=score, rank=i + 1)
        for i, (record, score) in enumerate(hits[:limit])
    ]


class LexicalSearchAdapter:
    """BM25 search over one lexical index.

    Args:
        store: Document store.
        collection: Collection to search.
        index_name: Name of the lexical search index.
        fields: Restrict matching to these indexed fields (None = all).
        fuzzy: Approximate term matching, or None for exact terms.
    """

    method = LEXICAL

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        index_name: str,
        fields: list[str] | None = None,
        fuzzy: FuzzyConfig | None = None,
    ) -> None:
        self.store = store
        self.collection = collection
        self.index_name = index_name
        self.fields = fields
        self.fuzzy = fuzzy

    async def search(
        self,
        query: str,
        num_candidates: int = 100,
        filters: dict[str, str] | None = None,
    ) -> list[Candidate]:
        """Return up to *num_candidates* candidates, best-first.

        Raises:
            PreconditionError: collection/documents/index missing.
        """
        fetch = num_candidates * _FILTER_OVERFETCH if filters else num_candidates
        hits = await self.store.lexical_search(
            self.collection,
            self.index_name,
            query,
            fields=self.fields,
            fuzzy=self.fuzzy,
            limit=fetch,
        )
        return _to_candidates(apply_filters(hits, filters), LEXICAL, num_candidates)


class VectorSearchAdapter:
    """Nearest-neighbour search over one vector index."""

    method = VECTOR

    def __init__(self, store: DocumentStore, collection: str, index_name: str) -> None:
        self.store = store
        self.collection = collection
        self.index_name = index_name

    async def check(self) -> None:
        """Raise PreconditionError if this adapter cannot run a query yet."""
        await self.store.validate(self.collection, self.index_name, require_documents=True)

    async def search(
        self,
        query_vector: list[float],
        num_candidates: int = 100,
        filters: dict[str, str] | None = None,
    ) -> list[Candidate]:
        """Return up to *num_candidates* candidates, best-first.

        Raises:
            PreconditionError: collection/documents/index missing.
        """
        fetch = num_candidates * _FILTER_OVERFETCH if filters else num_candidates
        hits = await self.store.vector_search(
            self.collection,
            self.index_name,
            query_vector,
            num_candidates=fetch,
            limit=fetch,
        )
        return _to_candidates(apply_filters(hits, filters), VECTOR, num_candidates)
