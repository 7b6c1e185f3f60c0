"""Hybrid searcher: BM25 (FTS5) + dense (sqlite-vec), fused and deduplicated.

Per query:
  1. Preprocess the query for the lexical branch (abbreviations, synonyms).
  2. Run both branches concurrently: lexical search on the processed query;
     vector precondition check → embed the raw query → vector search.
  3. Normalize each branch's raw scores, fuse, keep ``top_k``.
  4. Deduplicate by title, keep ``limit``.

A branch that fails its precondition check is dropped and the response is
flagged degraded. If both branches are unavailable the lexical precondition
error is raised, so a missing index never looks like an empty result.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from caseforge.config import CaseforgeConfig
from caseforge.db.models import FuzzyConfig
from caseforge.db.store import DocumentStore
from caseforge.embedding.client import Embedder, EmbeddingClient
from caseforge.errors import DegradedFusion, PreconditionError
from caseforge.rag.adapters import (
    LEXICAL,
    VECTOR,
    Candidate,
    LexicalSearchAdapter,
    VectorSearchAdapter,
)
from caseforge.rag.dedup import Duplicate, deduplicate
from caseforge.rag.fusion import FusedResult, FusionConfig, fuse
from caseforge.rag.normalizer import normalize
from caseforge.rag.preprocess import ProcessedQuery, QueryPreprocessor

logger = logging.getLogger(__name__)

FACET_FIELDS = ("module", "priority", "risk", "automationManual")


@dataclass
class SearchResponse:
    """Ranked, deduplicated results for one query.

    Attributes:
        query: The raw query.
        processed_query: The lexical rewrite of the query.
        results: Final results, best-first.
        duplicates: Results dropped as near-duplicates, with their similarity.
        fusion_method: Fusion policy used.
        degraded: True if a retrieval method was unavailable.
        degradation: Which methods were unavailable and why.
        query_tokens: Tokens spent embedding the query.
        query_cost: USD spent embedding the query.
    """

    query: str
    processed_query: ProcessedQuery
    results: list[FusedResult] = field(default_factory=list)
    duplicates: list[Duplicate[FusedResult]] = field(default_factory=list)
    fusion_method: str = "weighted"
    degraded: bool = False
    degradation: DegradedFusion | None = None
    query_tokens: int = 0
    query_cost: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "processedQuery": self.processed_query.text,
            "fusionMethod": self.fusion_method,
            "degraded": self.degraded,
            "unavailable": (
                {m: str(e) for m, e in self.degradation.unavailable.items()}
                if self.degradation
                else {}
            ),
            "results": [r.to_dict() for r in self.results],
            "duplicates": [
                {
                    "id": d.item.record.record_id,
                    "title": d.item.record.title,
                    "duplicateOf": d.duplicate_of.record.record_id,
                    "similarity": d.similarity,
                }
                for d in self.duplicates
            ],
            "queryTokens": self.query_tokens,
            "queryCost": self.query_cost,
        }


@dataclass
class _VectorBranch:
    candidates: list[Candidate]
    tokens: int
    cost: float


class HybridSearcher:
    """Run hybrid queries against one collection.

    Args:
        lexical: Lexical search adapter.
        vector: Vector search adapter.
        embedder: Embeds the query for the vector branch.
        preprocessor: Lexical query rewriter (identity if omitted).
        num_candidates: Candidates requested from each method.
        dedup_threshold: Default title-similarity threshold.
    """

    def __init__(
        self,
        lexical: LexicalSearchAdapter,
        vector: VectorSearchAdapter,
        embedder: Embedder,
        preprocessor: QueryPreprocessor | None = None,
        num_candidates: int = 100,
        dedup_threshold: float = 0.9,
    ) -> None:
        self.lexical = lexical
        self.vector = vector
        self.embedder = embedder
        self.preprocessor = preprocessor or QueryPreprocessor()
        self.num_candidates = num_candidates
        self.dedup_threshold = dedup_threshold

    @classmethod
    def from_config(
        cls,
        config: CaseforgeConfig,
        store: DocumentStore | None = None,
        embedder: Embedder | None = None,
    ) -> HybridSearcher:
        store = store or DocumentStore(config.store.path, timeout=config.store.timeout_seconds)
        ret = config.retrieval
        embedder = embedder or EmbeddingClient(
            model=config.embedding.model,
            dimensions=config.embedding.dimensions,
            price_per_1k_tokens=config.embedding.price_per_1k_tokens,
            timeout=config.embedding.timeout_seconds,
        )
        return cls(
            lexical=LexicalSearchAdapter(
                store,
                config.store.collection,
                config.store.lexical_index,
                fuzzy=FuzzyConfig(ret.fuzzy_max_edits, ret.fuzzy_prefix_length),
            ),
            vector=VectorSearchAdapter(store, config.store.collection, config.store.vector_index),
            embedder=embedder,
            preprocessor=QueryPreprocessor(
                ret.abbreviations, ret.synonyms, ret.max_synonym_variations
            ),
            num_candidates=ret.num_candidates,
            dedup_threshold=ret.dedup_threshold,
        )

    async def search(
        self,
        query: str,
        filters: dict[str, str] | None = None,
        fusion: FusionConfig | None = None,
        dedup_threshold: float | None = None,
    ) -> SearchResponse:
        """Answer *query* with a fused, deduplicated ranking.

        Raises:
            ValueError: If *query* is blank.
            PreconditionError: If neither retrieval method is available.
            ProviderError: If the query embedding fails.
        """
        if not query.strip():
            raise ValueError("query must not be empty")
        fusion = fusion or FusionConfig()
        threshold = self.dedup_threshold if dedup_threshold is None else dedup_threshold
        num_candidates = max(self.num_candidates, fusion.top_k)
        processed = self.preprocessor.process(query)

        lexical_out, vector_out = await asyncio.gather(
            self.lexical.search(processed.text, num_candidates, filters),
            self._vector_branch(query, num_candidates, filters),
            return_exceptions=True,
        )

        unavailable: dict[str, PreconditionError] = {}
        lists: dict[str, list[Candidate] | None] = {}
        tokens, cost = 0, 0.0
        for method, out in ((LEXICAL, lexical_out), (VECTOR, vector_out)):
            if isinstance(out, PreconditionError):
                unavailable[method] = out
                lists[method] = None
            elif isinstance(out, BaseException):
                raise out
            elif isinstance(out, _VectorBranch):
                lists[method] = normalize(out.candidates)
                tokens, cost = out.tokens, out.cost
            else:
                lists[method] = normalize(out)

        if len(unavailable) == len(lists):
            raise unavailable[LEXICAL]

        fused = fuse(lists, fusion)
        dedup = deduplicate(fused.results, threshold, lambda r: r.record.title)

        response = SearchResponse(
            query=query,
            processed_query=processed,
            results=dedup.kept[: fusion.limit],
            duplicates=dedup.duplicates,
            fusion_method=fusion.method,
            degraded=fused.degraded,
            query_tokens=tokens,
            query_cost=cost,
        )
        if unavailable:
            response.degradation = DegradedFusion(unavailable)
            logger.warning("%s", response.degradation)
        return response

    async def _vector_branch(
        self, query: str, num_candidates: int, filters: dict[str, str] | None
    ) -> _VectorBranch:
        await self.vector.check()
        embedding = await self.embedder.embed(query)
        candidates = await self.vector.search(embedding.vector, num_candidates, filters)
        return _VectorBranch(candidates=candidates, tokens=embedding.tokens, cost=embedding.cost)


async def facets(
    store: DocumentStore, collection: str, fields: tuple[str, ...] = FACET_FIELDS
) -> dict[str, list[str]]:
    """Distinct values of each filterable field in *collection*."""
    await store.validate(collection)
    values = await asyncio.gather(*(store.distinct(collection, f) for f in fields))
    return dict(zip(fields, values))
