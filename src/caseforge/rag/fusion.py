"""Fusion engine: merge per-method candidate lists into one ranking.

Policies (per candidate d, summed over the available methods m):

  weighted     fused(d) = Σ normalized_m(d) × w_m
  rrf          fused(d) = Σ 1 / (k + rank_m(d))          k = 60
  reciprocal   fused(d) = Σ (1 / rank_m(d)) × w_m

A candidate missing from a method contributes 0 for that method. Weights are
renormalized to sum to 1 over the methods available for the query, which
leaves the ranking unchanged and keeps degraded single-method results on the
same scale. Ties on the fused score are broken by store id ascending.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from caseforge.db.models import Record
from caseforge.rag.adapters import LEXICAL, SCORE_FIELDS, VECTOR, Candidate

FUSION_METHODS = ("weighted", "reciprocal", "rrf")


@dataclass(frozen=True)
class FusionConfig:
    """How to combine method rankings for one query.

    Attributes:
        method: ``weighted`` | ``reciprocal`` | ``rrf``.
        weights: Per-method weight (ignored by ``rrf``).
        top_k: Fused results kept before deduplication.
        limit: Results returned after deduplication.
        rrf_k: RRF rank constant.
    """

    method: str = "weighted"
    weights: dict[str, float] = field(
        default_factory=lambda: {LEXICAL: 0.5, VECTOR: 0.5}
    )
    top_k: int = 10
    limit: int = 5
    rrf_k: int = 60

    def __post_init__(self) -> None:
        if self.method not in FUSION_METHODS:
            raise ValueError(f"Unknown fusion method '{self.method}'; use one of {FUSION_METHODS}")
        if any(w < 0 for w in self.weights.values()):
            raise ValueError("fusion weights must be >= 0")
        if self.top_k < 1 or self.limit < 1:
            raise ValueError("top_k and limit must be >= 1")
        if self.rrf_k < 0:
            raise ValueError(f"rrf_k must be >= 0, got {self.rrf_k}")

    def weights_for(self, methods: list[str]) -> dict[str, float]:
        """Weights of *methods* renormalized to sum to 1."""
        raw = {m: self.weights.get(m, 0.0) for m in methods}
        total = sum(raw.values())
        if total <= 0:
            return {m: 1.0 / len(methods) for m in methods} if methods else {}
        return {m: w / total for m, w in raw.items()}


@dataclass
class FusedResult:
    """One record after fusion.

    Attributes:
        record: The record.
        score: Fused score.
        found_by: Methods whose candidate lists contained the record.
        raw_scores: Raw score per method.
        normalized: Normalized score per method.
        ranks: 1-based rank per method.
    """

    record: Record
    score: float
    found_by: tuple[str, ...]
    raw_scores: dict[str, float] = field(default_factory=dict)
    normalized: dict[str, float] = field(default_factory=dict)
    ranks: dict[str, int] = field(default_factory=dict)

    @property
    def store_id(self) -> int:
        return self.record.store_id if self.record.store_id is not None else -1

    def to_dict(self) -> dict[str, Any]:
        out = self.record.to_dict()
        for method, raw in self.raw_scores.items():
            out[SCORE_FIELDS[method]] = raw
        out["fusedScore"] = self.score
        out["foundBy"] = list(self.found_by)
        return out


@dataclass
class FusionResult:
    results: list[FusedResult]
    methods: tuple[str, ...]
    degraded: bool


def rank_by_raw_score(candidates: list[Candidate]) -> dict[int, int]:
    """Map store id → 1-based rank by raw score, ties by store id."""
    ordered = sorted(candidates, key=lambda c: (-c.raw_score, c.store_id))
    return {c.store_id: i + 1 for i, c in enumerate(ordered)}


def fuse(
    candidate_lists: dict[str, list[Candidate] | None],
    config: FusionConfig,
) -> FusionResult:
    """Fuse normalized per-method candidate lists.

    A method mapped to None is unavailable for this query; if exactly one
    method is available the result is flagged degraded and ranked by that
    method alone.

    Raises:
        ValueError: If no method is available.
    """
    available = [m for m, cands in candidate_lists.items() if cands is not None]
    if not available:
        raise ValueError("no retrieval method available for fusion")
    weights = config.weights_for(available)

    merged: dict[int, FusedResult] = {}
    for method in available:
        candidates = candidate_lists[method] or []
        ranks = rank_by_raw_score(candidates)
        for cand in candidates:
            entry = merged.get(cand.store_id)
            if entry is None:
                entry = FusedResult(record=cand.record, score=0.0, found_by=())
                merged[cand.store_id] = entry
            if method not in entry.found_by:
                entry.found_by = entry.found_by + (method,)
            rank = ranks[cand.store_id]
            entry.raw_scores[method] = cand.raw_score
            entry.normalized[method] = cand.normalized
            entry.ranks[method] = rank
            entry.score += _contribution(config, weights[method], cand.normalized, rank)

    results = sorted(merged.values(), key=lambda r: (-r.score, r.store_id))
    return FusionResult(
        results=results[: config.top_k],
        methods=tuple(available),
        degraded=len(available) < len(candidate_lists),
    )


def _contribution(config: FusionConfig, weight: float, normalized: float, rank: int) -> float:
    if config.method == "weighted":
        return normalized * weight
    if config.method == "rrf":
        return 1.0 / (config.rrf_k + rank)
    return (1.0 / rank) * weight
