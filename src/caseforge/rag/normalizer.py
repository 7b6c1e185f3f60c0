"""Per-query, per-method min-max score normalization."""

from __future__ import annotations

from dataclasses import replace

from caseforge.rag.adapters import Candidate


def min_max(scores: list[float]) -> list[float]:
    """Map *scores* onto [0, 1]. If every score is equal, each maps to 1.0."""
    if not scores:
        return []
    low, high = min(scores), max(scores)
    if high == low:
        return [1.0] * len(scores)
    span = high - low
    return [(s - low) / span for s in scores]


def normalize(candidates: list[Candidate]) -> list[Candidate]:
    """Return copies of *candidates* with ``normalized`` set.

    All candidates must come from the same method and the same query.
    """
    methods = {c.method for c in candidates}
    if len(methods) > 1:
        raise ValueError(f"cannot normalize across methods: {sorted(methods)}")
    values = min_max([c.raw_score for c in candidates])
    return [replace(c, normalized=v) for c, v in zip(candidates, values)]
