"""Title-based deduplication of ranked results.

Similarity is token-set Jaccard over case-folded word tokens. Two empty
titles are identical (1.0); an empty title against a non-empty one is 0.0.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")

_TOKEN_RE = re.compile(r"\w+")


def title_tokens(title: str) -> frozenset[str]:
    return frozenset(_TOKEN_RE.findall(title.casefold()))


def jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


@dataclass
class Duplicate(Generic[T]):
    item: T
    duplicate_of: T
    similarity: float


@dataclass
class DedupResult(Generic[T]):
    kept: list[T] = field(default_factory=list)
    duplicates: list[Duplicate[T]] = field(default_factory=list)


def deduplicate(
    items: Sequence[T],
    threshold: float,
    title_of: Callable[[T], str],
) -> DedupResult[T]:
    """Drop items whose title is at least *threshold*-similar to an earlier kept item.

    Items are visited in rank order, so a duplicate always points at an item
    ranked above it. A duplicate is attributed to the most similar kept item
    (the earliest one on ties).
    """
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"threshold must be in [0, 1], got {threshold}")
    result: DedupResult[T] = DedupResult()
    seen: list[tuple[T, frozenset[str]]] = []
    for item in items:
        tokens = title_tokens(title_of(item))
        best: tuple[T, float] | None = None
        for kept, kept_tokens in seen:
            sim = jaccard(tokens, kept_tokens)
            if best is None or sim > best[1]:
                best = (kept, sim)
        if best is not None and best[1] >= threshold:
            result.duplicates.append(Duplicate(item=item, duplicate_of=best[0], similarity=best[1]))
        else:
            result.kept.append(item)
            seen.append((item, tokens))
    return result
