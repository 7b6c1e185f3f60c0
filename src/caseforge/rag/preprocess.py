"""Query preprocessing for lexical search.

normalize → expand abbreviations → append synonyms (bounded). The vector
branch embeds the raw query; only the lexical query is rewritten.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_NON_WORD_RE = re.compile(r"[^\w\s-]+")
_SPACE_RE = re.compile(r"\s+")


@dataclass
class ProcessedQuery:
    original: str
    normalized: str
    text: str
    abbreviations: list[tuple[str, str]] = field(default_factory=list)
    synonyms: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.text != self.normalized


def normalize_query(query: str) -> str:
    """Case-fold, strip punctuation and collapse whitespace."""
    text = _NON_WORD_RE.sub(" ", query.casefold())
    return _SPACE_RE.sub(" ", text).strip()


class QueryPreprocessor:
    """Rewrite queries with configured abbreviations and synonyms.

    Args:
        abbreviations: ``{"abbr": "expansion"}``; whole-word matches are replaced.
        synonyms: ``{"term": ["alt", ...]}``; alternatives are appended.
        max_synonym_variations: Upper bound on appended synonyms per query.
    """

    def __init__(
        self,
        abbreviations: dict[str, str] | None = None,
        synonyms: dict[str, list[str]] | None = None,
        max_synonym_variations: int = 3,
    ) -> None:
        self.abbreviations = {k.casefold(): v.casefold() for k, v in (abbreviations or {}).items()}
        self.synonyms = {
            k.casefold(): [s.casefold() for s in v] for k, v in (synonyms or {}).items()
        }
        self.max_synonym_variations = max_synonym_variations

    def process(self, query: str) -> ProcessedQuery:
        normalized = normalize_query(query)
        tokens = normalized.split()

        applied: list[tuple[str, str]] = []
        expanded: list[str] = []
        for token in tokens:
            replacement = self.abbreviations.get(token)
            if replacement:
                applied.append((token, replacement))
                expanded.append(replacement)
            else:
                expanded.append(token)
        text = " ".join(expanded)

        present = set(text.split())
        added: list[str] = []
        for token in text.split():
            for alt in self.synonyms.get(token, []):
                if len(added) >= self.max_synonym_variations:
                    break
                if alt not in present:
                    added.append(alt)
                    present.add(alt)
        if added:
            text = f"{text} {' '.join(added)}"

        return ProcessedQuery(
            original=query,
            normalized=normalized,
            text=text,
            abbreviations=applied,
            synonyms=added,
        )
