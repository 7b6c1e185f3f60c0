"""LLM overview of the top search results.

A summary failure never aborts a search: the error text is returned in the
Summary and the caller decides how to show it.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from caseforge.rag.fusion import FusedResult
from caseforge.rag.llm_client import complete

logger = logging.getLogger(__name__)

_SUMMARY_PROMPT = """\
You are a QA assistant. A tester searched the test repository for:

  {query}

Below are the top matching test cases. In at most {max_tokens} tokens, summarise \
what they cover, point out overlapping or redundant cases, and name any obvious \
gap in coverage for the query. Refer to test cases by their ID.

{results}

Summary:"""

_MAX_RESULTS = 10
_MAX_FIELD_CHARS = 500


@dataclass
class Summary:
    text: str = ""
    tokens: int = 0
    cost: float = 0.0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def render_results(results: Sequence[FusedResult]) -> str:
    """Render results as numbered blocks for the prompt."""
    blocks: list[str] = []
    for i, res in enumerate(results[:_MAX_RESULTS], start=1):
        rec = res.record
        lines = [f"{i}. [{rec.record_id}] {rec.title}"]
        for name in ("module", "description", "steps", "expectedResults"):
            value = rec.get(name).strip()
            if value:
                lines.append(f"   {name}: {value[:_MAX_FIELD_CHARS]}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


async def summarize(
    query: str,
    results: Sequence[FusedResult],
    model: str,
    max_tokens: int = 400,
) -> Summary:
    """Summarize *results* for *query*. Never raises for provider failures."""
    if not results:
        return Summary(error="no results to summarize")
    prompt = _SUMMARY_PROMPT.format(
        query=query, max_tokens=max_tokens, results=render_results(results)
    )
    try:
        completion = await complete(
            model, [{"role": "user", "content": prompt}], max_tokens=max_tokens
        )
    except Exception as exc:
        logger.warning("Summary generation failed: %s", exc)
        return Summary(error=str(exc) or type(exc).__name__)
    return Summary(text=completion.text, tokens=completion.tokens, cost=completion.cost)
