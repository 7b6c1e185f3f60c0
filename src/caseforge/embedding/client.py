"""Embedding provider adapter.

One call per text payload through ``litellm.aembedding``. LiteLLM's own retry
is disabled (``num_retries=0``); retries belong to the scheduler's RetryPolicy,
which needs every failure classified as transient or terminal first.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

import litellm

from caseforge.db.models import EmbeddingMetadata, Record
from caseforge.errors import ProviderError, TerminalProviderError, TransientProviderError

litellm.suppress_debug_info = True

logger = logging.getLogger(__name__)

# Status codes that are worth retrying: request timeout, rate limit, 5xx.
_TRANSIENT_STATUS = frozenset({408, 429})

_FIELD_LABELS: dict[str, str] = {
    "id": "ID",
    "module": "Module",
    "title": "Title",
    "description": "Description",
    "steps": "Steps",
    "expectedResults": "Expected Result",
    "acceptanceCriteria": "Acceptance Criteria",
    "priority": "Priority",
}


@dataclass
class Embedding:
    """A vector plus the accounting for the call that produced it."""

    vector: list[float]
    tokens: int
    cost: float
    model: str
    api_source: str

    def metadata(self, created_at: str | None = None) -> EmbeddingMetadata:
        return EmbeddingMetadata(
            model=self.model,
            tokens=self.tokens,
            cost=self.cost,
            api_source=self.api_source,
            created_at=created_at or datetime.now(timezone.utc).isoformat(),
        )


class Embedder(Protocol):
    """Anything that embeds one text payload (the client or a test double)."""

    async def embed(self, text: str) -> Embedding: ...


# ------------------------------------------------------------------
# Error classification
# ------------------------------------------------------------------


def _status_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_provider_error(exc: BaseException) -> ProviderError:
    """Map a provider/transport exception onto the transient/terminal split.

    429, 408, 5xx, timeouts and connection failures are transient; every other
    4xx is terminal. An error with no status at all is treated as transient.
    """
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return TransientProviderError(f"Embedding request timed out: {exc}", status=408)

    status = _status_of(exc)
    message = str(exc) or type(exc).__name__
    if status is None:
        return TransientProviderError(message)
    if status in _TRANSIENT_STATUS or status >= 500:
        return TransientProviderError(message, status=status)
    if 400 <= status < 500:
        return TerminalProviderError(message, status=status)
    return TransientProviderError(message, status=status)


# ------------------------------------------------------------------
# Embedding text
# ------------------------------------------------------------------


def render_embedding_text(record: Record, text_fields: list[str]) -> str:
    """Render *record* as ``Label: value`` lines over *text_fields*.

    Empty fields are skipped. Returns "" if every field is empty.
    """
    lines: list[str] = []
    for name in text_fields:
        value = record.get(name).strip()
        if value:
            label = _FIELD_LABELS.get(name, name[:1].upper() + name[1:])
            lines.append(f"{label}: {value}")
    return "\n".join(lines)


# ------------------------------------------------------------------
# Client
# ------------------------------------------------------------------


class EmbeddingClient:
    """Async embedding adapter. Holds configuration only, no per-call state.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Expected vector length; a mismatch is a terminal error.
        price_per_1k_tokens: Fallback USD price when LiteLLM cannot cost the call.
        timeout: Per-call timeout in seconds.
    """

    def __init__(
        self,
        model: str,
        dimensions: int | None = None,
        price_per_1k_tokens: float = 0.00002,
        timeout: float = 60.0,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self.price_per_1k_tokens = price_per_1k_tokens
        self.timeout = timeout

    @property
    def api_source(self) -> str:
        return self.model.split("/")[0].lower() if "/" in self.model else "openai"

    async def embed(self, text: str) -> Embedding:
        """Embed one text payload.

        Raises:
            TransientProviderError: rate limit, timeout, connection failure, 5xx.
            TerminalProviderError: empty input, auth failure, other 4xx, or a
                vector of the wrong dimension.
        """
        if not text.strip():
            raise TerminalProviderError("Cannot embed empty text", status=400)
        try:
            response = await asyncio.wait_for(
                litellm.aembedding(
                    model=self.model,
                    input=[text],
                    timeout=self.timeout,
                    num_retries=0,
                ),
                timeout=self.timeout,
            )
        except Exception as exc:
            raise classify_provider_error(exc) from exc

        vector = list(response.data[0]["embedding"])
        if self.dimensions is not None and len(vector) != self.dimensions:
            raise TerminalProviderError(
                f"Model '{self.model}' returned {len(vector)} dimensions, "
                f"expected {self.dimensions}"
            )
        tokens = _usage_tokens(response)
        return Embedding(
            vector=vector,
            tokens=tokens,
            cost=self._cost(response, tokens),
            model=self.model,
            api_source=self.api_source,
        )

    def _cost(self, response: object, tokens: int) -> float:
        try:
            cost = litellm.completion_cost(completion_response=response, model=self.model)
        except Exception as exc:
            logger.debug("No price for %s (%s); using fallback rate", self.model, exc)
            cost = None
        if isinstance(cost, (int, float)) and cost > 0:
            return float(cost)
        return tokens / 1000 * self.price_per_1k_tokens


def _usage_tokens(response: object) -> int:
    usage = getattr(response, "usage", None)
    if usage is None:
        return 0
    if isinstance(usage, dict):
        return int(usage.get("total_tokens") or usage.get("prompt_tokens") or 0)
    return int(getattr(usage, "total_tokens", 0) or getattr(usage, "prompt_tokens", 0) or 0)
