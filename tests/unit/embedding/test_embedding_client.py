"""Tests for the embedding client and provider error classification."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from caseforge.embedding.client import (
    EmbeddingClient,
    classify_provider_error,
    render_embedding_text,
)
from caseforge.errors import TerminalProviderError, TransientProviderError
from conftest import make_record


def _response(vector, total_tokens=7):
    resp = MagicMock()
    resp.data = [{"embedding": vector}]
    resp.usage = {"total_tokens": total_tokens}
    return resp


class _StatusError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


# ------------------------------------------------------------------
# classify_provider_error
# ------------------------------------------------------------------


@pytest.mark.parametrize("status", [408, 429, 500, 502, 503])
def test_transient_statuses(status):
    err = classify_provider_error(_StatusError(status))
    assert isinstance(err, TransientProviderError)
    assert err.status == status


@pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 422])
def test_terminal_statuses(status):
    err = classify_provider_error(_StatusError(status))
    assert isinstance(err, TerminalProviderError)
    assert err.status == status


def test_timeout_is_transient():
    err = classify_provider_error(asyncio.TimeoutError())
    assert isinstance(err, TransientProviderError)
    assert err.status == 408


def test_connection_error_without_status_is_transient():
    assert isinstance(classify_provider_error(ConnectionError("reset")), TransientProviderError)


def test_status_read_from_response():
    exc = Exception("boom")
    exc.response = MagicMock(status_code=401)
    assert isinstance(classify_provider_error(exc), TerminalProviderError)


def test_provider_error_passes_through():
    original = TerminalProviderError("nope", status=400)
    assert classify_provider_error(original) is original


# ------------------------------------------------------------------
# render_embedding_text
# ------------------------------------------------------------------


def test_render_embedding_text_labels_and_skips_empty():
    rec = make_record(
        "TC-1",
        "Login works",
        module="Auth",
        description="",
        expectedResults="Dashboard shown",
    )
    text = render_embedding_text(rec, ["id", "module", "title", "description", "expectedResults"])
    assert text == (
        "ID: TC-1\nModule: Auth\nTitle: Login works\nExpected Result: Dashboard shown"
    )


def test_render_unknown_field_capitalized():
    rec = make_record("TC-1", risk="High")
    assert render_embedding_text(rec, ["risk"]) == "Risk: High"


# ------------------------------------------------------------------
# EmbeddingClient.embed
# ------------------------------------------------------------------


def test_embed_returns_vector_and_accounting():
    client = EmbeddingClient("openai/text-embedding-3-small", dimensions=3)
    with (
        patch(
            "caseforge.embedding.client.litellm.aembedding",
            new=AsyncMock(return_value=_response([0.1, 0.2, 0.3], total_tokens=12)),
        ) as mock_embed,
        patch("caseforge.embedding.client.litellm.completion_cost", return_value=0.00042),
    ):
        emb = asyncio.run(client.embed("ID: TC-1"))

    assert emb.vector == [0.1, 0.2, 0.3]
    assert emb.tokens == 12
    assert emb.cost == pytest.approx(0.00042)
    assert emb.api_source == "openai"
    kwargs = mock_embed.call_args.kwargs
    assert kwargs["input"] == ["ID: TC-1"]
    assert kwargs["num_retries"] == 0


def test_embed_cost_falls_back_to_price_table():
    client = EmbeddingClient("openai/text-embedding-3-small", price_per_1k_tokens=0.02)
    with (
        patch(
            "caseforge.embedding.client.litellm.aembedding",
            new=AsyncMock(return_value=_response([0.1], total_tokens=500)),
        ),
        patch(
            "caseforge.embedding.client.litellm.completion_cost",
            side_effect=Exception("unknown model"),
        ),
    ):
        emb = asyncio.run(client.embed("text"))
    assert emb.cost == pytest.approx(0.01)


def test_embed_empty_text_is_terminal():
    client = EmbeddingClient("openai/text-embedding-3-small")
    with patch("caseforge.embedding.client.litellm.aembedding", new=AsyncMock()) as mock_embed:
        with pytest.raises(TerminalProviderError):
            asyncio.run(client.embed("   "))
    mock_embed.assert_not_called()


def test_embed_dimension_mismatch_is_terminal():
    client = EmbeddingClient("openai/text-embedding-3-small", dimensions=1536)
    with (
        patch(
            "caseforge.embedding.client.litellm.aembedding",
            new=AsyncMock(return_value=_response([0.1, 0.2])),
        ),
        patch("caseforge.embedding.client.litellm.completion_cost", return_value=0.0),
    ):
        with pytest.raises(TerminalProviderError, match="expected 1536"):
            asyncio.run(client.embed("text"))


def test_embed_rate_limit_classified_transient():
    client = EmbeddingClient("openai/text-embedding-3-small")
    with patch(
        "caseforge.embedding.client.litellm.aembedding",
        new=AsyncMock(side_effect=_StatusError(429)),
    ):
        with pytest.raises(TransientProviderError) as exc:
            asyncio.run(client.embed("text"))
    assert exc.value.status == 429


def test_embed_timeout_classified_transient():
    client = EmbeddingClient("openai/text-embedding-3-small", timeout=0.01)

    async def _hang(**_kwargs):
        await asyncio.sleep(1)

    with patch("caseforge.embedding.client.litellm.aembedding", new=_hang):
        with pytest.raises(TransientProviderError, match="timed out"):
            asyncio.run(client.embed("text"))


def test_metadata_carries_call_accounting():
    client = EmbeddingClient("openai/text-embedding-3-small")
    with (
        patch(
            "caseforge.embedding.client.litellm.aembedding",
            new=AsyncMock(return_value=_response([0.5], total_tokens=3)),
        ),
        patch("caseforge.embedding.client.litellm.completion_cost", return_value=0.001),
    ):
        emb = asyncio.run(client.embed("text"))
    meta = emb.metadata(created_at="2026-01-01T00:00:00+00:00")
    assert meta.model == "openai/text-embedding-3-small"
    assert meta.tokens == 3
    assert meta.cost == pytest.approx(0.001)
    assert meta.created_at == "2026-01-01T00:00:00+00:00"
