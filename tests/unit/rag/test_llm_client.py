"""Tests for the LiteLLM completion wrapper."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from caseforge.rag.llm_client import complete, validate_api_key


# ------------------------------------------------------------------
# validate_api_key
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="OPENAI_API_KEY"):
        validate_api_key("openai/text-embedding-3-small")


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    validate_api_key("openai/text-embedding-3-small")


def test_validate_api_key_voyage(monkeypatch):
    monkeypatch.delenv("VOYAGE_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="VOYAGE_API_KEY"):
        validate_api_key("voyage/voyage-3")


def test_validate_api_key_ollama_no_key_required():
    validate_api_key("ollama/nomic-embed-text")


def test_validate_api_key_bare_model_treated_as_openai(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError):
        validate_api_key("text-embedding-3-small")


# ------------------------------------------------------------------
# complete()
# ------------------------------------------------------------------


def _response(content, total_tokens=30):
    resp = MagicMock()
    resp.choices[0].message.content = content
    resp.usage.total_tokens = total_tokens
    return resp


def test_complete_returns_text_and_accounting():
    with (
        patch(
            "caseforge.rag.llm_client.litellm.acompletion",
            new=AsyncMock(return_value=_response("  Overview.  ")),
        ) as mock_call,
        patch("caseforge.rag.llm_client.litellm.completion_cost", return_value=0.0003),
    ):
        result = asyncio.run(complete("openai/gpt-4o-mini", [{"role": "user", "content": "Hi"}]))

    assert result.text == "Overview."
    assert result.tokens == 30
    assert result.cost == pytest.approx(0.0003)
    assert mock_call.call_args.kwargs["model"] == "openai/gpt-4o-mini"


def test_complete_none_content_and_unknown_cost():
    with (
        patch(
            "caseforge.rag.llm_client.litellm.acompletion",
            new=AsyncMock(return_value=_response(None)),
        ),
        patch(
            "caseforge.rag.llm_client.litellm.completion_cost",
            side_effect=Exception("no pricing"),
        ),
    ):
        result = asyncio.run(complete("openai/gpt-4o-mini", []))
    assert result.text == ""
    assert result.cost == 0.0


def test_complete_passes_params():
    with (
        patch(
            "caseforge.rag.llm_client.litellm.acompletion",
            new=AsyncMock(return_value=_response("ok")),
        ) as mock_call,
        patch("caseforge.rag.llm_client.litellm.completion_cost", return_value=0.0),
    ):
        asyncio.run(complete("openai/gpt-4o-mini", [], max_tokens=50, temperature=0.3))
    kwargs = mock_call.call_args.kwargs
    assert kwargs["max_tokens"] == 50
    assert kwargs["temperature"] == 0.3
