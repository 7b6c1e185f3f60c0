"""LiteLLM chat completions for result summaries.

validate_api_key() is the single place that maps a model's provider prefix
to its credential variable; the CLI calls it before any provider request.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import litellm

logger = logging.getLogger(__name__)

litellm.suppress_debug_info = True

# provider prefix → env var holding its key (None: local, no key)
_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,
    "ollama_chat": None,
}


@dataclass
class Completion:
    text: str
    tokens: int = 0
    cost: float = 0.0


def validate_api_key(model: str) -> None:
    """Raise EnvironmentError if *model*'s provider key is not exported.

    A model without a ``provider/`` prefix is treated as OpenAI. Providers
    missing from the table are not checked; LiteLLM reports those itself.
    """
    provider = model.split("/", 1)[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)
    if env_var and not os.getenv(env_var):
        raise EnvironmentError(
            f"No API key for provider '{provider}': {env_var} is not set"
        )


def _completion_cost(response: object, model: str) -> float:
    try:
        cost = litellm.completion_cost(completion_response=response)
    except Exception as exc:
        logger.debug("No price for %s (%s); reporting cost 0", model, exc)
        return 0.0
    return float(cost) if isinstance(cost, (int, float)) else 0.0


async def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 400,
    temperature: float = 0.0,
    num_retries: int = 2,
    timeout: float = 120.0,
) -> Completion:
    """One chat completion with its token usage and USD cost.

    Provider errors propagate after LiteLLM's own *num_retries* attempts.
    """
    response = await litellm.acompletion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
        timeout=timeout,
    )
    text = response.choices[0].message.content or ""
    usage = getattr(response, "usage", None)
    tokens = int(getattr(usage, "total_tokens", 0) or 0) if usage is not None else 0
    return Completion(text=text.strip(), tokens=tokens, cost=_completion_cost(response, model))
