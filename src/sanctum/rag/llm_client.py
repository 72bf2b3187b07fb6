"""LiteLLM wrappers for local providers (ollama) with retry and backoff.

Every embedding and LiteLLM-backed generation call routes through this
module. LiteLLM's built-in retry is used for embeddings (num_retries=3);
streaming completions are not retried once tokens have been produced.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

logger = logging.getLogger(__name__)

# Providers that run on this machine and need no API key.
LOCAL_PROVIDERS: frozenset[str] = frozenset(["ollama", "ollama_chat", "llamafile", "lm_studio"])


def provider_of(model: str) -> str:
    return model.split("/", 1)[0].lower() if "/" in model else ""


def ensure_local(model: str) -> None:
    """Refuse models that would send document text off the machine.

    Raises:
        ValueError: If *model* does not use a local provider.
    """
    provider = provider_of(model)
    if provider not in LOCAL_PROVIDERS:
        raise ValueError(
            f"Model '{model}' is not served locally. "
            f"Use one of the local providers: {', '.join(sorted(LOCAL_PROVIDERS))}."
        )


def embed(
    model: str, text: str, *, api_base: str | None = None, num_retries: int = 3
) -> list[float]:
    """Call litellm.embedding() with retry/backoff. Returns the embedding vector."""
    response = litellm.embedding(
        model=model,
        input=[text],
        api_base=api_base,
        num_retries=num_retries,
    )
    return response.data[0]["embedding"]


def stream_complete(
    model: str,
    messages: list[dict[str, str]],
    *,
    max_tokens: int = 1_024,
    temperature: float = 0.7,
    api_base: str | None = None,
    options: dict | None = None,
) -> Iterator[str]:
    """Stream a chat completion for *messages*, yielding text pieces.

    *messages* are plain role/content turns; the provider applies the
    model's chat template.

    Args:
        options: Provider-specific knobs passed through (e.g. ollama's
            ``num_ctx``, ``num_gpu``, ``num_thread``).
    """
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        api_base=api_base,
        stream=True,
        **(options or {}),
    )
    for part in response:
        delta = part.choices[0].delta
        content = getattr(delta, "content", None)
        if content:
            yield content
