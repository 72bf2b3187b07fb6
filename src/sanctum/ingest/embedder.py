"""Embedding engine adapters."""

from __future__ import annotations

from typing import Protocol

from sanctum.rag import llm_client


class Embedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


class LiteLLMEmbedder:
    """Embeddings from a local model server through LiteLLM (default: ollama)."""

    def __init__(
        self,
        model: str = "ollama/nomic-embed-text",
        *,
        api_base: str | None = None,
        num_retries: int = 3,
    ) -> None:
        llm_client.ensure_local(model)
        self.model = model
        self.api_base = api_base
        self.num_retries = num_retries

    def embed(self, text: str) -> list[float]:
        return llm_client.embed(
            self.model, text, api_base=self.api_base, num_retries=self.num_retries
        )
