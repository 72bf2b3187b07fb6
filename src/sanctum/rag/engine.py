"""Inference engine adapters.

An engine loads a model once per (file, execution parameters) and then
produces text pieces lazily. ``generate`` receives a ``should_stop`` callable
and checks it between pieces, so a cancelled session stops within one token.
In-process engines take the ChatML ``prompt`` text; server-backed engines take
the same turns as ``messages`` and template them server-side.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from sanctum.config import GenerationCfg
from sanctum.errors import GenerationFailed
from sanctum.hardware import ExecutionParameters
from sanctum.rag import llm_client

logger = logging.getLogger(__name__)

# ChatML control tokens the model may emit to end (or wrongly start) a turn.
STOP_SEQUENCES = ["<|im_end|>", "<|endoftext|>", "<|im_start|>"]


class InferenceEngine(Protocol):
    requires_model_file: bool

    def load(self, model_path: Path | None, params: ExecutionParameters) -> Any: ...

    def generate(
        self,
        handle: Any,
        prompt: str,
        *,
        max_tokens: int,
        should_stop: Callable[[], bool],
        messages: list[dict[str, str]] | None = None,
    ) -> Iterator[str]: ...


# ---------------------------------------------------------------------------
# llama.cpp (in-process GGUF)
# ---------------------------------------------------------------------------


class LlamaCppEngine:
    """Runs GGUF models in-process through llama-cpp-python.

    Only one model stays resident; loading another releases the previous one.
    """

    requires_model_file = True

    def __init__(self, temperature: float = 0.7) -> None:
        self.temperature = temperature
        self._lock = threading.Lock()
        self._loaded_key: tuple[str, ExecutionParameters] | None = None
        self._loaded: Any = None

    def load(self, model_path: Path | None, params: ExecutionParameters) -> Any:
        if model_path is None:
            raise GenerationFailed("llama.cpp needs a downloaded model file")
        key = (str(model_path), params)
        with self._lock:
            if self._loaded_key == key:
                return self._loaded
            try:
                from llama_cpp import Llama
            except ImportError as exc:
                raise GenerationFailed(
                    "llama-cpp-python is not installed",
                    suggestion="Install it with  pip install 'sanctum[llama]'  "
                    "or set generation.engine: litellm.",
                ) from exc
            self._loaded = None
            logger.info(
                "Loading %s (gpu_layers=%d, n_ctx=%d, threads=%d)",
                model_path.name, params.gpu_layers, params.context_window, params.thread_count,
            )
            try:
                self._loaded = Llama(
                    model_path=str(model_path),
                    n_gpu_layers=params.gpu_layers,
                    n_ctx=params.context_window,
                    n_threads=params.thread_count,
                    verbose=False,
                )
            except (ValueError, RuntimeError, OSError) as exc:
                self._loaded_key = None
                raise GenerationFailed(f"Could not load model '{model_path.name}': {exc}") from exc
            self._loaded_key = key
            return self._loaded

    def generate(
        self,
        handle: Any,
        prompt: str,
        *,
        max_tokens: int,
        should_stop: Callable[[], bool],
        messages: list[dict[str, str]] | None = None,
    ) -> Iterator[str]:
        stream = handle.create_completion(
            prompt,
            max_tokens=max_tokens,
            temperature=self.temperature,
            stop=STOP_SEQUENCES,
            stream=True,
        )
        try:
            for part in stream:
                if should_stop():
                    break
                text = part["choices"][0].get("text", "")
                if text:
                    yield text
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()


# ---------------------------------------------------------------------------
# LiteLLM → local ollama server
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LiteLLMHandle:
    model: str
    options: dict = field(default_factory=dict)


class LiteLLMEngine:
    """Streams from a local model server (ollama) through LiteLLM.

    The server manages its own model files, so no GGUF path is required;
    execution parameters map onto ollama's ``num_gpu`` / ``num_ctx`` /
    ``num_thread`` options.
    """

    requires_model_file = False

    def __init__(
        self,
        model: str = "ollama/qwen2.5:7b-instruct",
        *,
        api_base: str | None = None,
        temperature: float = 0.7,
    ) -> None:
        llm_client.ensure_local(model)
        self.model = model
        self.api_base = api_base
        self.temperature = temperature

    def load(self, model_path: Path | None, params: ExecutionParameters) -> LiteLLMHandle:
        return LiteLLMHandle(
            model=self.model,
            options={
                "num_ctx": params.context_window,
                "num_gpu": params.gpu_layers,
                "num_thread": params.thread_count,
            },
        )

    def generate(
        self,
        handle: LiteLLMHandle,
        prompt: str,
        *,
        max_tokens: int,
        should_stop: Callable[[], bool],
        messages: list[dict[str, str]] | None = None,
    ) -> Iterator[str]:
        # the server applies its own chat template, so send the turns untemplated
        stream = llm_client.stream_complete(
            handle.model,
            messages or [{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=self.temperature,
            api_base=self.api_base,
            options=handle.options,
        )
        try:
            for piece in stream:
                if should_stop():
                    break
                yield piece
        finally:
            stream.close()


def build_engine(cfg: GenerationCfg) -> InferenceEngine:
    """Create the engine named by ``generation.engine``."""
    if cfg.engine == "litellm":
        return LiteLLMEngine(cfg.litellm_model, api_base=cfg.api_base, temperature=cfg.temperature)
    return LlamaCppEngine(temperature=cfg.temperature)
