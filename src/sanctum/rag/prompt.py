"""Prompt assembly: retrieved context + conversation history + question.

Prompts use the ChatML layout the bundled Qwen models are trained on.
Token budget: the prompt must fit in ``context_window - reserve_tokens``
(the reserve is room for the answer). When it does not, the oldest history
turns are dropped first, then the lowest-ranked context chunks.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from sanctum.db.models import Message
from sanctum.ingest.chunker import TextChunker

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a private assistant answering questions about the user's own documents. "
    "Use the numbered context passages below when they are relevant and cite them "
    "inline with their number, for example [1] or [2]. If the passages do not contain "
    "the answer, say so and answer from general knowledge. Be concise."
)

CHAT_ONLY_PROMPT = (
    "You are a private assistant running entirely on the user's device. "
    "No documents are available, so answer from general knowledge. Be concise."
)

count_tokens = TextChunker.count_tokens


@dataclass
class RetrievedChunk:
    chunk_id: int
    document_id: int
    file_name: str
    ordinal: int
    text: str
    score: float = 0.0

    @property
    def label(self) -> str:
        return f"{self.file_name} (chunk {self.ordinal + 1})"


@dataclass
class AssembledPrompt:
    text: str
    messages: list[dict[str, str]] = field(default_factory=list)  # same turns, untemplated
    chunks: list[RetrievedChunk] = field(default_factory=list)  # in marker order
    history_used: int = 0
    history_dropped: int = 0
    chunks_dropped: int = 0
    total_tokens: int = 0


def build_prompt(
    question: str,
    history: Sequence[Message],
    chunks: Sequence[RetrievedChunk],
    *,
    context_window: int,
    reserve_tokens: int,
) -> AssembledPrompt:
    """Assemble a ChatML prompt that fits the model's context window.

    Args:
        question: The user's question for this turn.
        history: Prior messages, oldest first.
        chunks: Retrieved chunks, best first. Marker ``[n]`` refers to the
            n-th chunk that survives the budget.
        context_window: Model context size in tokens.
        reserve_tokens: Tokens kept free for the answer.
    """
    budget = max(0, context_window - min(reserve_tokens, context_window // 2))
    kept = list(chunks)

    def fixed_cost(selected: list[RetrievedChunk]) -> int:
        return count_tokens(_system_block(selected)) + count_tokens(_turn("user", question)) + 8

    while kept and fixed_cost(kept) > budget:
        kept.pop()
    chunks_dropped = len(chunks) - len(kept)
    remaining = budget - fixed_cost(kept)
    if remaining < 0:
        logger.warning("Question alone exceeds the context budget (%d tokens)", budget)

    turns: list[Message] = []
    for message in reversed(history):
        cost = count_tokens(_turn(message.role, message.content))
        if cost > remaining:
            break
        turns.append(message)
        remaining -= cost
    turns.reverse()
    history_dropped = len(history) - len(turns)
    if history_dropped or chunks_dropped:
        logger.debug(
            "Prompt budget %d: dropped %d history turn(s), %d chunk(s)",
            budget, history_dropped, chunks_dropped,
        )

    messages = [{"role": "system", "content": _system_content(kept)}]
    messages += [{"role": m.role, "content": m.content.strip()} for m in turns]
    messages.append({"role": "user", "content": question.strip()})
    text = "".join(_turn(m["role"], m["content"]) for m in messages) + "<|im_start|>assistant\n"
    return AssembledPrompt(
        text=text,
        messages=messages,
        chunks=kept,
        history_used=len(turns),
        history_dropped=history_dropped,
        chunks_dropped=chunks_dropped,
        total_tokens=count_tokens(text),
    )


# ------------------------------------------------------------------
# Blocks
# ------------------------------------------------------------------


def _system_block(chunks: Sequence[RetrievedChunk]) -> str:
    return _turn("system", _system_content(chunks))


def _system_content(chunks: Sequence[RetrievedChunk]) -> str:
    if not chunks:
        return CHAT_ONLY_PROMPT
    context = "\n\n".join(
        f"[{i}] {chunk.label}\n{chunk.text.strip()}" for i, chunk in enumerate(chunks, start=1)
    )
    return f"{SYSTEM_PROMPT}\n\nContext:\n{context}"


def _turn(role: str, content: str) -> str:
    return f"<|im_start|>{role}\n{content.strip()}<|im_end|>\n"
