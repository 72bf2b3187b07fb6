"""Output hygiene for streamed model text."""

from __future__ import annotations

import re

CONTROL_TOKENS = ("<|im_start|>", "<|im_end|>", "<|endoftext|>")

_CONTROL_RE = re.compile("|".join(re.escape(t) for t in CONTROL_TOKENS))
_ROLE_ECHO_RE = re.compile(r"^\s*(?:assistant|system|user)\s*\n", re.IGNORECASE)


def split_at_control(piece: str) -> tuple[str, bool]:
    """Return the part of *piece* before any control token, and whether one was hit."""
    match = _CONTROL_RE.search(piece)
    if match is None:
        return piece, False
    return piece[: match.start()], True


def clean_response(text: str) -> str:
    """Strip control tokens, an echoed role header, and surrounding whitespace."""
    text = _CONTROL_RE.sub("", text)
    text = _ROLE_ECHO_RE.sub("", text, count=1)
    return text.strip()


class RepetitionGuard:
    """Detects a generation stuck repeating the same passage.

    The tail of the text is checked for a block of ``min_period`` to
    ``max_period`` characters repeated ``repeats`` times back to back.
    """

    def __init__(
        self,
        min_period: int = 16,
        max_period: int = 400,
        repeats: int = 3,
        check_every: int = 8,
    ) -> None:
        self.min_period = min_period
        self.max_period = max_period
        self.repeats = repeats
        self.check_every = check_every
        self._calls = 0

    def looping(self, text: str) -> bool:
        self._calls += 1
        if self._calls % self.check_every:
            return False
        longest = min(self.max_period, len(text) // self.repeats)
        for period in range(self.min_period, longest + 1):
            block = text[-period:]
            if not block.strip():
                continue
            if all(
                text[-period * (i + 1) : len(text) - period * i] == block
                for i in range(1, self.repeats)
            ):
                return True
        return False
