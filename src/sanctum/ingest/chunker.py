"""Fixed-window text chunker with overlap.

Token counting uses a 4-chars-per-token approximation; no external tokenizer
dependency is required. Window ends snap back to the nearest whitespace so
words are not cut in half.
"""

from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s")

# How far back (fraction of the window) a cut may move to find whitespace.
_SNAP_FRACTION = 0.2


class TextChunker:
    """Split text into overlapping windows.

    Args:
        chunk_size: Window size in tokens (≈ 4 characters each).
        overlap: Fraction of the window repeated at the start of the next one,
            so a sentence spanning a boundary appears whole in one chunk.
    """

    def __init__(self, chunk_size: int = 200, overlap: float = 0.25) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0.0 <= overlap < 1.0:
            raise ValueError("overlap must be in [0.0, 1.0)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    @staticmethod
    def count_tokens(text: str) -> int:
        """Approximate token count: 4 characters ≈ 1 token."""
        return max(1, len(text) // 4)

    def split(self, text: str) -> list[str]:
        """Return the stripped, non-empty windows of *text* in order."""
        if not text.strip():
            return []

        char_size = self.chunk_size * 4
        overlap_chars = int(char_size * self.overlap)

        segments: list[str] = []
        pos = 0
        length = len(text)

        while pos < length:
            end = min(pos + char_size, length)
            if end < length:
                end = self._snap(text, pos, end)
            segment = text[pos:end].strip()
            if segment:
                segments.append(segment)
            if end >= length:
                break
            pos = max(pos + 1, end - overlap_chars)

        return segments

    @staticmethod
    def _snap(text: str, start: int, end: int) -> int:
        floor = end - int((end - start) * _SNAP_FRACTION)
        for i in range(end, floor, -1):
            if _WHITESPACE_RE.match(text, i - 1):
                return i
        return end
