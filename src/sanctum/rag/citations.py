"""Citation extraction from generated answers.

Answers cite context passages as ``[n]`` (the marker used in the prompt).
Models also write ``according to [report.pdf] (page 3)`` or a bare
``[report.pdf]``; those are matched to retrieved chunks by file name.
"""

from __future__ import annotations

import re

from sanctum.db.models import Citation
from sanctum.rag.prompt import RetrievedChunk

_MARKER_RE = re.compile(r"\[(\d{1,3})\]")
_ACCORDING_RE = re.compile(
    r"according to \[([^\]]+)\](?: \((?:chunk|page) (\d+)\))?", re.IGNORECASE
)
_FILE_RE = re.compile(r"\[([^\]]+\.(?:pdf|docx|txt|md|markdown|png|jpe?g))\]", re.IGNORECASE)


def extract_citations(answer: str, chunks: list[RetrievedChunk]) -> list[Citation]:
    """Return citations in order of first appearance, without duplicates."""
    found: list[Citation] = []
    seen: set[tuple] = set()

    def add(citation: Citation) -> None:
        key = (citation.file_name, citation.chunk_id)
        if key not in seen:
            seen.add(key)
            found.append(citation)

    mentions: list[tuple[int, Citation]] = []

    for m in _MARKER_RE.finditer(answer):
        n = int(m.group(1))
        if 1 <= n <= len(chunks):
            mentions.append((m.start(), _from_chunk(chunks[n - 1], n)))

    named: set[int] = set()
    for m in _ACCORDING_RE.finditer(answer):
        named.add(m.start(1) - 1)
        mentions.append((m.start(), _by_name(m.group(1), chunks)))
    for m in _FILE_RE.finditer(answer):
        if m.start() not in named:
            mentions.append((m.start(), _by_name(m.group(1), chunks)))

    for _, citation in sorted(mentions, key=lambda pair: pair[0]):
        add(citation)
    return found


def _from_chunk(chunk: RetrievedChunk, marker: int | None) -> Citation:
    return Citation(
        marker=marker,
        file_name=chunk.file_name,
        document_id=chunk.document_id,
        chunk_id=chunk.chunk_id,
        ordinal=chunk.ordinal,
    )


def _by_name(file_name: str, chunks: list[RetrievedChunk]) -> Citation:
    for i, chunk in enumerate(chunks, start=1):
        if chunk.file_name.lower() == file_name.strip().lower():
            return _from_chunk(chunk, i)
    return Citation(marker=None, file_name=file_name.strip())
