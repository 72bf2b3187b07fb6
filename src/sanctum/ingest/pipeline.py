"""Ingestion pipeline: one file in, one Document (with chunks and index entries) out.

Either the whole document lands (row, every chunk, every index entry) or
nothing does: parse and embedding failures happen before anything is
written, storage runs in a single transaction, and an index failure undoes
the stored rows.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from sanctum.db.models import Chunk, Document
from sanctum.db.repository import Repository
from sanctum.errors import IngestionFailed, SanctumError
from sanctum.index.keyword_index import KeywordIndex
from sanctum.index.vector_index import VectorIndex
from sanctum.ingest.chunker import TextChunker
from sanctum.ingest.embedder import Embedder
from sanctum.ingest.parsers import (
    DefaultDocumentParser,
    DocumentParser,
    OcrProgress,
    detect_file_type,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestProgress:
    file_name: str
    stage: str  # parsing | ocr | chunking | embedding | storing | complete
    current: int = 0
    total: int = 0
    message: str = ""
    ocr: OcrProgress | None = None


ProgressCallback = Callable[[IngestProgress], None]


class IngestionPipeline:
    """Turn files into stored, indexed documents.

    Args:
        repo: Storage layer.
        index: Vector index kept in sync with stored chunks.
        keywords: Optional keyword index kept in sync the same way.
        embedder: Embedding engine capability.
        parser: Document parser capability (defaults to DefaultDocumentParser).
        chunker: Text chunker (defaults to 200 tokens / 25 % overlap).
    """

    def __init__(
        self,
        repo: Repository,
        index: VectorIndex,
        embedder: Embedder,
        parser: DocumentParser | None = None,
        chunker: TextChunker | None = None,
        keywords: KeywordIndex | None = None,
    ) -> None:
        self._repo = repo
        self._index = index
        self._keywords = keywords
        self._embedder = embedder
        self._parser = parser or DefaultDocumentParser()
        self._chunker = chunker or TextChunker()

    def ingest(
        self, file_path: Path | str, on_progress: ProgressCallback | None = None
    ) -> Document:
        """Ingest *file_path* and return the stored Document.

        Raises:
            UnsupportedFileType: Before any parsing for unknown extensions.
            VaultLocked: If the vault is enabled but locked.
            IngestionFailed: Parser, embedding or storage failure; nothing is kept.
        """
        path = Path(file_path)
        file_type = detect_file_type(path)
        if not path.is_file():
            raise IngestionFailed(
                f"File not found: '{path}'", suggestion="Check the path and try again."
            )
        self._repo.require_access()

        def emit(
            stage: str,
            current: int = 0,
            total: int = 0,
            message: str = "",
            ocr: OcrProgress | None = None,
        ) -> None:
            if on_progress is not None:
                on_progress(IngestProgress(path.name, stage, current, total, message, ocr))

        # ---- Parse ----
        emit("parsing", message=f"Reading {path.name}")
        try:
            text = self._parser.extract_text(
                path, lambda ev: emit("ocr", message=ev.message, ocr=ev)
            )
        except SanctumError:
            raise
        except Exception as exc:
            raise IngestionFailed(f"Could not read '{path.name}': {exc}") from exc

        # ---- Chunk ----
        emit("chunking")
        segments = self._chunker.split(text)
        if not segments:
            raise IngestionFailed(
                f"No text found in '{path.name}'",
                suggestion="If this is a scan or photo, make sure Tesseract OCR is installed.",
            )

        # ---- Embed ----
        vectors = self._embed_all(path.name, segments, emit)

        # ---- Store ----
        emit("storing", len(segments), len(segments))
        document = Document(
            file_name=path.name,
            file_path=str(path.resolve()),
            file_type=file_type,
            size_bytes=path.stat().st_size,
        )
        chunks: list[Chunk] = []
        try:
            with self._repo.transaction():
                doc_id = self._repo.add_document(document, content=text)
                for ordinal, (segment, vector) in enumerate(zip(segments, vectors)):
                    chunk = Chunk(document_id=doc_id, ordinal=ordinal, text=segment, embedding=vector)
                    self._repo.add_chunk(chunk)
                    chunks.append(chunk)
                document.chunk_count = self._repo.refresh_chunk_count(doc_id)
        except sqlite3.Error as exc:
            raise IngestionFailed(f"Could not store '{path.name}': {exc}") from exc

        # ---- Index ----
        indexed: list[int] = []
        try:
            for chunk in chunks:
                indexed.append(chunk.id)
                self._index.insert(chunk.id, chunk.embedding)
                if self._keywords is not None:
                    self._keywords.insert(chunk.id, chunk.text)
        except (ValueError, sqlite3.Error) as exc:
            for chunk_id in indexed:
                self._unindex(chunk_id)
            self._repo.delete_document(document.id)
            raise IngestionFailed(f"Could not index '{path.name}': {exc}") from exc

        emit("complete", len(chunks), len(chunks), f"{len(chunks)} chunks")
        logger.info("Ingested %s as document %d (%d chunks)", path.name, document.id, len(chunks))
        return document

    def _embed_all(
        self, file_name: str, segments: list[str], emit: Callable[..., None]
    ) -> list[np.ndarray]:
        vectors: list[np.ndarray] = []
        total = len(segments)
        for i, segment in enumerate(segments):
            emit("embedding", i + 1, total)
            try:
                vector = np.asarray(self._embedder.embed(segment), dtype=np.float32)
            except Exception as exc:
                raise IngestionFailed(
                    f"Embedding failed on chunk {i + 1}/{total} of '{file_name}': {exc}",
                    suggestion="Check that the embedding model is running, then retry.",
                ) from exc
            if vectors and vector.shape != vectors[0].shape:
                raise IngestionFailed(
                    f"Embedding engine returned inconsistent dimensions for '{file_name}'"
                )
            try:
                self._index.check_vector(vector)
            except ValueError as exc:
                raise IngestionFailed(
                    f"Embedding for '{file_name}' does not fit the index: {exc}",
                    suggestion="The embedding model changed; re-create the library or switch back.",
                ) from exc
            vectors.append(vector)
        return vectors

    def delete_document(self, document_id: int) -> bool:
        """Delete a document, its chunks and their index entries.

        Index entries go first so a concurrent query can never return a chunk
        whose row is being deleted. Returns False if the document did not exist.
        """
        self._repo.require_access()
        with self._repo.document_lock(document_id):
            chunk_ids = self._repo.chunk_ids_for_document(document_id)
            for chunk_id in chunk_ids:
                self._unindex(chunk_id)
            try:
                deleted = self._repo.delete_document(document_id)
            except sqlite3.Error:
                for chunk in self._repo.list_chunks(document_id):
                    self._index.insert(chunk.id, chunk.embedding)
                    if self._keywords is not None:
                        self._keywords.insert(chunk.id, chunk.text)
                raise
        if deleted:
            logger.info("Deleted document %d (%d chunks)", document_id, len(chunk_ids))
        return deleted

    def _unindex(self, chunk_id: int) -> None:
        self._index.remove(chunk_id)
        if self._keywords is not None:
            self._keywords.remove(chunk_id)
