"""RAG orchestrator: the single entry point UIs talk to.

Wires storage, vault, retrieval index, ingestion, model registry and the
session manager together. ``ask`` is the canonical streaming path;
``ask_sync`` buffers it for callers that only want the final answer.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field, replace
from functools import partial
from pathlib import Path
from typing import Any

from sanctum.config import SanctumConfig
from sanctum.db import Database, Repository, initialize
from sanctum.db.backup import BackupManifest, export_archive, import_archive
from sanctum.db.models import Citation, Document
from sanctum.errors import (
    GenerationFailed,
    Outcome,
    RETRIEVAL_EMPTY_NOTE,
    RetrievalFailed,
    SanctumError,
)
from sanctum.hardware import HardwareProfile, detect, execution_parameters
from sanctum.index import KeywordIndex, VectorIndex, rrf_fuse
from sanctum.ingest import IngestionPipeline, TextChunker
from sanctum.ingest.embedder import Embedder, LiteLLMEmbedder
from sanctum.ingest.parsers import DocumentParser
from sanctum.ingest.pipeline import ProgressCallback
from sanctum.models import DownloadProgress, ModelDescriptor, ModelRegistry, download, load_catalog
from sanctum.rag.citations import extract_citations
from sanctum.rag.engine import InferenceEngine, build_engine
from sanctum.rag.prompt import RetrievedChunk
from sanctum.rag.session import GenerationSession, SessionEvent, SessionManager, StreamEnd
from sanctum.vault import KdfParams, Vault, VaultStatus
from sanctum.vault.platform import (
    Biometric,
    SecureStorage,
    select_biometric,
    select_secure_storage,
)

logger = logging.getLogger(__name__)

_TITLE_LENGTH = 50


@dataclass
class Answer:
    conversation_id: int | None
    text: str
    outcome: Outcome
    citations: list[Citation] = field(default_factory=list)
    chunks: list[RetrievedChunk] = field(default_factory=list)
    error: SanctumError | None = None
    guidance: str | None = None
    chat_only: bool = False


class AnswerStream:
    """Streaming answer to one question.

    Iterate to receive :class:`TokenEvent` objects followed by one
    :class:`StreamEnd`. ``chat_only`` is True when no documents were
    available and the model answered from its own knowledge.
    """

    def __init__(
        self, session: GenerationSession, chunks: list[RetrievedChunk], chat_only: bool
    ) -> None:
        self.session = session
        self.chunks = chunks
        self.chat_only = chat_only

    @property
    def conversation_id(self) -> int | None:
        return self.session.conversation_id

    @property
    def note(self) -> str | None:
        return RETRIEVAL_EMPTY_NOTE if self.chat_only else None

    def __iter__(self) -> Iterator[SessionEvent]:
        return self.session.events()

    def cancel(self) -> bool:
        return self.session.cancel()

    def result(self, timeout: float | None = None) -> Answer:
        end = self.session.wait(timeout)
        if end is None:
            raise GenerationFailed("Timed out waiting for the answer")
        return self._to_answer(end)

    def collect(self) -> Answer:
        """Drain the stream and return the final answer."""
        end: StreamEnd | None = None
        for event in self:
            if isinstance(event, StreamEnd):
                end = event
        assert end is not None
        return self._to_answer(end)

    def _to_answer(self, end: StreamEnd) -> Answer:
        return Answer(
            conversation_id=end.conversation_id,
            text=end.text,
            outcome=end.outcome,
            citations=list(end.citations),
            chunks=list(self.session.prompt.chunks if self.session.prompt else self.chunks),
            error=end.error,
            guidance=end.guidance,
            chat_only=self.chat_only,
        )


class Orchestrator:
    """Coordinates every component for one data directory.

    Use :meth:`open` to build one from configuration; the constructor takes
    ready-made components so tests can bind fakes.
    """

    def __init__(
        self,
        config: SanctumConfig,
        repo: Repository,
        vault: Vault,
        *,
        engine: InferenceEngine,
        embedder: Embedder,
        registry: ModelRegistry | None = None,
        index: VectorIndex | None = None,
        keywords: KeywordIndex | None = None,
        parser: DocumentParser | None = None,
        profile: HardwareProfile | None = None,
    ) -> None:
        self.config = config
        self.repo = repo
        self.vault = vault
        self.index = index if index is not None else VectorIndex()
        self.keywords = keywords if keywords is not None else KeywordIndex()
        self.registry = registry or ModelRegistry(
            config.model_dir, load_catalog(config.models.catalog_file)
        )
        self.profile = profile or detect()
        self._engine = engine
        self._embedder = embedder
        self._sessions = SessionManager(engine, max_tokens=config.generation.max_tokens)
        self._pipeline = IngestionPipeline(
            repo,
            self.index,
            embedder,
            parser=parser,
            chunker=TextChunker(config.chunking.chunk_size, config.chunking.overlap),
            keywords=self.keywords,
        )
        self._ask_lock = threading.Lock()
        self.load_index()

    @classmethod
    def open(
        cls,
        config: SanctumConfig,
        *,
        biometric_prompt: Callable[[str], bool] | None = None,
        biometric: Biometric | None = None,
        secure_storage: SecureStorage | None = None,
        engine: InferenceEngine | None = None,
        embedder: Embedder | None = None,
        parser: DocumentParser | None = None,
        profile: HardwareProfile | None = None,
    ) -> Orchestrator:
        """Open (creating if needed) the store under ``config.storage.data_dir``."""
        conn = Database(config.db_path).connect()
        initialize(conn)
        repo = Repository(conn)
        vault = Vault(
            repo,
            biometric=biometric or select_biometric(biometric_prompt),
            secure_storage=secure_storage or select_secure_storage(),
            kdf=KdfParams(
                time_cost=config.vault.kdf_time_cost,
                memory_cost=config.vault.kdf_memory_kib,
                parallelism=config.vault.kdf_parallelism,
            ),
        )
        return cls(
            config,
            repo,
            vault,
            engine=engine or build_engine(config.generation),
            embedder=embedder
            or LiteLLMEmbedder(config.embedding.model, api_base=config.embedding.api_base),
            parser=parser,
            profile=profile,
        )

    def close(self) -> None:
        self._sessions.cancel_active()
        self.vault.lock()
        self.index.clear()
        self.keywords.close()
        self.repo.connection.close()

    def __enter__(self) -> Orchestrator:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Index lifecycle
    # ------------------------------------------------------------------

    def load_index(self) -> int:
        """Rebuild the in-memory indexes from storage. Empty while the vault is locked."""
        if self.vault.status is VaultStatus.LOCKED:
            self.index.clear()
            self.keywords.clear()
            return 0
        count = self.index.load(self.repo.iter_embeddings())
        self.keywords.load(self.repo.iter_chunk_texts())
        logger.debug("Index loaded with %d chunk(s)", count)
        return count

    # ------------------------------------------------------------------
    # Asking
    # ------------------------------------------------------------------

    def ask(self, question: str, conversation_id: int | None = None) -> AnswerStream:
        """Start answering *question*; returns the live stream.

        Raises:
            ValueError: Blank question or unknown conversation.
            VaultLocked: The vault is enabled and locked.
            ModelNotFound: The selected model is not downloaded.
            RetrievalFailed: The question could not be embedded or searched.
            GenerationFailed: The model could not be loaded.
        """
        question = question.strip()
        if not question:
            raise ValueError("Question must not be empty")
        self.repo.require_access()

        with self._ask_lock:
            # The previous answer is persisted before history is read.
            self._sessions.cancel_active()

            descriptor = self.current_model()
            params = execution_parameters(self.profile, descriptor)
            model_path = (
                self.registry.require_local(descriptor)
                if self._engine.requires_model_file
                else None
            )
            handle = self._engine.load(model_path, params)

            chunks = self._retrieve(question)
            if conversation_id is None:
                conversation = self.repo.create_conversation(_title_from(question))
            else:
                conversation = self.repo.get_conversation(conversation_id)
                if conversation is None:
                    raise ValueError(f"Conversation {conversation_id} does not exist")
            history = self.repo.list_messages(
                conversation.id, limit=self.config.generation.history_messages
            )

            session = self._sessions.start(
                question,
                history,
                chunks,
                handle=handle,
                params=params,
                conversation_id=conversation.id,
                on_finish=partial(self._finish, question),
            )
        return AnswerStream(session, chunks, chat_only=not chunks)

    def ask_sync(self, question: str, conversation_id: int | None = None) -> Answer:
        """Ask and wait for the full answer."""
        return self.ask(question, conversation_id).collect()

    def cancel(self) -> bool:
        """Cancel the active generation. Returns False when nothing is running."""
        session = self._sessions.active
        return session.cancel() if session is not None else False

    @property
    def active_session(self) -> GenerationSession | None:
        return self._sessions.active

    def _retrieve(self, question: str) -> list[RetrievedChunk]:
        if len(self.index) == 0:
            logger.info("Index is empty; answering without documents")
            return []
        try:
            hits = self._ranked_hits(question)
        except Exception as exc:
            logger.error("Retrieval failed: %s", exc)
            raise RetrievalFailed(
                f"Could not search your documents: {exc}",
                suggestion="Check that the embedding model server is running.",
            ) from exc

        found = self.repo.get_chunks([chunk_id for chunk_id, _ in hits])
        names: dict[int, str] = {}
        results: list[RetrievedChunk] = []
        for chunk_id, score in hits:
            chunk = found.get(chunk_id)
            if chunk is None:
                continue  # deleted between query and fetch
            if chunk.document_id not in names:
                document = self.repo.get_document(chunk.document_id)
                names[chunk.document_id] = document.file_name if document else "unknown"
            results.append(
                RetrievedChunk(
                    chunk_id=chunk_id,
                    document_id=chunk.document_id,
                    file_name=names[chunk.document_id],
                    ordinal=chunk.ordinal,
                    text=chunk.text,
                    score=score,
                )
            )
        return results

    def _ranked_hits(self, question: str) -> list[tuple[int, float]]:
        """Rank chunk ids for *question* per ``retrieval.mode``."""
        mode = self.config.retrieval.mode
        top_k = self.config.retrieval.top_k
        if mode == "keyword":
            return self.keywords.query(question, top_k)
        dense = self.index.query(self._embedder.embed(question), top_k)
        if mode == "dense":
            return dense
        return rrf_fuse(dense, self.keywords.query(question, top_k), top_k)

    def _finish(self, question: str, session: GenerationSession, end: StreamEnd) -> StreamEnd:
        """Persist the exchange; runs on the generation thread."""
        if end.outcome not in (Outcome.COMPLETED, Outcome.CANCELLED) or not end.text.strip():
            return end
        chunks = session.prompt.chunks if session.prompt else []
        citations = extract_citations(end.text, chunks)
        try:
            self.repo.add_exchange(end.conversation_id, question, end.text, citations)
        except sqlite3.Error as exc:
            logger.error("Could not save the answer: %s", exc)
            return replace(
                end,
                citations=tuple(citations),
                error=GenerationFailed("The answer could not be saved"),
            )
        return replace(end, citations=tuple(citations), persisted=True)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def ingest(self, file_path: Path | str, on_progress: ProgressCallback | None = None) -> Document:
        return self._pipeline.ingest(file_path, on_progress)

    def delete_document(self, document_id: int) -> bool:
        return self._pipeline.delete_document(document_id)

    def list_documents(self) -> list[Document]:
        return self.repo.list_documents()

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def current_model(self) -> ModelDescriptor:
        return self.registry.resolve_selected(
            self.config.models.selected, self.profile, self.config.models.ram_safety_margin
        )

    def recommend_model(self) -> ModelDescriptor:
        return self.registry.recommend(self.profile, self.config.models.ram_safety_margin)

    def download_model(
        self, name: str, cancel_event: threading.Event | None = None
    ) -> Iterator[DownloadProgress]:
        descriptor = self.registry.get(name)
        return download(descriptor, self.registry.cache_dir, cancel_event=cancel_event)

    # ------------------------------------------------------------------
    # Vault
    # ------------------------------------------------------------------

    def setup_vault(self, password: str, enable_biometric: bool = False) -> None:
        self.vault.setup(password, enable_biometric)
        self.load_index()

    def unlock(self, password: str) -> bool:
        if not self.vault.unlock_with_password(password):
            return False
        self.load_index()
        return True

    def unlock_with_biometric(self) -> bool:
        if not self.vault.unlock_with_biometric():
            return False
        self.load_index()
        return True

    def lock(self) -> None:
        """Stop any generation, drop the key, and clear decrypted vectors and text."""
        self._sessions.cancel_active()
        self.vault.lock()
        self.index.clear()
        self.keywords.clear()

    def disable_vault(self, current_password: str) -> int:
        self._sessions.cancel_active()
        count = self.vault.disable(current_password)
        self.load_index()
        return count

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def export_backup(self, dest: Path) -> Path:
        return export_archive(self.repo, dest)

    def import_backup(self, archive: Path) -> BackupManifest:
        """Replace all data with the archive's snapshot; the vault relocks."""
        self._sessions.cancel_active()
        manifest = import_archive(self.repo, archive)
        self.vault.reload()
        self.load_index()
        return manifest

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "data_dir": str(self.config.storage.data_dir),
            "vault": self.vault.status.value,
            "biometric": self.vault.biometric_enabled,
            "indexed_chunks": len(self.index),
            "engine": self.config.generation.engine,
            "hardware": {
                "cores": self.profile.core_count,
                "ram_gb": round(self.profile.total_ram_gb, 1),
                "gpu": self.profile.gpu_vendor,
                "degraded": self.profile.degraded,
            },
        }
        try:
            descriptor = self.current_model()
            status["model"] = descriptor.name
            status["model_present"] = self.registry.is_present(descriptor)
        except SanctumError as exc:
            status["model"] = None
            status["model_error"] = str(exc)
        if self.vault.status is not VaultStatus.LOCKED:
            status["counts"] = self.repo.counts()
        return status


def _title_from(question: str) -> str:
    line = " ".join(question.split())
    if len(line) <= _TITLE_LENGTH:
        return line
    return line[: _TITLE_LENGTH - 1].rstrip() + "…"
