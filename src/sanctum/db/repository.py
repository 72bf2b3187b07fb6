"""Repository for all Sanctum database operations.

Single interface for: documents, chunks, conversations, messages and the vault
state row. Sensitive columns (see ``schema.SENSITIVE_COLUMNS``) are sealed by
the attached record cipher whenever the vault is enabled; while the vault is
locked every operation touching them raises ``VaultLocked``.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Protocol

import numpy as np
import sqlite_vec

from sanctum.db.locks import KeyedLocks
from sanctum.db.models import ROLES, Chunk, Citation, Conversation, Document, Message, VaultState
from sanctum.db.schema import SENSITIVE_COLUMNS
from sanctum.errors import VaultLocked

DEFAULT_TITLE = "New Conversation"


class RecordCipher(Protocol):
    """What the repository needs from the vault."""

    @property
    def enabled(self) -> bool: ...

    def require_unlocked(self) -> None: ...

    def encrypt(self, data: bytes) -> bytes: ...

    def decrypt(self, data: bytes) -> bytes: ...


class Repository:
    """Data access layer for all Sanctum database entities.

    Wraps an open sqlite3.Connection shared by the control path and worker
    threads; a re-entrant lock serialises statements, and per-entity locks
    serialise writes to the same document or conversation. The connection is
    owned by the caller and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection, cipher: RecordCipher | None = None) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open connection with the schema initialised
                (see sanctum.db.schema.initialize).
            cipher: Record cipher; usually attached later by the Vault.
        """
        self._conn = conn
        self._cipher = cipher
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._document_locks = KeyedLocks()
        self._conversation_locks = KeyedLocks()

    def attach_cipher(self, cipher: RecordCipher) -> None:
        self._cipher = cipher

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Transactions + locking
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes into one atomic unit. Nested use joins the outer transaction."""
        with self._lock:
            self._tx_depth += 1
            try:
                yield
            except BaseException:
                self._tx_depth -= 1
                if self._tx_depth == 0:
                    self._conn.rollback()
                raise
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._conn.commit()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the statement lock across several calls, e.g. a commit and what it enables."""
        with self._lock:
            yield

    def _commit(self) -> None:
        if self._tx_depth == 0:
            self._conn.commit()

    def document_lock(self, document_id: int):
        return self._document_locks.hold(document_id)

    def conversation_lock(self, conversation_id: int):
        return self._conversation_locks.hold(conversation_id)

    # ------------------------------------------------------------------
    # Sealing
    # ------------------------------------------------------------------

    def _security_on(self) -> bool:
        return self._cipher is not None and self._cipher.enabled

    def require_access(self) -> None:
        """Raise VaultLocked if sensitive data cannot be read or written right now."""
        if self._security_on():
            self._cipher.require_unlocked()

    def _seal(self, data: bytes) -> tuple[bytes, int]:
        if self._security_on():
            return self._cipher.encrypt(data), 1
        return data, 0

    def _open(self, blob: bytes | None, encrypted: int) -> bytes | None:
        if blob is None:
            return None
        if encrypted:
            if self._cipher is None:
                raise VaultLocked("Encrypted record found but no vault is attached")
            return self._cipher.decrypt(bytes(blob))
        return bytes(blob)

    def _seal_text(self, text: str) -> tuple[bytes, int]:
        return self._seal(text.encode("utf-8"))

    def _open_text(self, blob: bytes | None, encrypted: int) -> str | None:
        data = self._open(blob, encrypted)
        return data.decode("utf-8") if data is not None else None

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def add_document(self, document: Document, content: str | None = None) -> int:
        """Insert a document row (chunk_count starts at 0). Sets and returns ``document.id``."""
        self.require_access()
        blob, encrypted = self._seal_text(content) if content is not None else (None, 0)
        with self._lock:
            cur = self._conn.execute(
                """
                INSERT INTO documents (file_name, file_path, file_type, size_bytes, content, is_encrypted)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    document.file_name,
                    document.file_path,
                    document.file_type,
                    document.size_bytes,
                    blob,
                    encrypted,
                ),
            )
            self._commit()
        document.id = cur.lastrowid
        return document.id

    def get_document(self, document_id: int) -> Document | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_DOC_COLS} FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(self) -> list[Document]:
        """Return all documents, oldest first."""
        with self._lock:
            rows = self._conn.execute(f"SELECT {_DOC_COLS} FROM documents ORDER BY id").fetchall()
        return [_row_to_document(r) for r in rows]

    def get_document_text(self, document_id: int) -> str | None:
        self.require_access()
        with self._lock:
            row = self._conn.execute(
                "SELECT content, is_encrypted FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        if row is None:
            return None
        return self._open_text(row["content"], row["is_encrypted"])

    def refresh_chunk_count(self, document_id: int) -> int:
        """Set documents.chunk_count from the live chunk rows and return it."""
        with self._lock:
            self._conn.execute(
                """
                UPDATE documents
                SET chunk_count = (SELECT COUNT(*) FROM chunks WHERE document_id = ?)
                WHERE id = ?
                """,
                (document_id, document_id),
            )
            self._commit()
            row = self._conn.execute(
                "SELECT chunk_count FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        return row[0] if row else 0

    def delete_document(self, document_id: int) -> bool:
        """Delete a document; its chunks cascade. Returns False if it did not exist."""
        with self._lock:
            cur = self._conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            self._commit()
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunk(self, chunk: Chunk) -> int:
        """Insert a chunk with its embedding. Sets and returns ``chunk.id``."""
        if chunk.embedding is None:
            raise ValueError("chunk.embedding must be set before storing")
        self.require_access()
        text_blob, encrypted = self._seal_text(chunk.text)
        vector_blob, _ = self._seal(_serialize_vector(chunk.embedding))
        with self._lock:
            cur = self._conn.execute(
                """
                INSERT INTO chunks (document_id, ordinal, text, embedding, is_encrypted)
                VALUES (?, ?, ?, ?, ?)
                """,
                (chunk.document_id, chunk.ordinal, text_blob, vector_blob, encrypted),
            )
            self._commit()
        chunk.id = cur.lastrowid
        return chunk.id

    def get_chunk(self, chunk_id: int) -> Chunk | None:
        chunks = self.get_chunks([chunk_id])
        return chunks.get(chunk_id)

    def get_chunks(self, chunk_ids: list[int]) -> dict[int, Chunk]:
        """Return the chunks that still exist, keyed by id. Embeddings are not loaded."""
        if not chunk_ids:
            return {}
        self.require_access()
        placeholders = ",".join("?" * len(chunk_ids))
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT id, document_id, ordinal, text, is_encrypted
                FROM chunks WHERE id IN ({placeholders})
                """,
                list(chunk_ids),
            ).fetchall()
        return {
            r["id"]: Chunk(
                id=r["id"],
                document_id=r["document_id"],
                ordinal=r["ordinal"],
                text=self._open_text(r["text"], r["is_encrypted"]) or "",
            )
            for r in rows
        }

    def list_chunks(self, document_id: int) -> list[Chunk]:
        """Return a document's chunks in ordinal order, embeddings included."""
        self.require_access()
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, document_id, ordinal, text, embedding, is_encrypted
                FROM chunks WHERE document_id = ? ORDER BY ordinal
                """,
                (document_id,),
            ).fetchall()
        return [
            Chunk(
                id=r["id"],
                document_id=r["document_id"],
                ordinal=r["ordinal"],
                text=self._open_text(r["text"], r["is_encrypted"]) or "",
                embedding=_deserialize_vector(self._open(r["embedding"], r["is_encrypted"])),
            )
            for r in rows
        ]

    def chunk_ids_for_document(self, document_id: int) -> list[int]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id FROM chunks WHERE document_id = ? ORDER BY id", (document_id,)
            ).fetchall()
        return [r[0] for r in rows]

    def count_chunks(self, document_id: int) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)
            ).fetchone()
        return row[0] if row else 0

    def iter_embeddings(self) -> Iterator[tuple[int, np.ndarray]]:
        """Yield ``(chunk_id, vector)`` for every chunk in insertion order."""
        self.require_access()
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, embedding, is_encrypted FROM chunks ORDER BY id"
            ).fetchall()
        for r in rows:
            yield r["id"], _deserialize_vector(self._open(r["embedding"], r["is_encrypted"]))

    def iter_chunk_texts(self) -> Iterator[tuple[int, str]]:
        """Yield ``(chunk_id, text)`` for every chunk in insertion order, decrypted."""
        self.require_access()
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, text, is_encrypted FROM chunks ORDER BY id"
            ).fetchall()
        for r in rows:
            yield r["id"], self._open_text(r["text"], r["is_encrypted"]) or ""

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(self, title: str = DEFAULT_TITLE) -> Conversation:
        self.require_access()
        blob, encrypted = self._seal_text(title.strip() or DEFAULT_TITLE)
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO conversations (title, is_encrypted) VALUES (?, ?)", (blob, encrypted)
            )
            self._commit()
        conversation = self.get_conversation(cur.lastrowid)
        assert conversation is not None
        return conversation

    def get_conversation(self, conversation_id: int) -> Conversation | None:
        self.require_access()
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_CONV_COLS} FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        return self._row_to_conversation(row) if row else None

    def list_conversations(self, limit: int | None = None) -> list[Conversation]:
        """Return conversations, most recently updated first."""
        self.require_access()
        sql = f"SELECT {_CONV_COLS} FROM conversations ORDER BY updated_at DESC, id DESC"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_conversation(r) for r in rows]

    def rename_conversation(self, conversation_id: int, title: str) -> bool:
        self.require_access()
        blob, encrypted = self._seal_text(title.strip() or DEFAULT_TITLE)
        with self.conversation_lock(conversation_id), self._lock:
            cur = self._conn.execute(
                """
                UPDATE conversations
                SET title = ?, is_encrypted = ?, updated_at = datetime('now')
                WHERE id = ?
                """,
                (blob, encrypted, conversation_id),
            )
            self._commit()
        return cur.rowcount > 0

    def delete_conversation(self, conversation_id: int) -> bool:
        """Delete a conversation and (by cascade) its messages."""
        with self.conversation_lock(conversation_id), self._lock:
            cur = self._conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            self._commit()
        return cur.rowcount > 0

    def search_conversations(self, query: str) -> list[Conversation]:
        """Case-insensitive substring search over titles and message contents.

        Rows are decrypted first and filtered in Python, so this works the same
        with and without encryption.
        """
        needle = query.strip().lower()
        conversations = self.list_conversations()
        if not needle:
            return conversations
        matches: list[Conversation] = []
        for conversation in conversations:
            if needle in conversation.title.lower():
                matches.append(conversation)
                continue
            if any(needle in m.content.lower() for m in self.list_messages(conversation.id)):
                matches.append(conversation)
        return matches

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        citations: list[Citation] | None = None,
    ) -> Message:
        """Append a message; bumps the conversation's updated_at and message_count."""
        if role not in ROLES:
            raise ValueError(f"role must be one of {ROLES}, got {role!r}")
        self.require_access()
        sealed = self._seal_message(content, citations or [])
        with self.conversation_lock(conversation_id), self.transaction():
            return self._insert_message(conversation_id, role, content, citations or [], sealed)

    def add_exchange(
        self,
        conversation_id: int,
        question: str,
        answer: str,
        citations: list[Citation] | None = None,
    ) -> tuple[Message, Message]:
        """Append a user question and the assistant's answer as one atomic write."""
        self.require_access()
        citations = citations or []
        sealed_question = self._seal_message(question, [])
        sealed_answer = self._seal_message(answer, citations)
        with self.conversation_lock(conversation_id), self.transaction():
            asked = self._insert_message(conversation_id, "user", question, [], sealed_question)
            answered = self._insert_message(
                conversation_id, "assistant", answer, citations, sealed_answer
            )
        return asked, answered

    def _seal_message(
        self, content: str, citations: list[Citation]
    ) -> tuple[bytes, bytes | None, int]:
        content_blob, encrypted = self._seal_text(content)
        citation_blob = None
        if citations:
            citation_blob, _ = self._seal_text(json.dumps([c.to_dict() for c in citations]))
        return content_blob, citation_blob, encrypted

    def _insert_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        citations: list[Citation],
        sealed: tuple[bytes, bytes | None, int],
    ) -> Message:
        # sealed before the statement lock is taken; see Vault for the lock order
        content_blob, citation_blob, encrypted = sealed
        cur = self._conn.execute(
            """
            INSERT INTO messages (conversation_id, role, content, citations, is_encrypted)
            VALUES (?, ?, ?, ?, ?)
            """,
            (conversation_id, role, content_blob, citation_blob, encrypted),
        )
        updated = self._conn.execute(
            """
            UPDATE conversations
            SET message_count = message_count + 1, updated_at = datetime('now')
            WHERE id = ?
            """,
            (conversation_id,),
        )
        if updated.rowcount == 0:
            raise KeyError(f"conversation {conversation_id} does not exist")
        row = self._conn.execute(
            "SELECT created_at FROM messages WHERE id = ?", (cur.lastrowid,)
        ).fetchone()
        return Message(
            id=cur.lastrowid,
            conversation_id=conversation_id,
            role=role,
            content=content,
            citations=list(citations),
            created_at=row["created_at"],
        )

    def list_messages(self, conversation_id: int, limit: int | None = None) -> list[Message]:
        """Return messages in creation order; with *limit*, only the last *limit* of them."""
        self.require_access()
        if limit is not None:
            sql = (
                f"SELECT * FROM (SELECT {_MSG_COLS} FROM messages WHERE conversation_id = ? "
                "ORDER BY id DESC LIMIT ?) ORDER BY id"
            )
            params: tuple = (conversation_id, limit)
        else:
            sql = f"SELECT {_MSG_COLS} FROM messages WHERE conversation_id = ? ORDER BY id"
            params = (conversation_id,)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_message(r) for r in rows]

    def get_conversation_context(self, conversation_id: int, limit: int = 10) -> str:
        """Render the last *limit* messages as ``role: content`` lines."""
        messages = self.list_messages(conversation_id, limit=limit)
        return "\n\n".join(f"{m.role}: {m.content}" for m in messages)

    # ------------------------------------------------------------------
    # Vault state
    # ------------------------------------------------------------------

    def load_vault_state(self) -> VaultState | None:
        """Return the vault state row, or None before first-run setup."""
        with self._lock:
            row = self._conn.execute("SELECT * FROM vault_state WHERE id = 1").fetchone()
        if row is None:
            return None
        return VaultState(
            enabled=bool(row["enabled"]),
            salt=bytes(row["salt"]) if row["salt"] is not None else None,
            wrapped_key=bytes(row["wrapped_key"]) if row["wrapped_key"] is not None else None,
            kdf_params=json.loads(row["kdf_params"]) if row["kdf_params"] else None,
            biometric_enabled=bool(row["biometric_enabled"]),
            biometric_wrapped_key=(
                bytes(row["biometric_wrapped_key"])
                if row["biometric_wrapped_key"] is not None
                else None
            ),
        )

    def save_vault_state(self, state: VaultState) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO vault_state
                    (id, enabled, salt, wrapped_key, kdf_params, biometric_enabled,
                     biometric_wrapped_key, updated_at)
                VALUES (1, ?, ?, ?, ?, ?, ?, datetime('now'))
                ON CONFLICT(id) DO UPDATE SET
                    enabled = excluded.enabled,
                    salt = excluded.salt,
                    wrapped_key = excluded.wrapped_key,
                    kdf_params = excluded.kdf_params,
                    biometric_enabled = excluded.biometric_enabled,
                    biometric_wrapped_key = excluded.biometric_wrapped_key,
                    updated_at = excluded.updated_at
                """,
                (
                    int(state.enabled),
                    state.salt,
                    state.wrapped_key,
                    json.dumps(state.kdf_params) if state.kdf_params else None,
                    int(state.biometric_enabled),
                    state.biometric_wrapped_key,
                ),
            )
            self._commit()

    def reseal_all(
        self,
        decrypt: Callable[[bytes], bytes] | None,
        encrypt: Callable[[bytes], bytes] | None,
    ) -> int:
        """Rewrite every sensitive row with a new sealing.

        Encrypted rows are opened with *decrypt*; every row is then sealed
        with *encrypt*, or stored as plaintext when *encrypt* is None. Must be
        called inside ``transaction()``. Returns the number of rows whose
        encryption state changed.
        """
        target_flag = 1 if encrypt is not None else 0
        changed = 0
        with self._lock:
            for table, columns in SENSITIVE_COLUMNS.items():
                cols = ", ".join(columns)
                rows = self._conn.execute(f"SELECT id, {cols}, is_encrypted FROM {table}").fetchall()
                for row in rows:
                    values: list[bytes | None] = []
                    for col in columns:
                        blob = row[col]
                        if blob is not None and row["is_encrypted"]:
                            if decrypt is None:
                                raise VaultLocked(f"Cannot reseal {table} #{row['id']} without a key")
                            blob = decrypt(bytes(blob))
                        if blob is not None and encrypt is not None:
                            blob = encrypt(bytes(blob))
                        values.append(blob)
                    assignments = ", ".join(f"{c} = ?" for c in columns)
                    self._conn.execute(
                        f"UPDATE {table} SET {assignments}, is_encrypted = ? WHERE id = ?",
                        (*values, target_flag, row["id"]),
                    )
                    if row["is_encrypted"] != target_flag:
                        changed += 1
            self._commit()
        return changed

    # ------------------------------------------------------------------
    # Stats + snapshots
    # ------------------------------------------------------------------

    def counts(self) -> dict[str, int]:
        with self._lock:
            return {
                table: self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in ("documents", "chunks", "conversations", "messages")
            }

    def snapshot_to(self, target: sqlite3.Connection) -> None:
        """Copy a consistent snapshot of the whole database into *target*."""
        with self._lock:
            self._commit()
            self._conn.backup(target)

    def restore_from(self, source: sqlite3.Connection) -> None:
        """Replace the entire database with the contents of *source*."""
        with self._lock:
            if self._tx_depth:
                raise RuntimeError("restore_from() cannot run inside a transaction")
            self._conn.commit()
            source.backup(self._conn)

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_conversation(self, row: sqlite3.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            title=self._open_text(row["title"], row["is_encrypted"]) or DEFAULT_TITLE,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            message_count=row["message_count"],
        )

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        raw = self._open_text(row["citations"], row["is_encrypted"])
        citations = [Citation.from_dict(c) for c in json.loads(raw)] if raw else []
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=self._open_text(row["content"], row["is_encrypted"]) or "",
            citations=citations,
            created_at=row["created_at"],
        )


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

_DOC_COLS = "id, file_name, file_path, file_type, upload_timestamp, size_bytes, chunk_count"
_CONV_COLS = "id, title, is_encrypted, created_at, updated_at, message_count"
_MSG_COLS = "id, conversation_id, role, content, citations, is_encrypted, created_at"


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        file_name=row["file_name"],
        file_path=row["file_path"],
        file_type=row["file_type"],
        upload_timestamp=row["upload_timestamp"],
        size_bytes=row["size_bytes"],
        chunk_count=row["chunk_count"],
    )


def _serialize_vector(vector: np.ndarray | list[float]) -> bytes:
    return sqlite_vec.serialize_float32([float(x) for x in vector])


def _deserialize_vector(blob: bytes | None) -> np.ndarray:
    if blob is None:
        return np.zeros(0, dtype=np.float32)
    return np.frombuffer(blob, dtype=np.float32).copy()
