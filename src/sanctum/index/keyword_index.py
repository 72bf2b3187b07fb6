"""BM25 keyword index over decrypted chunk text.

Backed by an FTS5 table in a private in-memory SQLite database, so chunk
plaintext never reaches disk even when the vault is enabled. Like the
vector index it is rebuilt from storage on startup / unlock and cleared on
lock.
"""

from __future__ import annotations

import re
import sqlite3
import threading
from collections.abc import Iterable

# FTS5 MATCH rejects punctuation as syntax; only word characters survive.
_TERM_RE = re.compile(r"\w+", re.UNICODE)


class KeywordIndex:
    """Thread-safe full-text index keyed by chunk id."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(":memory:", check_same_thread=False)
        self._conn.execute(
            "CREATE VIRTUAL TABLE chunks_fts USING fts5(text, tokenize='porter unicode61')"
        )

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert(self, chunk_id: int, text: str) -> None:
        """Add (or replace) the text for *chunk_id*."""
        with self._lock:
            self._conn.execute("DELETE FROM chunks_fts WHERE rowid = ?", (chunk_id,))
            self._conn.execute(
                "INSERT INTO chunks_fts (rowid, text) VALUES (?, ?)", (chunk_id, text)
            )

    def load(self, entries: Iterable[tuple[int, str]]) -> int:
        """Replace the index contents with *entries*. Returns the count."""
        with self._lock:
            self.clear()
            self._conn.executemany(
                "INSERT INTO chunks_fts (rowid, text) VALUES (?, ?)", entries
            )
            return len(self)

    def remove(self, chunk_id: int) -> bool:
        """Drop *chunk_id*. Returns False if it was not indexed."""
        with self._lock:
            cur = self._conn.execute("DELETE FROM chunks_fts WHERE rowid = ?", (chunk_id,))
            return cur.rowcount > 0

    def clear(self) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM chunks_fts")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def query(self, text: str, k: int) -> list[tuple[int, float]]:
        """Return up to *k* ``(chunk_id, score)`` pairs, best first.

        Any query term may match (terms are OR-ed); BM25 weights rarer terms
        higher. Scores are negated bm25() values, so higher is better. Ties
        go to the lower chunk id.
        """
        terms = _TERM_RE.findall(text.lower())
        if k <= 0 or not terms:
            return []
        match = " OR ".join(f'"{term}"' for term in dict.fromkeys(terms))
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT rowid, bm25(chunks_fts) AS score FROM chunks_fts
                WHERE chunks_fts MATCH ? ORDER BY score, rowid LIMIT ?
                """,
                (match, k),
            ).fetchall()
        return [(rowid, -score) for rowid, score in rows]

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM chunks_fts").fetchone()[0]

    def __contains__(self, chunk_id: object) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM chunks_fts WHERE rowid = ?", (chunk_id,)
            ).fetchone()
        return row is not None
