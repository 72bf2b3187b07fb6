"""SQLite connection for the local store (sqlite-vec loaded for vector blobs)."""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path

import sqlite_vec

_BUSY_TIMEOUT_MS = 5_000


class Database:
    """The single relational store: documents, chunks, conversations and vault state.

    The file is created owner-only (0o600) inside an owner-only directory,
    since it may hold plaintext when encryption is off.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)

    def connect(self) -> sqlite3.Connection:
        """Open the store, creating the file and its directory if needed.

        The returned connection may be used from worker threads; the
        Repository serialises access with its own lock.
        """
        self.db_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        is_new = not self.db_path.exists()

        conn = sqlite3.connect(
            self.db_path, check_same_thread=False, timeout=_BUSY_TIMEOUT_MS / 1000
        )
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)

        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        # deleted pages are zeroed so removed plaintext does not linger in the file
        conn.execute("PRAGMA secure_delete = ON")

        if is_new:
            os.chmod(self.db_path, 0o600)
        return conn
