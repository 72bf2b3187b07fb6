"""Schema initialisation entry point."""

from __future__ import annotations

import sqlite3

from sanctum.db.migrations import MIGRATIONS, run_migrations

CURRENT_VERSION = MIGRATIONS[-1][0]

# Sensitive columns per table; sealed with the vault key when it is enabled.
SENSITIVE_COLUMNS: dict[str, tuple[str, ...]] = {
    "documents": ("content",),
    "chunks": ("text", "embedding"),
    "conversations": ("title",),
    "messages": ("content", "citations"),
}


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    run_migrations(conn)
