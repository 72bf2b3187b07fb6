"""Sanctum storage layer."""

from sanctum.db.connection import Database
from sanctum.db.migrations import MIGRATIONS, run_migrations
from sanctum.db.repository import Repository
from sanctum.db.schema import initialize

__all__ = [
    "Database",
    "MIGRATIONS",
    "Repository",
    "initialize",
    "run_migrations",
]
