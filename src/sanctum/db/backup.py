"""Backup archives: one zip holding a consistent database snapshot.

Layout::

    sanctum-backup-<timestamp>.zip
      database.db      SQLite snapshot (sealed columns stay sealed)
      manifest.json    {"version", "created_at", "schema_version", "counts"}

Import validates the manifest and the snapshot, then replaces the live
database wholesale. Nothing is merged.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import tempfile
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from sanctum.db.migrations import current_version
from sanctum.db.repository import Repository
from sanctum.db.schema import CURRENT_VERSION

logger = logging.getLogger(__name__)

ARCHIVE_VERSION = "1.0"
_DB_MEMBER = "database.db"
_MANIFEST_MEMBER = "manifest.json"


class BackupError(ValueError):
    """Raised when an archive is malformed or incompatible."""


@dataclass
class BackupManifest:
    version: str = ARCHIVE_VERSION
    created_at: str = ""
    schema_version: int = CURRENT_VERSION
    counts: dict[str, int] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(
            {
                "version": self.version,
                "created_at": self.created_at,
                "schema_version": self.schema_version,
                "counts": self.counts,
            },
            indent=2,
        )

    @classmethod
    def from_json(cls, text: str) -> BackupManifest:
        try:
            data = json.loads(text)
            return cls(
                version=str(data["version"]),
                created_at=str(data.get("created_at", "")),
                schema_version=int(data.get("schema_version", 1)),
                counts={str(k): int(v) for k, v in data.get("counts", {}).items()},
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise BackupError(f"Invalid backup manifest: {exc}") from exc


def export_archive(repo: Repository, dest: Path) -> Path:
    """Write a backup zip of the whole store.

    Args:
        repo: Repository over the live database.
        dest: Target zip path, or a directory to place a timestamped zip in.

    Returns:
        Path of the written archive.
    """
    now = datetime.now(timezone.utc)
    if dest.is_dir():
        dest = dest / f"sanctum-backup-{now.strftime('%Y%m%d-%H%M%S')}.zip"
    dest.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.TemporaryDirectory() as tmp:
        snapshot_path = Path(tmp) / _DB_MEMBER
        snapshot = sqlite3.connect(snapshot_path)
        try:
            repo.snapshot_to(snapshot)
            counts = _count_rows(snapshot)
        finally:
            snapshot.close()

        manifest = BackupManifest(created_at=now.isoformat(), counts=counts)
        partial = dest.with_name(dest.name + ".tmp")
        with zipfile.ZipFile(partial, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.write(snapshot_path, _DB_MEMBER)
            zf.writestr(_MANIFEST_MEMBER, manifest.to_json())
        partial.replace(dest)

    logger.info("Backup written to %s (%s)", dest, counts)
    return dest


def read_manifest(archive: Path) -> BackupManifest:
    """Return the manifest of *archive* after basic validation."""
    try:
        with zipfile.ZipFile(archive) as zf:
            names = set(zf.namelist())
            if _MANIFEST_MEMBER not in names or _DB_MEMBER not in names:
                raise BackupError(f"'{archive}' is not a Sanctum backup (missing members).")
            manifest = BackupManifest.from_json(zf.read(_MANIFEST_MEMBER).decode("utf-8"))
    except zipfile.BadZipFile as exc:
        raise BackupError(f"'{archive}' is not a valid zip archive.") from exc

    if manifest.version != ARCHIVE_VERSION:
        raise BackupError(
            f"Unsupported backup version '{manifest.version}' (expected {ARCHIVE_VERSION})."
        )
    if manifest.schema_version > CURRENT_VERSION:
        raise BackupError(
            f"Backup schema v{manifest.schema_version} is newer than this Sanctum (v{CURRENT_VERSION})."
        )
    return manifest


def import_archive(repo: Repository, archive: Path) -> BackupManifest:
    """Replace the live database with the snapshot inside *archive*.

    The snapshot is validated (integrity check, schema version, row counts
    against the manifest) before the live database is touched.

    Raises:
        BackupError: If the archive is malformed or fails validation.
    """
    manifest = read_manifest(archive)

    with tempfile.TemporaryDirectory() as tmp:
        with zipfile.ZipFile(archive) as zf:
            zf.extract(_DB_MEMBER, tmp)
        source = sqlite3.connect(Path(tmp) / _DB_MEMBER)
        try:
            _validate_snapshot(source, manifest)
            repo.restore_from(source)
        finally:
            source.close()

    logger.info("Backup %s restored (%s)", archive, manifest.counts)
    return manifest


def _validate_snapshot(conn: sqlite3.Connection, manifest: BackupManifest) -> None:
    try:
        status = conn.execute("PRAGMA integrity_check").fetchone()[0]
        version = current_version(conn)
        counts = _count_rows(conn)
    except sqlite3.DatabaseError as exc:
        raise BackupError(f"Backup database is unreadable: {exc}") from exc
    if status != "ok":
        raise BackupError(f"Backup database failed integrity check: {status}")
    if version != manifest.schema_version:
        raise BackupError("Backup manifest does not match the database schema version.")
    if manifest.counts and counts != manifest.counts:
        raise BackupError("Backup manifest row counts do not match the database.")


def _count_rows(conn: sqlite3.Connection) -> dict[str, int]:
    return {
        table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        for table in ("documents", "chunks", "conversations", "messages")
    }
