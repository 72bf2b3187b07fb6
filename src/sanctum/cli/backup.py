"""sanctum backup: export the whole store to a zip archive, or restore one.

Archives hold the database exactly as stored: if encryption is on, the
content stays encrypted and the same password unlocks it after import.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape

from sanctum.cli.common import console, open_app
from sanctum.db.backup import BackupError, read_manifest
from sanctum.vault import VaultStatus

backup_app = typer.Typer(
    name="backup",
    help="Export or import a full backup archive.",
    add_completion=False,
)


@backup_app.command("export")
def backup_export_cmd(
    ctx: typer.Context,
    dest: Annotated[
        Path,
        typer.Argument(help="Archive path, or a directory to write a timestamped archive into."),
    ] = Path("."),
) -> None:
    """Write a consistent snapshot of all data to a zip archive."""
    with open_app(ctx.obj, unlock=False) as orch:
        path = orch.export_backup(dest)
    console.print(f"[green]✓[/] Backup written to {escape(str(path))}")


@backup_app.command("import")
def backup_import_cmd(
    ctx: typer.Context,
    archive: Annotated[Path, typer.Argument(help="Backup archive (.zip).")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
) -> None:
    """Replace ALL current data with the contents of a backup archive."""
    try:
        manifest = read_manifest(archive)
    except (BackupError, OSError) as exc:
        console.print(f"[red]Error:[/] Not a valid backup: {escape(str(exc))}\n"
                      "  Choose an archive created by:  sanctum backup export")
        raise typer.Exit(1)

    counts = ", ".join(f"{n} {table}" for table, n in manifest.counts.items())
    console.print(f"Backup from {manifest.created_at}: {counts}")
    if not yes and not typer.confirm(
        "This replaces all current documents and conversations. Continue?", default=False
    ):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)

    with open_app(ctx.obj, unlock=False) as orch:
        try:
            orch.import_backup(archive)
        except BackupError as exc:
            console.print(f"[red]Error:[/] Backup rejected: {escape(str(exc))}\n"
                          "  Your current data was not changed.")
            raise typer.Exit(1)
        locked = orch.vault.status is VaultStatus.LOCKED
    console.print("[green]✓[/] Backup restored")
    if locked:
        console.print("  Encrypted backup: unlock with the password it was created with.")
