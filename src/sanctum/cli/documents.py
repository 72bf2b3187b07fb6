"""sanctum documents: list and remove ingested documents."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from sanctum.cli.common import console, open_app
from sanctum.cli.errors import err_document_not_found

documents_app = typer.Typer(
    name="documents",
    help="Manage ingested documents (list, remove).",
    add_completion=False,
)


@documents_app.command("list")
def documents_list_cmd(ctx: typer.Context) -> None:
    """List ingested documents."""
    with open_app(ctx.obj) as orch:
        documents = orch.list_documents()

    if not documents:
        console.print("[yellow]No documents yet.[/]\n  Run:  sanctum ingest <file>")
        raise typer.Exit(0)

    table = Table(title="Documents", show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Type")
    table.add_column("Chunks", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Added")
    for doc in documents:
        table.add_row(
            str(doc.id),
            escape(doc.file_name),
            doc.file_type,
            str(doc.chunk_count),
            f"{doc.size_bytes / 1024:.0f} KB",
            (doc.upload_timestamp or "")[:16],
        )
    console.print(table)


@documents_app.command("remove")
def documents_remove_cmd(
    ctx: typer.Context,
    document_id: Annotated[int, typer.Argument(help="Document ID (see: sanctum documents list).")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
) -> None:
    """Remove a document, its chunks and its index entries."""
    with open_app(ctx.obj) as orch:
        document = orch.repo.get_document(document_id)
        if document is None:
            console.print(err_document_not_found(document_id))
            raise typer.Exit(1)
        if not yes and not typer.confirm(
            f"Remove '{document.file_name}' ({document.chunk_count} chunks)?", default=False
        ):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)
        orch.delete_document(document_id)
    console.print(f"[green]✓[/] Removed {escape(document.file_name)}")
