"""sanctum conversations: list, show, search, rename, export and delete."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from sanctum.cli.common import console, open_app
from sanctum.cli.errors import err_conversation_not_found, err_output_exists
from sanctum.db.models import Conversation
from sanctum.export import FORMATS, default_file_name, render, write_export

conversations_app = typer.Typer(
    name="conversations",
    help="Browse and manage conversations.",
    add_completion=False,
)


@conversations_app.command("list")
def conversations_list_cmd(
    ctx: typer.Context,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Show at most N conversations.")] = 20,
) -> None:
    """List conversations, most recently updated first."""
    with open_app(ctx.obj) as orch:
        conversations = orch.repo.list_conversations(limit=limit)
    _print_table(conversations, title="Conversations")


@conversations_app.command("search")
def conversations_search_cmd(
    ctx: typer.Context,
    query: Annotated[str, typer.Argument(help="Text to look for in titles and messages.")],
) -> None:
    """Search conversation titles and message text."""
    with open_app(ctx.obj) as orch:
        matches = orch.repo.search_conversations(query)
    _print_table(matches, title=f"Matches for '{escape(query)}'")


@conversations_app.command("show")
def conversations_show_cmd(
    ctx: typer.Context,
    conversation_id: Annotated[int, typer.Argument(help="Conversation ID.")],
) -> None:
    """Print a conversation."""
    with open_app(ctx.obj) as orch:
        conversation = _require(orch.repo.get_conversation(conversation_id), conversation_id)
        messages = orch.repo.list_messages(conversation_id)

    console.print(f"[bold]{escape(conversation.title)}[/]  [dim]{conversation.created_at}[/]\n")
    for message in messages:
        who = "[cyan]You[/]" if message.role == "user" else "[green]Assistant[/]"
        console.print(who)
        console.print(message.content, markup=False, highlight=False)
        if message.citations:
            names = ", ".join(sorted({c.file_name for c in message.citations}))
            console.print(f"[dim]Sources: {escape(names)}[/]")
        console.print()


@conversations_app.command("rename")
def conversations_rename_cmd(
    ctx: typer.Context,
    conversation_id: Annotated[int, typer.Argument(help="Conversation ID.")],
    title: Annotated[str, typer.Argument(help="New title.")],
) -> None:
    """Rename a conversation."""
    with open_app(ctx.obj) as orch:
        if not orch.repo.rename_conversation(conversation_id, title):
            console.print(err_conversation_not_found(conversation_id))
            raise typer.Exit(1)
    console.print(f"[green]✓[/] Renamed to '{escape(title)}'")


@conversations_app.command("export")
def conversations_export_cmd(
    ctx: typer.Context,
    conversation_id: Annotated[int, typer.Argument(help="Conversation ID.")],
    fmt: Annotated[
        str,
        typer.Option("--format", "-f", help=f"Output format: {', '.join(FORMATS)}."),
    ] = "markdown",
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Output file (default: derived from the title)."),
    ] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Overwrite without asking.")] = False,
) -> None:
    """Export a conversation to Markdown, JSON or plain text."""
    if fmt not in FORMATS:
        console.print(f"[red]Error:[/] Unknown format '{escape(fmt)}'.\n  Use one of: {', '.join(FORMATS)}")
        raise typer.Exit(1)

    with open_app(ctx.obj) as orch:
        conversation = _require(orch.repo.get_conversation(conversation_id), conversation_id)
        content = render(conversation, orch.repo.list_messages(conversation_id), fmt)

    path = output or Path(default_file_name(conversation, fmt))
    if path.exists() and not yes:
        console.print(err_output_exists(str(path)))
        raise typer.Exit(1)
    write_export(path, content)
    console.print(f"[green]✓[/] Exported to {escape(str(path))}")


@conversations_app.command("delete")
def conversations_delete_cmd(
    ctx: typer.Context,
    conversation_id: Annotated[int, typer.Argument(help="Conversation ID.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
) -> None:
    """Delete a conversation and all its messages."""
    with open_app(ctx.obj) as orch:
        conversation = _require(orch.repo.get_conversation(conversation_id), conversation_id)
        if not yes and not typer.confirm(f"Delete '{conversation.title}'?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)
        orch.repo.delete_conversation(conversation_id)
    console.print("[green]✓[/] Conversation deleted")


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _require(conversation: Conversation | None, conversation_id: int) -> Conversation:
    if conversation is None:
        console.print(err_conversation_not_found(conversation_id))
        raise typer.Exit(1)
    return conversation


def _print_table(conversations: list[Conversation], title: str) -> None:
    if not conversations:
        console.print("[yellow]No conversations found.[/]")
        return
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Title", style="bold")
    table.add_column("Messages", justify="right")
    table.add_column("Updated")
    for conv in conversations:
        table.add_row(
            str(conv.id), escape(conv.title), str(conv.message_count), (conv.updated_at or "")[:16]
        )
    console.print(table)
