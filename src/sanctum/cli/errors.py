"""Rich error messages: what went wrong, then what to do about it.

Every error shown to the user contains:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from sanctum.cli.errors import format_error
    console.print(format_error(exc))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from sanctum.errors import SanctumError


def format_error(exc: SanctumError) -> str:
    """Render a SanctumError as ``Error: category`` plus the suggested action.

    Example:
        Error: Model not loaded: Model 'qwen2.5-7b' is not downloaded
          Run:  sanctum models download qwen2.5-7b
    """
    detail = str(exc)
    headline = exc.category.capitalize()
    if detail and detail != exc.category:
        headline = f"{headline}: {escape(detail)}"
    return f"[red]Error:[/] {headline}\n  {escape(exc.suggestion)}"


def err_config(message: str) -> str:
    """Invalid or forbidden configuration."""
    return f"[red]Error:[/] Invalid configuration.\n  {escape(message)}"


def err_wrong_password() -> str:
    return (
        "[red]Error:[/] Wrong password.\n"
        "  Try again, or set SANCTUM_PASSWORD for non-interactive use."
    )


def err_vault_not_enabled() -> str:
    return (
        "[red]Error:[/] Security is not enabled.\n"
        "  Run:  sanctum vault setup"
    )


def err_document_not_found(document_id: int) -> str:
    return (
        f"[yellow]Document not found:[/] {document_id} is not in your library.\n"
        "  Run:  sanctum documents list  to see all documents."
    )


def err_conversation_not_found(conversation_id: int) -> str:
    return (
        f"[yellow]Conversation not found:[/] {conversation_id}\n"
        "  Run:  sanctum conversations list  to see all conversations."
    )


def err_output_exists(path: str) -> str:
    return (
        f"[red]Error:[/] '{escape(path)}' already exists.\n"
        "  Choose another path or pass --yes to overwrite."
    )


def warn_chat_only(note: str) -> str:
    """Shown when no documents are indexed and the model answers on its own."""
    return (
        f"[yellow]⚠[/] {escape(note)}\n"
        "  Add documents with:  sanctum ingest <file>"
    )
