"""sanctum ask: stream an answer grounded in your documents.

Ctrl-C stops the answer; the partial text is kept in the conversation.
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.markup import escape

from sanctum.cli.common import console, open_app
from sanctum.cli.errors import err_conversation_not_found, format_error, warn_chat_only
from sanctum.errors import Outcome
from sanctum.rag.session import StreamEnd, TokenEvent


def ask_cmd(
    ctx: typer.Context,
    question: Annotated[str, typer.Argument(help="Your question.")],
    conversation: Annotated[
        int | None,
        typer.Option("--conversation", "-c", help="Continue an existing conversation."),
    ] = None,
    show_sources: Annotated[
        bool,
        typer.Option("--sources/--no-sources", help="List the cited passages after the answer."),
    ] = True,
) -> None:
    """Ask a question about your documents."""
    with open_app(ctx.obj) as orch:
        if conversation is not None and orch.repo.get_conversation(conversation) is None:
            console.print(err_conversation_not_found(conversation))
            raise typer.Exit(1)

        stream = orch.ask(question, conversation)
        if stream.note:
            console.print(warn_chat_only(stream.note))

        end: StreamEnd | None = None
        events = iter(stream)
        while end is None:
            try:
                for event in events:
                    if isinstance(event, TokenEvent):
                        console.print(event.text, end="", markup=False, highlight=False)
                    else:
                        end = event
            except KeyboardInterrupt:
                stream.cancel()
                events = iter(stream)
        console.print()

    _report(end, show_sources)
    if end.outcome is Outcome.FAILED:
        raise typer.Exit(1)


def _report(end: StreamEnd, show_sources: bool) -> None:
    if end.error is not None:
        console.print(format_error(end.error))
    elif end.outcome is not Outcome.COMPLETED and end.guidance:
        console.print(f"[yellow]⚠[/] {escape(end.guidance)}")

    if show_sources and end.citations:
        console.print("\n[bold]Sources[/]")
        for citation in end.citations:
            marker = f"[{citation.marker}]" if citation.marker is not None else "•"
            where = f", chunk {citation.ordinal + 1}" if citation.ordinal is not None else ""
            console.print(f"  {escape(marker)} {escape(citation.file_name)}{where}")

    if end.conversation_id is not None:
        console.print(f"\n[dim]Conversation {end.conversation_id}[/]")
