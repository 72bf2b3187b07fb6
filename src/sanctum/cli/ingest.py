"""sanctum ingest: add documents to the library.

Supported: .pdf .docx .txt .md .markdown .png .jpg .jpeg
A directory argument is expanded to the supported files inside it
(--recursive for subdirectories).
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from sanctum.cli.common import console, open_app
from sanctum.cli.errors import format_error
from sanctum.errors import IngestionFailed
from sanctum.ingest import SUPPORTED_TYPES, IngestProgress

_STAGE_LABELS = {
    "parsing": "Reading",
    "ocr": "Recognising text",
    "chunking": "Splitting",
    "embedding": "Embedding",
    "storing": "Saving",
    "complete": "Done",
}


def ingest_cmd(
    ctx: typer.Context,
    paths: Annotated[
        list[Path],
        typer.Argument(help="Files or directories to ingest."),
    ],
    recursive: Annotated[
        bool,
        typer.Option("--recursive", "-r", help="Recurse into subdirectories."),
    ] = False,
) -> None:
    """Ingest documents into the local library."""
    files = _expand_paths(paths, recursive=recursive)
    if not files:
        console.print("[yellow]No supported files found to ingest.[/]")
        raise typer.Exit(0)

    failed = 0
    with open_app(ctx.obj) as orch:
        for path in files:
            console.print(f"\n[bold]→ {escape(str(path))}[/]")
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                transient=True,
                console=console,
            ) as prog:
                task = prog.add_task("Reading…", total=None)

                def _on_progress(event: IngestProgress) -> None:
                    label = _STAGE_LABELS.get(event.stage, event.stage)
                    if event.ocr is not None:
                        prog.update(task, description=f"{label}…", total=100,
                                    completed=event.ocr.percent)
                    elif event.total:
                        prog.update(task, description=f"{label}…", total=event.total,
                                    completed=event.current)
                    else:
                        prog.update(task, description=f"{label}…")

                try:
                    document = orch.ingest(path, on_progress=_on_progress)
                except IngestionFailed as exc:
                    failed += 1
                    prog.stop()
                    console.print(format_error(exc))
                    continue
            console.print(
                f"  [green]✓[/] {escape(document.file_name)}: {document.chunk_count} chunks "
                f"(id {document.id})"
            )

    if failed:
        console.print(f"\n[yellow]{failed} of {len(files)} file(s) failed.[/]")
        raise typer.Exit(1)


def _expand_paths(paths: list[Path], recursive: bool) -> list[Path]:
    """Expand directories to supported files; explicit files are kept as given."""
    files: list[Path] = []
    for path in paths:
        if path.is_dir():
            pattern = "**/*" if recursive else "*"
            files.extend(
                sorted(
                    p for p in path.glob(pattern)
                    if p.is_file() and p.suffix.lower() in SUPPORTED_TYPES
                )
            )
        else:
            files.append(path)
    return files
