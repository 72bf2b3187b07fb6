"""Sanctum CLI entry point."""

from __future__ import annotations

import importlib.metadata
from pathlib import Path
from typing import Annotated

import typer

from sanctum.cli.ask import ask_cmd
from sanctum.cli.backup import backup_app
from sanctum.cli.common import CliState
from sanctum.cli.conversations import conversations_app
from sanctum.cli.documents import documents_app
from sanctum.cli.hardware import hardware_cmd
from sanctum.cli.ingest import ingest_cmd
from sanctum.cli.init import init_cmd
from sanctum.cli.models import models_app
from sanctum.cli.status import status_cmd
from sanctum.cli.vault import vault_app


def _installed_version() -> str:
    try:
        return importlib.metadata.version("sanctum")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"sanctum {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="sanctum",
    help=(
        "Sanctum: private question answering over your own documents.\n\n"
        "  sanctum ingest FILE    Add a document to the library.\n"
        "  sanctum ask QUESTION   Stream an answer with citations."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    data_dir: Annotated[
        Path | None,
        typer.Option(
            "--data-dir",
            envvar="SANCTUM_DATA_DIR",
            help="Data directory (default: ~/.sanctum).",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Console log level (DEBUG, INFO, WARNING, ERROR)."),
    ] = None,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Sanctum: private question answering over your own documents."""
    ctx.obj = CliState(data_dir=data_dir, log_level=log_level)


app.command("init")(init_cmd)
app.command("hardware")(hardware_cmd)
app.command("status")(status_cmd)
app.command("ingest")(ingest_cmd)
app.command("ask")(ask_cmd)
app.add_typer(documents_app, name="documents")
app.add_typer(conversations_app, name="conversations")
app.add_typer(models_app, name="models")
app.add_typer(vault_app, name="vault")
app.add_typer(backup_app, name="backup")


@app.command("version")
def version_cmd() -> None:
    """Show the installed Sanctum version."""
    typer.echo(f"sanctum {_installed_version()}")


if __name__ == "__main__":
    app()
