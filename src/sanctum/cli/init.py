"""sanctum init: create the data directory, global config and store.

Creates:
  ~/.sanctum/config.yaml   global defaults (created once, mode 0o600)
  <data_dir>/sanctum.db    empty store with schema
and then asks whether to protect the store with a password.
"""

from __future__ import annotations

from typing import Annotated

import typer

from sanctum.cli.common import console, open_app, read_password
from sanctum.config import ensure_global_config
from sanctum.vault import VaultStatus


def init_cmd(
    ctx: typer.Context,
    encrypt: Annotated[
        bool | None,
        typer.Option(
            "--encrypt/--no-encrypt",
            help="Protect documents and conversations with a password. Asks when omitted.",
        ),
    ] = None,
    biometric: Annotated[
        bool,
        typer.Option("--biometric", help="Also allow biometric unlock where available."),
    ] = False,
) -> None:
    """Set up Sanctum: config, data directory and (optionally) encryption."""
    config_path = ensure_global_config()
    console.print(f"  [green]✓[/] Config: {config_path}")

    with open_app(ctx.obj, unlock=False) as orch:
        console.print(f"  [green]✓[/] Store:  {orch.config.db_path}")

        if orch.vault.status is not VaultStatus.UNINITIALIZED:
            console.print(f"  [dim]Security already configured ({orch.vault.status.value}).[/]")
            return

        if encrypt is None:
            encrypt = typer.confirm(
                "Protect your documents and conversations with a password?", default=True
            )
        if encrypt:
            password = read_password("Choose a vault password", confirm=True)
            orch.setup_vault(password, enable_biometric=biometric)
            console.print("  [green]✓[/] Encryption enabled")
        else:
            orch.vault.skip_setup()
            console.print("  [yellow]⚠[/]  Encryption skipped. Enable later with: sanctum vault setup")

        recommended = orch.recommend_model()
        console.print(
            f"\n[bold]Next:[/] sanctum models download {recommended.name}\n"
            "      sanctum ingest <file>\n"
            "      sanctum ask \"<question>\""
        )
