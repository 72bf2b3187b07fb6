"""sanctum vault: encryption status, setup, password and biometric management."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.panel import Panel

from sanctum.cli.common import console, open_app, read_password
from sanctum.cli.errors import err_vault_not_enabled, err_wrong_password, format_error
from sanctum.errors import AuthenticationFailed, VaultError
from sanctum.vault import VaultStatus

vault_app = typer.Typer(
    name="vault",
    help="Manage encryption of documents and conversations.",
    add_completion=False,
)


@vault_app.command("status")
def vault_status_cmd(ctx: typer.Context) -> None:
    """Show whether encryption is enabled and how the vault can be unlocked."""
    with open_app(ctx.obj, unlock=False) as orch:
        status = orch.vault.status
        capability = orch.vault.biometric_capability()
        biometric = orch.vault.biometric_enabled

    lines = [f"Status:    [bold]{status.value}[/]"]
    if status in (VaultStatus.LOCKED, VaultStatus.UNLOCKED):
        lines.append(f"Biometric: {'[green]enabled[/]' if biometric else 'off'}")
    if capability["available"]:
        lines.append(f"Device:    biometric unlock available ({capability['platform']})")
    else:
        lines.append(f"Device:    [dim]biometric unlock unavailable ({capability['reason']})[/]")
    console.print(Panel("\n".join(lines), title="[bold]Vault[/]", expand=False))


@vault_app.command("setup")
def vault_setup_cmd(
    ctx: typer.Context,
    biometric: Annotated[
        bool, typer.Option("--biometric", help="Also enable biometric unlock.")
    ] = False,
) -> None:
    """Enable encryption. Existing documents and conversations are encrypted in place."""
    with open_app(ctx.obj, unlock=False) as orch:
        if orch.vault.enabled:
            console.print("[yellow]Encryption is already enabled.[/]\n"
                          "  Run:  sanctum vault change-password")
            raise typer.Exit(1)
        password = read_password("Choose a vault password", confirm=True)
        orch.setup_vault(password, enable_biometric=biometric)
    console.print("[green]✓[/] Encryption enabled")


@vault_app.command("skip")
def vault_skip_cmd(ctx: typer.Context) -> None:
    """Record that Sanctum should run without encryption."""
    with open_app(ctx.obj, unlock=False) as orch:
        orch.vault.skip_setup()
    console.print("[yellow]⚠[/]  Encryption is off. Enable it any time with: sanctum vault setup")


@vault_app.command("disable")
def vault_disable_cmd(
    ctx: typer.Context,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
) -> None:
    """Turn encryption off and store everything as plaintext."""
    with open_app(ctx.obj, unlock=False) as orch:
        if not orch.vault.enabled:
            console.print(err_vault_not_enabled())
            raise typer.Exit(1)
        if not yes and not typer.confirm(
            "Decrypt all documents and conversations and turn encryption off?", default=False
        ):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)
        try:
            count = orch.disable_vault(read_password("Current password"))
        except AuthenticationFailed:
            console.print(err_wrong_password())
            raise typer.Exit(1)
    console.print(f"[green]✓[/] Encryption disabled ({count} records decrypted)")


@vault_app.command("change-password")
def vault_change_password_cmd(ctx: typer.Context) -> None:
    """Change the vault password. Stored data is not re-encrypted."""
    with open_app(ctx.obj, unlock=False) as orch:
        if not orch.vault.enabled:
            console.print(err_vault_not_enabled())
            raise typer.Exit(1)
        old = read_password("Current password")
        new = typer.prompt("New password", hide_input=True, confirmation_prompt=True)
        try:
            orch.vault.change_password(old, new)
        except AuthenticationFailed:
            console.print(err_wrong_password())
            raise typer.Exit(1)
    console.print("[green]✓[/] Password changed")


@vault_app.command("biometric")
def vault_biometric_cmd(
    ctx: typer.Context,
    enable: Annotated[
        bool, typer.Option("--enable/--disable", help="Turn biometric unlock on or off.")
    ] = True,
) -> None:
    """Enable or disable biometric unlock."""
    with open_app(ctx.obj, unlock=False) as orch:
        if not orch.vault.enabled:
            console.print(err_vault_not_enabled())
            raise typer.Exit(1)
        try:
            orch.vault.toggle_biometric(read_password("Current password"), enable)
        except AuthenticationFailed:
            console.print(err_wrong_password())
            raise typer.Exit(1)
        except VaultError as exc:
            console.print(format_error(exc))
            raise typer.Exit(1)
    console.print(f"[green]✓[/] Biometric unlock {'enabled' if enable else 'disabled'}")
