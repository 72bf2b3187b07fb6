"""sanctum status: vault state, library size, model and hardware overview."""

from __future__ import annotations

import typer
from rich.panel import Panel

from sanctum.cli.common import console, open_app

_VAULT_LABELS = {
    "uninitialized": "[yellow]not set up[/]  (run: sanctum init)",
    "disabled": "[yellow]off[/]",
    "locked": "[yellow]locked[/]",
    "unlocked": "[green]unlocked[/]",
}


def status_cmd(ctx: typer.Context) -> None:
    """Show the state of the store, the vault and the selected model."""
    # status never prompts for a password; counts are hidden while locked
    with open_app(ctx.obj, unlock=False) as orch:
        info = orch.status()

    lines = [
        f"Data dir:   {info['data_dir']}",
        f"Encryption: {_VAULT_LABELS.get(info['vault'], info['vault'])}"
        + ("  + biometric" if info["biometric"] else ""),
    ]
    counts = info.get("counts")
    if counts is not None:
        lines.append(
            f"Documents: [bold]{counts.get('documents', 0)}[/]  |  "
            f"Chunks: [bold]{counts.get('chunks', 0):,}[/]  |  "
            f"Conversations: [bold]{counts.get('conversations', 0)}[/]"
        )
    console.print(Panel("\n".join(lines), title="[bold]Library[/]", expand=False))

    if info.get("model"):
        present = "[green]✓ downloaded[/]" if info["model_present"] else "[yellow]✗ not downloaded[/]"
        model_line = f"Model:  [bold]{info['model']}[/] {present}"
    else:
        model_line = f"Model:  [red]{info.get('model_error', 'unknown')}[/]"
    hw = info["hardware"]
    console.print(
        Panel(
            f"{model_line}\n"
            f"Engine: {info['engine']}\n"
            f"Hardware: {hw['cores']} cores, {hw['ram_gb']} GB RAM, GPU {hw['gpu']}"
            + (" [yellow](degraded)[/]" if hw["degraded"] else ""),
            title="[bold]Model[/]",
            expand=False,
        )
    )
