"""sanctum models: list, recommend, download and remove local models."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.markup import escape
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from sanctum.cli.common import console, load_settings
from sanctum.cli.errors import format_error
from sanctum.errors import ModelDownloadFailed, ModelNotFound
from sanctum.hardware import detect
from sanctum.models import ModelRegistry, download, load_catalog

models_app = typer.Typer(
    name="models",
    help="Manage local language models (list, recommend, download, remove).",
    add_completion=False,
)

GIB = 1024**3


def _registry(ctx: typer.Context) -> tuple[ModelRegistry, float]:
    cfg = load_settings(ctx.obj)
    try:
        catalog = load_catalog(cfg.models.catalog_file)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Error:[/] Model catalog could not be read.\n  {escape(str(exc))}")
        raise typer.Exit(1)
    return ModelRegistry(cfg.model_dir, catalog), cfg.models.ram_safety_margin


@models_app.command("list")
def models_list_cmd(ctx: typer.Context) -> None:
    """List catalog models with download state and fit for this machine."""
    registry, margin = _registry(ctx)
    profile = detect()

    table = Table(title="Models", show_header=True, header_style="bold")
    table.add_column("Name", style="bold")
    table.add_column("Tier", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Min RAM", justify="right")
    table.add_column("Fit")
    table.add_column("Local")
    for descriptor in registry.catalog:
        compat = registry.compatibility(profile, descriptor, margin)
        if registry.is_present(descriptor):
            local = "[green]✓[/]"
        elif registry.partial_bytes(descriptor):
            pct = registry.partial_bytes(descriptor) / descriptor.size_bytes * 100
            local = f"[yellow]partial {pct:.0f}%[/]"
        else:
            local = ""
        table.add_row(
            descriptor.name,
            str(descriptor.quality_tier),
            f"{descriptor.size_bytes / GIB:.1f} GB",
            f"{descriptor.min_ram_bytes / GIB:.0f} GB",
            f"{compat.level} [dim]({escape(compat.reason)})[/]",
            local,
        )
    console.print(table)


@models_app.command("recommend")
def models_recommend_cmd(ctx: typer.Context) -> None:
    """Show the best model for this machine."""
    registry, margin = _registry(ctx)
    profile = detect()
    descriptor = registry.recommend(profile, margin)
    console.print(
        f"Recommended: [bold]{descriptor.name}[/] "
        f"({descriptor.size_bytes / GIB:.1f} GB, tier {descriptor.quality_tier}) "
        f"for {profile.total_ram_gb:.0f} GB RAM"
    )
    if not registry.is_present(descriptor):
        console.print(f"  Run:  sanctum models download {descriptor.name}")


@models_app.command("download")
def models_download_cmd(
    ctx: typer.Context,
    name: Annotated[
        str | None,
        typer.Argument(help="Model name (default: the recommended model)."),
    ] = None,
) -> None:
    """Download a model. Interrupted downloads resume where they stopped."""
    registry, margin = _registry(ctx)
    try:
        descriptor = registry.get(name) if name else registry.recommend(detect(), margin)
    except ModelNotFound as exc:
        console.print(format_error(exc))
        raise typer.Exit(1)

    status = "downloading"
    with Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as prog:
        task = prog.add_task(descriptor.name, total=descriptor.size_bytes)
        try:
            for event in download(descriptor, registry.cache_dir):
                status = event.status
                prog.update(task, completed=event.downloaded_bytes, total=event.total_bytes)
        except KeyboardInterrupt:
            # the partial file is kept; the next run resumes from it
            status = "cancelled"
        except ModelDownloadFailed as exc:
            prog.stop()
            console.print(format_error(exc))
            raise typer.Exit(1)

    if status == "cancelled":
        console.print("[yellow]Download paused.[/] Run the same command again to resume.")
        raise typer.Exit(130)
    console.print(f"[green]✓[/] {descriptor.name} ready at {escape(str(registry.path_for(descriptor)))}")


@models_app.command("remove")
def models_remove_cmd(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Model name.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
) -> None:
    """Delete a downloaded model (and any partial download)."""
    registry, _ = _registry(ctx)
    try:
        descriptor = registry.get(name)
    except ModelNotFound as exc:
        console.print(format_error(exc))
        raise typer.Exit(1)
    if not yes and not typer.confirm(f"Delete {descriptor.name}?", default=False):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)
    if registry.remove_local(descriptor):
        console.print(f"[green]✓[/] Removed {descriptor.name}")
    else:
        console.print(f"[yellow]{descriptor.name} is not downloaded.[/]")
