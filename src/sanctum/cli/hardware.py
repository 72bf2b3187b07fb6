"""sanctum hardware: show the detected hardware and what it means for models."""

from __future__ import annotations

import typer
from rich.panel import Panel
from rich.table import Table

from sanctum.cli.common import console, load_settings
from sanctum.hardware import detect, execution_parameters
from sanctum.models import ModelRegistry, load_catalog


def hardware_cmd(ctx: typer.Context) -> None:
    """Show detected hardware, model compatibility and execution parameters."""
    cfg = load_settings(ctx.obj)
    profile = detect()
    registry = ModelRegistry(cfg.model_dir, load_catalog(cfg.models.catalog_file))

    vram = f"{profile.gpu_vram_bytes / 1024**3:.1f} GB" if profile.gpu_vram_bytes else "n/a"
    lines = [
        f"CPU cores: [bold]{profile.core_count}[/]",
        f"RAM:       [bold]{profile.total_ram_gb:.1f} GB[/]",
        f"GPU:       [bold]{profile.gpu_vendor}[/] (VRAM {vram})",
    ]
    if profile.degraded:
        lines.append("[yellow]⚠ Detection was incomplete; conservative values shown.[/]")
    console.print(Panel("\n".join(lines), title="[bold]Hardware[/]", expand=False))

    recommended = registry.recommend(profile, cfg.models.ram_safety_margin)
    table = Table(title="Models", show_header=True, header_style="bold")
    table.add_column("Model", style="bold")
    table.add_column("Fit")
    table.add_column("GPU layers", justify="right")
    table.add_column("Context", justify="right")
    table.add_column("Threads", justify="right")
    for descriptor in registry.catalog:
        compat = registry.compatibility(profile, descriptor, cfg.models.ram_safety_margin)
        params = execution_parameters(profile, descriptor)
        name = descriptor.name + (" [green]★[/]" if descriptor == recommended else "")
        table.add_row(
            name,
            _fit_label(compat.level),
            f"{params.gpu_layers}/{descriptor.layer_count}",
            str(params.context_window),
            str(params.thread_count),
        )
    console.print(table)


def _fit_label(level: str) -> str:
    return {
        "recommended": "[green]recommended[/]",
        "compatible": "[green]compatible[/]",
        "limited": "[yellow]limited[/]",
    }.get(level, "[red]too large[/]")
