"""Shared CLI plumbing: settings, opening the store, vault unlocking."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console

from sanctum.cli.errors import err_config, err_wrong_password, format_error
from sanctum.config import ConfigError, SanctumConfig, load_config
from sanctum.errors import SanctumError
from sanctum.log import configure_logging
from sanctum.rag.orchestrator import Orchestrator
from sanctum.vault import VaultStatus

console = Console()
logger = logging.getLogger(__name__)

PASSWORD_ENV = "SANCTUM_PASSWORD"
_UNLOCK_ATTEMPTS = 3


@dataclass
class CliState:
    data_dir: Path | None = None
    log_level: str | None = None


def load_settings(state: CliState | None) -> SanctumConfig:
    """Load config, apply CLI flags on top, and configure logging."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    if state is not None and state.data_dir is not None:
        cfg.storage.data_dir = state.data_dir.expanduser()
    if state is not None and state.log_level:
        cfg.logging.level = state.log_level
    configure_logging(cfg.logging.level, cfg.log_path)
    return cfg


def build_orchestrator(cfg: SanctumConfig) -> Orchestrator:
    """Open the store; replaced in tests to bind fake engines."""
    return Orchestrator.open(cfg, biometric_prompt=_confirm_biometric)


def _confirm_biometric(reason: str) -> bool:
    return typer.confirm(f"{reason}?", default=True)


def read_password(prompt: str = "Vault password", *, confirm: bool = False) -> str:
    """Return the password from SANCTUM_PASSWORD, or prompt without echo."""
    env = os.environ.get(PASSWORD_ENV)
    if env:
        return env
    return typer.prompt(prompt, hide_input=True, confirmation_prompt=confirm)


@contextmanager
def open_app(state: CliState | None, *, unlock: bool = True) -> Iterator[Orchestrator]:
    """Open the orchestrator for one command; SanctumErrors become exit code 1."""
    cfg = load_settings(state)
    try:
        orch = build_orchestrator(cfg)
    except (SanctumError, ValueError) as exc:
        _fail(exc)
    try:
        if unlock and orch.vault.status is VaultStatus.LOCKED:
            unlock_vault(orch)
        yield orch
    except (SanctumError, ValueError) as exc:
        _fail(exc)
    finally:
        orch.close()


def unlock_vault(orch: Orchestrator) -> None:
    """Unlock with biometrics when enrolled, otherwise with the password."""
    if orch.vault.biometric_enabled and orch.unlock_with_biometric():
        return
    attempts = 1 if os.environ.get(PASSWORD_ENV) else _UNLOCK_ATTEMPTS
    for _ in range(attempts):
        if orch.unlock(read_password()):
            return
        console.print("[yellow]Wrong password.[/]")
    console.print(err_wrong_password())
    raise typer.Exit(1)


def _fail(exc: Exception) -> NoReturn:
    if isinstance(exc, SanctumError):
        console.print(format_error(exc))
    else:
        console.print(f"[red]Error:[/] {exc}")
    logger.debug("Command failed", exc_info=exc)
    raise typer.Exit(1)
