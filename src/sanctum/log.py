"""Logging setup for the CLI and embedding applications.

Library modules only ever call ``logging.getLogger(__name__)``; handlers are
installed once by the entry point through ``configure_logging()``.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from rich.logging import RichHandler

_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_MAX_LOG_BYTES = 2 * 1024 * 1024
_BACKUP_COUNT = 3


def configure_logging(level: str = "WARNING", log_file: Path | None = None) -> None:
    """Install a rich console handler and, optionally, a rotating file handler.

    Args:
        level: Console log level name (e.g. ``"INFO"``).
        log_file: Path of the rotating log file. The file always records at
            DEBUG level so support requests have full context.
    """
    root = logging.getLogger("sanctum")
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = RichHandler(show_path=False, rich_tracebacks=False, markup=False)
    console.setLevel(level.upper())
    root.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=_MAX_LOG_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        root.addHandler(file_handler)

    # litellm is chatty at INFO
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)
