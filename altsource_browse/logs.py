from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from textual.logging import TextualHandler

from altsource_browse.errors import ConfigError


def configure_logging(level: str = "WARNING", *, tui: bool) -> None:
    """Route log records to Textual while the TUI runs, else to stderr via Rich."""
    level_name = level.upper()
    if not isinstance(logging.getLevelName(level_name), int):
        raise ConfigError(f"Unknown log level: {level}")

    handler: logging.Handler
    if tui:
        handler = TextualHandler()
    else:
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
    logging.basicConfig(
        level=level_name,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
