"""Shared CLI helpers: exit codes, console and logging setup."""

import logging

from rich.console import Console
from rich.logging import RichHandler

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_CONNECTION_ERROR = 3

# Shared console for output
console = Console()


def setup_logging(level: str = "info") -> None:
    """Route log records through rich at the given level.

    Args:
        level: Level name (debug, info, warning, error), case-insensitive.

    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )
    # uvicorn's access log duplicates our own connect/disconnect lines
    logging.getLogger("uvicorn.access").setLevel(max(numeric, logging.WARNING))
