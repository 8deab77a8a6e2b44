"""Console output and logging for aicore.

Library modules log through `get_logger(__name__)` and never install handlers.
The CLI calls `setup_logging()` once, which attaches a single Rich handler to
the `aicore` logger on stderr so that command output on stdout stays clean.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

LOGGER_NAME = "aicore"

console = Console()
stderr_console = Console(stderr=True)


def _resolve_level(level: str | int, verbose: bool) -> int:
    if verbose:
        return logging.DEBUG
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: str | int = logging.INFO, verbose: bool = False) -> logging.Logger:
    """Route `aicore.*` records to stderr through Rich.

    Calling this again replaces the handler rather than stacking a second one.
    Handlers on the root logger belong to the host application and are left alone.
    """
    numeric_level = _resolve_level(level, verbose)
    logger = logging.getLogger(LOGGER_NAME)

    for existing in [h for h in logger.handlers if isinstance(h, RichHandler)]:
        logger.removeHandler(existing)

    # provider ids and item titles end up in messages; never read them as markup
    handler = RichHandler(
        console=stderr_console,
        markup=False,
        rich_tracebacks=True,
        show_path=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(numeric_level)
    logger.propagate = False
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or LOGGER_NAME)


def print_error(message: str, detail: str | None = None) -> None:
    """Print a red error line, with optional plain detail underneath."""
    console.print(f"[red]{escape(message)}[/red]")
    if detail:
        console.print(escape(detail))
