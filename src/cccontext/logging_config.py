"""Logging setup for cccontext."""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "cccontext"


def setup_logging(debug: bool = False, console: Console | None = None) -> logging.Logger:
    """Attach a Rich handler to the package logger.

    Calling this again replaces the handler instead of stacking a new one,
    so the level can be changed after the config is loaded.

    Args:
        debug: Log at DEBUG level when True, WARNING otherwise.
        console: Console to write to. Defaults to a stderr console so log
            lines never interleave with the live display on stdout.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=debug,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    logger.propagate = False
    return logger
