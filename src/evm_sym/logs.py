"""Console logging for the command line."""
from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_LEVELS = {0: logging.WARNING, 1: logging.INFO}


def setup_logging(verbosity: int = 0, console: Console | None = None) -> logging.Logger:
    """Route the ``evm_sym`` loggers to a rich handler on stderr.

    ``verbosity`` 0 shows warnings, 1 adds progress, 2 and above adds solver
    and branch detail. Calling it again replaces the handler.
    """
    logger = logging.getLogger("evm_sym")
    level = _LEVELS.get(verbosity, logging.DEBUG)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbosity >= 2,
        rich_tracebacks=True,
    )
    handler.setLevel(level)
    logger.addHandler(handler)
    logger.propagate = False
    return logger
