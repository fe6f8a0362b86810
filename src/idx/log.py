"""Logging setup for the idx CLI.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed once, by the CLI, through configure_logging().
"""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

_LOGGER_NAME = "idx"
_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)


def configure_logging(verbosity: int = 0, console: Console | None = None) -> None:
    """Attach a RichHandler to the ``idx`` logger.

    Args:
        verbosity: 0 = WARNING, 1 = INFO, 2+ = DEBUG. ``IDX_LOG_LEVEL`` overrides.
        console: Console to log to; defaults to stderr so command output stays clean.
    """
    env_level = os.environ.get("IDX_LOG_LEVEL")
    level: int | str = env_level.upper() if env_level else _LEVELS[min(verbosity, 2)]

    logging.captureWarnings(True)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers = [handler]
    logger.propagate = False

    # LiteLLM is chatty at INFO.
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


__all__ = ["configure_logging"]
