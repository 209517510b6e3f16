"""Logging setup for clinirag.

Library modules log through ``logging.getLogger(__name__)`` and never
configure handlers themselves; the CLI calls ``setup_logging()`` once.
"""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

_ROOT_LOGGER = "clinirag"


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    console: Console | None = None,
) -> logging.Logger:
    """Configure the ``clinirag`` logger.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional file path; records are also written there.
        console: Rich console for the terminal handler (stderr by default).

    Returns:
        The configured ``clinirag`` logger.
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()
    logger.propagate = False

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)

    return logger
