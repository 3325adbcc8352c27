"""Console logging for the runner process."""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(name)s: %(message)s"


def configure_logging(*, verbose: bool = False, console: Console | None = None) -> None:
    """Route the root logger through a single rich handler.

    ``VOD_RUNNER_LOG_LEVEL`` overrides the level unless ``verbose`` is set.
    """

    level_name = "DEBUG" if verbose else os.getenv("VOD_RUNNER_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger()
    for existing in [h for h in root_logger.handlers if isinstance(h, RichHandler)]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    # SQLAlchemy and Alembic stay quiet unless debugging.
    for noisy in ("sqlalchemy", "alembic"):
        logging.getLogger(noisy).setLevel(logging.DEBUG if verbose else logging.WARNING)
