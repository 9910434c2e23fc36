"""Logging setup shared by the API service and the sync script."""
import logging
import sys
from typing import Union

LOGGER_NAME = "goalsync"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: Union[int, str, None] = None) -> logging.Logger:
    """
    Initialise the ``goalsync`` logger hierarchy.

    Args:
        level: Log level name or number (defaults to ``settings.log_level``)

    Returns:
        The configured package logger
    """
    if level is None:
        from goalsync.config import settings

        level = settings.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Avoid duplicate handlers when called more than once (reload, tests)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False

    return logger
