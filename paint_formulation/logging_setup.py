"""Logging utilities for the formulation service.

This module provides the logging configuration (a rotating file handler
plus stderr) and a helper to obtain module loggers.
"""

import logging
from logging.handlers import RotatingFileHandler

from .config import get_setting

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_configured = False


def configure_logging() -> None:
    """Configure application-wide logging.

    Uses a :class:`~logging.handlers.RotatingFileHandler` that keeps the log
    file to roughly 1MB with up to three backups.  ``LOG_LEVEL`` controls the
    level and an empty ``LOG_FILE`` turns the file handler off.
    """

    global _configured
    if _configured:
        return

    level_name = get_setting("log_level").upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT)

    log_file = get_setting("log_file")
    if log_file:
        file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=3)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger with the configured settings."""
    return logging.getLogger(name)
