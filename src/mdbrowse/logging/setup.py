"""Process-wide diagnostic logging setup."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR")

_PACKAGE_LOGGER = "mdbrowse"


def configure_logging(level: str = "WARNING", stream: TextIO | None = None) -> logging.Logger:
    """Send ``mdbrowse.*`` diagnostics to stderr; stdout carries responses."""
    normalized = level.upper()
    if normalized not in LEVEL_NAMES:
        raise ValueError(f"Unknown log level: {level}")
    logger = logging.getLogger(_PACKAGE_LOGGER)
    for existing in list(logger.handlers):
        if getattr(existing, "_mdbrowse_handler", False):
            logger.removeHandler(existing)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._mdbrowse_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(normalized)
    return logger
