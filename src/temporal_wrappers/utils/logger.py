"""
Package-wide logger.

Usage:
    >>> from temporal_wrappers.utils.logger import logger
    >>> logger.debug("message")
"""

import sys
import logging

# ---------------------------------------------------------------------

LOGGER_NAME = "temporal_wrappers"
LOGGER_FORMAT = "%(asctime)s %(levelname)-4s %(filename)s:%(funcName)s:%(lineno)s] %(message)s"

# ---------------------------------------------------------------------


def _create_logger(name: str = LOGGER_NAME, level: int = logging.INFO) -> logging.Logger:
    """Create the package logger with a single stream handler."""
    new_logger = logging.getLogger(name)
    new_logger.setLevel(level)
    if not new_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOGGER_FORMAT))
        new_logger.addHandler(handler)
    new_logger.propagate = False
    return new_logger


logger = _create_logger()

# ---------------------------------------------------------------------
