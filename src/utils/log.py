"""Logging setup."""

import logging

from src.config import LOG_FORMAT, LOG_LEVEL

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), format=LOG_FORMAT)


def get_logger(name):
    """Return the module logger."""
    logger = logging.getLogger(name)
    return logger
