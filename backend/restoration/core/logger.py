"""Logging setup for the ``restoration`` logger hierarchy.

Modules log through ``logging.getLogger(__name__)``; this module installs
the single handler on the package logger and lets the API change the level
at runtime.
"""

import logging
import sys

LOGGER_NAME = "restoration"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_LEVELS = ("critical", "error", "warning", "info", "debug")


def _resolve_level(level: str) -> int:
    if level.lower() not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level}")
    return logging.getLevelNamesMapping()[level.upper()]


def configure_logging(level: str = "info") -> logging.Logger:
    """Install a stream handler on the package logger.

    Calling this again only updates the level, so application factories can
    run more than once in the same process (tests do).

    Args:
        level: One of ``LOG_LEVELS``, case-insensitive.

    Returns:
        The ``restoration`` logger.

    Raises:
        ValueError: If the level name is unknown.
    """
    package_logger = logging.getLogger(LOGGER_NAME)
    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(handler)
    package_logger.setLevel(_resolve_level(level))
    return package_logger


def set_log_level(level: str) -> None:
    """Change the level of the package logger at runtime."""
    logging.getLogger(LOGGER_NAME).setLevel(_resolve_level(level))
