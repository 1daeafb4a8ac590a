"""Centralized logging configuration for larder.

Usage:
    from larder.runtime import get_logger
    logger = get_logger(__name__)

    logger.info("Receipt %s uploaded", receipt_id)

Environment variables:
    LARDER_LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR). Default: INFO
"""

import logging
import os
import sys

DEFAULT_LOG_LEVEL = logging.INFO

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_FORMAT_DEBUG = "%(asctime)s %(levelname)s [%(name)s:%(lineno)d] %(message)s"

ROOT_LOGGER_NAME = "larder"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}

_logging_configured = False


def configure_logging(level: int | None = None) -> None:
    """Configure the ``larder`` logger namespace once per process.

    Args:
        level: Log level to use. If None, reads LARDER_LOG_LEVEL or falls back
               to DEFAULT_LOG_LEVEL.
    """
    global _logging_configured

    if _logging_configured:
        return

    if level is None:
        env_level = os.environ.get("LARDER_LOG_LEVEL", "").upper()
        level = _LEVELS.get(env_level, DEFAULT_LOG_LEVEL)

    log_format = LOG_FORMAT_DEBUG if level == logging.DEBUG else LOG_FORMAT

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(log_format))

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    root_logger.propagate = False

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name.

    Module names already inside the package (``larder.x``) are used as-is so
    the hierarchy stays ``larder.runtime.receipt_server`` rather than doubling
    the prefix.
    """
    configure_logging()

    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def set_log_level(level: int) -> None:
    """Change the log level at runtime."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    fmt = LOG_FORMAT_DEBUG if level == logging.DEBUG else LOG_FORMAT
    for handler in logger.handlers:
        handler.setFormatter(logging.Formatter(fmt))


def level_from_name(name: str) -> int:
    """Map a level name such as ``debug`` to its logging constant."""
    try:
        return _LEVELS[name.strip().upper()]
    except KeyError:
        raise ValueError(f"Unknown log level: {name}") from None
