"""
Centralized logger configuration for orderflow.

By default, uses Python's standard logging under the 'orderflow' namespace.

Usage:
    from orderflow.core.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Message")

    # Route everything through a custom logger (e.g. structlog)
    from orderflow.core.logger import set_logger
    set_logger(structlog.get_logger())
"""

import logging
from typing import Any

_custom_logger: Any = None


def set_logger(logger: Any) -> None:
    """
    Set a custom logger for all orderflow components.

    Args:
        logger: Any object with debug/info/warning/error/exception methods
    """
    global _custom_logger
    _custom_logger = logger


def get_logger(name: str = "orderflow") -> Any:
    """
    Get a logger instance.

    Returns the logger installed with set_logger() if any, otherwise a
    standard library logger with the given name.
    """
    if _custom_logger is not None:
        return _custom_logger

    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


def configure_default_logging(  # pragma: no cover
    level: int = logging.INFO,
    format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
) -> None:
    """Configure basic console logging for orderflow."""
    logging.basicConfig(level=level, format=format_string)
    logging.getLogger("orderflow").setLevel(level)
