"""
Centralized logging configuration using loguru.
"""
from __future__ import annotations

import sys
from typing import Any

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def configure_logging(level: str = "INFO") -> None:
    """
    Replace loguru's default handler with the proxy's stderr sink.

    Raises:
        ValueError: If the level is unknown to loguru; the current handler is kept
    """
    logger.level(level.upper())
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level.upper(), colorize=True)


configure_logging()


def get_logger(name: str = __name__) -> Any:
    """
    Get a logger bound to a specific module name.

    Usage:
        from skproxy.logging import get_logger
        logger = get_logger(__name__)
        logger.info("Hello from this module")
    """
    return logger.bind(name=name)
