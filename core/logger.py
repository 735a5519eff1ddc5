"""
Logging configuration for the carbon ledger service.
Each module gets a named logger writing to stdout at the LOG_LEVEL level.
"""
import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def resolve_level(level: Optional[str] = None) -> int:
    """Numeric level for an explicit name, else LOG_LEVEL; unknown names mean INFO."""
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    return getattr(logging, name) if name in LEVELS else logging.INFO


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Return the named logger with a stdout handler attached once.

    Args:
        name: Logger name (usually __name__)
        level: Level name overriding LOG_LEVEL

    Returns:
        Configured logger instance
    """
    numeric_level = resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    if not any(getattr(h, "_carbon_ledger", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._carbon_ledger = True
        logger.addHandler(handler)

    for handler in logger.handlers:
        handler.setLevel(numeric_level)

    return logger
