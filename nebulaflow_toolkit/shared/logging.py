"""
Lightweight logging utilities for the NebulaFlow toolkit.

Provides a consistent logger with a simple console handler and optional
log-level override via the NF_LOG_LEVEL environment variable.
"""

import logging
import os
from typing import Optional, Union

_DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_ROOT_NAME = "nebulaflow_toolkit"


def _resolve_level(level: Union[str, int, None]) -> int:
    if isinstance(level, int):
        return level
    level_str = (level or os.getenv("NF_LOG_LEVEL", "INFO")).upper()
    return getattr(logging, level_str, logging.INFO)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a configured logger with a stream handler.

    The first time a logger is created, a StreamHandler is attached with a
    plain-text formatter. Subsequent calls reuse the existing configuration.

    Log level can be overridden with the NF_LOG_LEVEL environment variable.
    """
    logger = logging.getLogger(name if name else _ROOT_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_DEFAULT_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(_resolve_level(None))

    return logger


def set_log_level(level: Union[str, int]) -> None:
    """Apply a level to every toolkit logger created so far (CLI --verbose)."""
    resolved = _resolve_level(level)
    for name, logger in logging.Logger.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and name.startswith(_ROOT_NAME):
            logger.setLevel(resolved)
