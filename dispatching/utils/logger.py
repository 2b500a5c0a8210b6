"""Process-wide logging for the dispatching layers."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from dispatching.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once, at the settings level unless given."""

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()

    logging.basicConfig(level=resolved_level, format=LOG_FORMAT, stream=sys.stdout)
    _LOGGER_INITIALIZED = True


def set_log_level(level: str) -> None:
    """Change the root level after configuration, e.g. from a CLI flag."""
    configure_logging(level)
    logging.getLogger().setLevel(level.upper())


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)
