"""
Centralized logging configuration.
Every engine module logs through get_logger(__name__).
"""
import logging
import logging.handlers
from pathlib import Path
from typing import Optional

from .constants import (
    LOG_LEVEL, LOG_FORMAT, LOG_FILE,
    LOG_MAX_SIZE_MB, LOG_BACKUP_COUNT
)

ROOT_LOGGER_NAME = 'ingest'


def setup_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get or create a configured logger.

    Handlers are attached once to the ``ingest`` root logger; module loggers
    propagate to it, so ``get_logger(__name__)`` is enough everywhere.

    Args:
        name: Logger name. If None, returns the ``ingest`` root logger.

    Returns:
        Configured logging.Logger instance.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)

    if not root.handlers:
        root.setLevel(getattr(logging, LOG_LEVEL))

        console = logging.StreamHandler()
        console.setLevel(logging.INFO)
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(console)

        log_path = Path(LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            LOG_FILE,
            maxBytes=LOG_MAX_SIZE_MB * 1024 * 1024,
            backupCount=LOG_BACKUP_COUNT
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    if not name or name == ROOT_LOGGER_NAME:
        return root

    # Engine modules live under config./core.; nest them below the root
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Alias for setup_logger for convenience.

    Usage:
        from config.logging_config import get_logger
        logger = get_logger(__name__)
    """
    return setup_logger(name)


def set_level(level: str):
    """Change the console verbosity (used by the CLI --log-level flag)."""
    root = setup_logger()
    resolved = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(resolved)
    for handler in root.handlers:
        if not isinstance(handler, logging.handlers.RotatingFileHandler):
            handler.setLevel(resolved)


# Singleton logger for quick imports
# Usage: from config.logging_config import logger
logger = setup_logger()
