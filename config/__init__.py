"""
Configuration module for the ingestion batch engine.
"""
from .constants import *
from .logging_config import setup_logger, get_logger, set_level, logger

__all__ = [
    # Logging
    'setup_logger',
    'get_logger',
    'set_level',
    'logger',
    # Constants (all exported via *)
]
