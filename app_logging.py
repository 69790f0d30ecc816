# app_logging.py
"""
Logger setup for the entry points (Flask app, CLI scripts).

Library modules just use logging.getLogger(__name__); whatever handler the
entry point attaches here picks their records up.

Do not log amounts, customer names/addresses or PDF bytes. Invoice numbers,
page counts and file paths are fine.
"""

import logging
from typing import Optional, Union


def get_logger(name: str, level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    Get a configured logger.

    Args:
        name: Logger name (typically __name__, or "" for the root logger)
        level: Optional logging level, int or name like "DEBUG" (defaults to INFO)
    """
    logger = logging.getLogger(name)

    if level is None:
        level = logging.INFO
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger.setLevel(level)

    # Add handler if not already configured (avoid duplicate handlers)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
