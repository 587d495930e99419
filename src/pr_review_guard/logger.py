"""Logging setup built on loguru.

Modules log through ``from loguru import logger``; the CLI calls
:func:`setup_logging` once to choose level and output format.
"""

import sys

from loguru import logger

CONSOLE_FORMAT = (
    "<white>{time:YYYY-MM-DD HH:mm:ss}</white>"
    " | <level>{level: <8}</level>"
    " | <cyan>{name}</cyan>"
    " - <level>{message}</level>"
)


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Replace loguru's default sink with a single stderr sink."""
    logger.remove()

    if json_logs:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)
