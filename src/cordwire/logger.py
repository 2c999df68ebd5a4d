"""
Logging setup for cordwire.

All modules obtain their logger through ``get_logger(__name__)`` so log lines
carry the originating module name. Output is handled by loguru.
"""

import os
import sys
from typing import Optional

from loguru import logger

LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

logger.configure(extra={"name": "cordwire"})


def get_logger(name: str):
    """Return a loguru logger bound to the given module name."""
    return logger.bind(name=name)


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    Reset loguru sinks and install the cordwire ones.

    Args:
        level: Minimum level for the stderr sink. Defaults to $LOG_LEVEL or INFO.
        log_file: Optional path for a rotating file sink.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, colorize=True)

    if log_file:
        logger.add(log_file, rotation="10 MB", retention=2, level="DEBUG")
