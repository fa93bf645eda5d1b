"""
Logging setup for lostcloud.

All modules obtain their logger through ``get_logger(__name__)``; sinks are
configured once by ``setup_logging`` at process start.
"""

import sys
from typing import Optional

from loguru import logger as _logger

DEFAULT_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> - <level>{message}</level>"
)

_logger.configure(extra={"component": "lostcloud"})


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Replace the default loguru sinks.

    Args:
        level: Minimum level for all sinks.
        log_file: Optional path of a rotating log file.
    """
    _logger.remove()
    _logger.add(sys.stderr, level=level.upper(), format=DEFAULT_FORMAT)
    if log_file:
        _logger.add(
            log_file,
            level=level.upper(),
            format=DEFAULT_FORMAT,
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )


def get_logger(name: str):
    """Return a logger bound to the given component name."""
    return _logger.bind(component=name)
