"""
blockdev logging utilities

Standard logging configuration for the library and a bridge from
stdlib logging to caller-supplied log sinks.
"""

import logging
from typing import Callable, Optional

# Default logging format
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Caller-supplied sink: receives a logging level and a message
LogFunc = Callable[[int, str], None]

logger = logging.getLogger(__name__)


def configure_logging(
    level: int = logging.INFO,
    format: str = DEFAULT_FORMAT,
    file_path: Optional[str] = None
) -> None:
    """
    Configure root logging for the application.

    Args:
        level: Log level
        format: Log format string
        file_path: Optional file path for file logging
    """
    formatter = logging.Formatter(format)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if file_path:
        file_handler = logging.FileHandler(file_path)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def emit(log_func: Optional[LogFunc], level: int, message: str) -> None:
    """
    Forward a message to a caller-supplied log sink.

    Whatever the sink does (including raising), the caller keeps going.

    Args:
        log_func: Sink to call, or None
        level: Logging level (logging.DEBUG, logging.WARNING, ...)
        message: Message text
    """
    if log_func is None:
        return
    try:
        log_func(level, message)
    except Exception as e:
        logger.debug(f"Log function raised {type(e).__name__}: {e}")
