"""
blockdev utilities

Logging and size helpers.
"""

from blockdev.utils.logger import (
    configure_logging,
    emit,
    LogFunc,
    DEFAULT_FORMAT,
)
from blockdev.utils.sizes import size_from_spec

__all__ = [
    "configure_logging",
    "emit",
    "LogFunc",
    "DEFAULT_FORMAT",
    "size_from_spec",
]
