"""
External tool execution layer

Command executor, output parser and shared tool configuration.
"""

from blockdev.execution.executor import CommandExecutor
from blockdev.execution.parser import (
    KeyValueRule,
    ParseRule,
    ParsedRecord,
    RegexRule,
    parse,
    parse_int,
    parse_one,
    parse_size,
)
from blockdev.execution.shared import SharedConfig

__all__ = [
    "CommandExecutor",
    "KeyValueRule",
    "ParseRule",
    "ParsedRecord",
    "RegexRule",
    "parse",
    "parse_int",
    "parse_one",
    "parse_size",
    "SharedConfig",
]
