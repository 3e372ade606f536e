"""
Tool output parser.

Turns a block of captured text into field -> value records using
either regular expressions with named groups or ``key=value`` tokens.

Each unit of output (a line, or the whole text for multi-line rules)
is matched on its own. Units that do not match, or that match without
providing every required field, are skipped: this tolerates headers,
blank lines and unrelated chatter from the tools.

Numeric values are converted leniently: a value that is missing or not
a number becomes ``0`` (with a warning) instead of discarding the whole
record.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Pattern, Sequence, Union

from blockdev.errors import ParseError, ValidationError
from blockdev.utils.sizes import size_from_spec

logger = logging.getLogger(__name__)

ParsedRecord = Dict[str, str]

_LEADING_INT_RE = re.compile(r"^\s*\+?(0[xX][0-9a-fA-F]+|\d+)")


class ParseRule(ABC):
    """
    A named pattern for extracting one record from one unit of output.

    Attributes:
        name: Human-readable rule name (used in error messages)
        required_fields: Fields a unit must provide to count as a match
    """

    per_line = True

    def __init__(self, name: str, required_fields: Sequence[str]):
        self.name = name
        self.required_fields = tuple(required_fields)

    def units(self, text: str) -> List[str]:
        """Split text into the units this rule is matched against."""
        if self.per_line:
            return text.split("\n")
        return [text]

    @abstractmethod
    def extract(self, unit: str) -> Optional[ParsedRecord]:
        """Return the raw fields found in a unit, or None."""

    def match(self, unit: str) -> Optional[ParsedRecord]:
        """
        Match a single unit.

        Returns:
            The record if every required field was extracted, None otherwise
        """
        record = self.extract(unit)
        if record is None:
            return None
        if any(record.get(field) is None for field in self.required_fields):
            return None
        return record

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class RegexRule(ParseRule):
    """
    Regular expression rule.

    Named groups become record fields; groups that did not participate
    in the match are left out of the record.
    """

    def __init__(
        self,
        name: str,
        pattern: Union[str, Pattern[str]],
        required_fields: Optional[Sequence[str]] = None,
        per_line: bool = True,
        flags: int = 0,
    ):
        compiled = re.compile(pattern, flags) if isinstance(pattern, str) else pattern
        if required_fields is None:
            required_fields = list(compiled.groupindex)
        unknown = set(required_fields) - set(compiled.groupindex)
        if unknown:
            raise ValidationError(
                "required_fields", sorted(unknown), f"not named groups of rule '{name}'"
            )
        super().__init__(name, required_fields)
        self.pattern = compiled
        self.per_line = per_line

    def extract(self, unit: str) -> Optional[ParsedRecord]:
        match = self.pattern.search(unit)
        if match is None:
            return None
        return {key: value for key, value in match.groupdict().items() if value is not None}


class KeyValueRule(ParseRule):
    """
    ``key=value`` token rule.

    A unit is split on whitespace; every token containing ``=`` becomes a
    field (split on the first ``=``). Tokens without ``=`` are ignored.
    """

    def __init__(self, name: str, required_fields: Sequence[str]):
        super().__init__(name, required_fields)

    def extract(self, unit: str) -> Optional[ParsedRecord]:
        record: ParsedRecord = {}
        for token in unit.split():
            key, sep, value = token.partition("=")
            if sep and key:
                record[key] = value
        return record or None


def parse(text: str, rule: ParseRule, strict: bool = False) -> List[ParsedRecord]:
    """
    Parse tool output into records.

    Args:
        text: Captured tool output
        rule: Rule to match every unit against
        strict: Fail on any non-blank unit that does not match

    Returns:
        Records in the order of the matching units (empty for empty text)

    Raises:
        ParseError: If text is not empty but no unit matched, or if
            strict and some unit did not match
    """
    if not text or not text.strip():
        return []

    records: List[ParsedRecord] = []
    for unit in rule.units(text):
        record = rule.match(unit)
        if record is not None:
            records.append(record)
        elif strict and unit.strip():
            logger.debug(f"Unmatched unit for rule '{rule.name}': {unit!r}")
            raise ParseError(rule.name, rule=rule.name)

    if not records:
        raise ParseError(rule.name, rule=rule.name)
    return records


def parse_one(text: str, rule: ParseRule) -> ParsedRecord:
    """
    Parse tool output expected to describe a single entity.

    Returns:
        The first valid record

    Raises:
        ParseError: If no unit matched
    """
    for unit in rule.units(text or ""):
        record = rule.match(unit)
        if record is not None:
            return record
    raise ParseError(rule.name, rule=rule.name)


def parse_int(value: Optional[str], field: str = "value") -> int:
    """
    Convert a numeric field, leniently.

    Accepts decimal and ``0x`` hexadecimal numbers and ignores trailing
    garbage after the leading digits. Anything else yields 0.
    """
    if value is None:
        return 0
    match = _LEADING_INT_RE.match(value)
    if not match:
        logger.warning(f"Non-numeric value for '{field}': {value!r}, using 0")
        return 0
    return int(match.group(1), 0) if match.group(1)[:2].lower() == "0x" else int(match.group(1))


def parse_size(value: Optional[str], field: str = "size") -> int:
    """Convert a size field such as "10.00GiB" to bytes, leniently (0 on failure)."""
    if value is None:
        return 0
    try:
        return size_from_spec(value)
    except ValidationError as e:
        logger.warning(f"Invalid size for '{field}': {e.message}, using 0")
        return 0

