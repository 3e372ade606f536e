"""
Size specification helpers.

Converts human-readable size strings as printed by storage tools
(``"10.00GiB"``, ``"4M"``, ``"512 B"``) into integer byte counts.
"""

import re
from decimal import Decimal, InvalidOperation

from blockdev.errors import ValidationError

KiB = 1024
MiB = 1024 * KiB
GiB = 1024 * MiB
TiB = 1024 * GiB
PiB = 1024 * TiB
EiB = 1024 * PiB

_PREFIXES = "KMGTPE"

_SIZE_RE = re.compile(
    r"^\s*(?P<number>[+]?\d+(?:\.\d*)?|[+]?\.\d+)\s*(?P<unit>[a-zA-Z]*)\s*$"
)


def _unit_multiplier(unit: str) -> int:
    """Return the multiplier for a unit suffix or raise KeyError."""
    if unit in ("", "b", "B"):
        return 1

    upper = unit.upper()
    prefix = upper[0]
    if prefix not in _PREFIXES:
        raise KeyError(unit)
    power = _PREFIXES.index(prefix) + 1

    rest = upper[1:]
    # "K" alone and "KiB" are binary (LVM and btrfs conventions),
    # "KB" is the SI kilobyte.
    if rest in ("", "IB", "I"):
        return 1024 ** power
    if rest == "B":
        return 1000 ** power
    raise KeyError(unit)


def size_from_spec(spec: str) -> int:
    """
    Convert a size specification to a number of bytes.

    Args:
        spec: Size string such as "10G", "1.5 TiB", "100MB" or "512"

    Returns:
        Size in bytes (fractional bytes are truncated)

    Raises:
        ValidationError: If the specification cannot be parsed
    """
    if spec is None:
        raise ValidationError("size", spec, "no size specification given")

    match = _SIZE_RE.match(spec)
    if not match:
        raise ValidationError("size", spec, f"failed to parse size spec '{spec}'")

    try:
        number = Decimal(match.group("number"))
        multiplier = _unit_multiplier(match.group("unit"))
    except (InvalidOperation, KeyError):
        raise ValidationError("size", spec, f"failed to parse size spec '{spec}'")

    return int(number * multiplier)
