"""
Shared, mutable per-plugin configuration.

Holds a single optional override string (for example an alternative
LVM configuration) that may be changed from any thread while tool
invocations are running.
"""

from threading import Lock
from typing import Optional


class SharedConfig:
    """
    Lock-guarded optional string value.

    Readers get a copy of the whole value as it was at one point in
    time. Callers issuing several external calls must take a fresh
    snapshot for each of them; consecutive snapshots may differ.
    """

    def __init__(self, name: str = "", value: Optional[str] = None) -> None:
        self.name = name
        self._lock = Lock()
        self._value = value

    def set(self, value: Optional[str]) -> bool:
        """
        Replace the value.

        Args:
            value: New value, or None (or "") to reset to the default

        Returns:
            True (kept for symmetry with the backend operations)
        """
        with self._lock:
            self._value = value or None
        return True

    def get(self) -> str:
        """Return the current value, or an empty string when unset."""
        with self._lock:
            return self._value or ""

    def snapshot(self) -> Optional[str]:
        """Return the current value, or None when unset."""
        with self._lock:
            return self._value

    def __repr__(self) -> str:
        return f"SharedConfig(name={self.name!r}, value={self.snapshot()!r})"
