"""Sync directions for tracked files."""

from enum import Enum


class SyncDirection(str, Enum):
    """Which side is authoritative for a tracked file."""

    PUSH = "push"
    """Local file is authoritative"""

    PULL = "pull"
    """Remote object is authoritative"""

    BIDIRECTIONAL = "bidirectional"
    """Default: push-only, remote overwritten on every push"""

    @property
    def allows_upload(self) -> bool:
        """Whether local changes are pushed automatically."""
        return self in (SyncDirection.PUSH, SyncDirection.BIDIRECTIONAL)

    @classmethod
    def from_string(cls, value: str) -> "SyncDirection":
        """Parse a direction name, case-insensitively.

        Raises:
            ValueError: If the value is not a known direction
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid = ", ".join(d.value for d in cls)
            raise ValueError(
                f"Unknown sync direction {value!r} (expected one of: {valid})"
            ) from None
