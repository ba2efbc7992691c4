"""Utility functions for drivesync."""

import hashlib
import os
from datetime import datetime, timezone
from typing import Optional

# =============================================================================
# Constants
# =============================================================================

# Seconds between two scans of the tracked files
DEFAULT_POLL_INTERVAL: float = 30.0

# Retry configuration for transient remote errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

# Read size used when hashing files from disk
HASH_CHUNK_SIZE: int = 1024 * 1024


# =============================================================================
# Hash calculation utilities
# =============================================================================


def hash_bytes(data: bytes) -> str:
    """Return the SHA-256 hex digest of ``data``.

    Examples:
        >>> hash_bytes(b"hello")[:16]
        '2cf24dba5fb0a30e'
    """
    return hashlib.sha256(data).hexdigest()


def hash_file(path: str, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Return the SHA-256 hex digest of a file's content.

    Args:
        path: Path of the file to hash
        chunk_size: Number of bytes read per iteration

    Returns:
        Hex digest string

    Raises:
        OSError: If the file cannot be read
    """
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


# =============================================================================
# Timestamp utilities
# =============================================================================


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO format timestamp.

    Args:
        timestamp_str: ISO timestamp (e.g., "2025-01-15T10:30:00.000000Z")

    Returns:
        Timezone-aware datetime, or None if parsing fails
    """
    if not timestamp_str:
        return None

    try:
        # The 'Z' suffix indicates UTC time
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        dt = datetime.fromisoformat(timestamp_str)
    except (ValueError, AttributeError, TypeError):
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: Optional[datetime]) -> str:
    """Format a datetime for display in local time, or "never"."""
    if dt is None:
        return "never"
    return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S")


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


def short_hash(value: Optional[str], length: int = 12) -> str:
    """Shorten a hex digest for display."""
    if not value:
        return "-"
    return value[:length]


# =============================================================================
# Path utilities
# =============================================================================


def normalize_path(path: "str | os.PathLike[str]") -> str:
    """Return the absolute, user-expanded form of ``path``.

    Symlinks are not resolved: a tracked link stays keyed by its own path.

    Examples:
        >>> normalize_path("/tmp/../tmp/a.txt")
        '/tmp/a.txt'
    """
    return os.path.abspath(os.path.expanduser(os.fspath(path)))
