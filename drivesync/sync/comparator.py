"""Change detection for tracked files."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..exceptions import FilesystemError
from .scanner import LocalFilesystem, LocalFile
from .state import TrackedFile

logger = logging.getLogger(__name__)


class ChangeStatus(str, Enum):
    """State of a tracked file relative to its last successful sync."""

    UNCHANGED = "unchanged"
    """Content matches the last-synced fingerprint"""

    MODIFIED = "modified"
    """Content differs from the last-synced fingerprint"""

    NEVER_SYNCED = "never_synced"
    """Record has no fingerprint yet"""

    UNREADABLE = "unreadable"
    """File exists but cannot be read"""

    DELETED = "deleted"
    """File no longer exists on disk"""

    @property
    def is_dirty(self) -> bool:
        """Whether the remote copy is stale and must be re-uploaded."""
        return self in (ChangeStatus.MODIFIED, ChangeStatus.NEVER_SYNCED)


@dataclass
class ChangeDecision:
    """Result of comparing one tracked file with the filesystem."""

    status: ChangeStatus
    """Detected status"""

    reason: str
    """Human-readable reason for this status"""

    tracked: TrackedFile
    """Record the file was compared against"""

    local_file: Optional[LocalFile] = None
    """Current file metadata (if the file could be stat'ed)"""

    @property
    def local_path(self) -> str:
        return self.tracked.local_path

    @property
    def is_dirty(self) -> bool:
        return self.status.is_dirty


class ChangeDetector:
    """Compares tracked files with the filesystem to find dirty files.

    Size is compared first and a size mismatch alone marks the file dirty.
    Equal size and modification time is taken as unchanged without reading
    the file. When only the modification time differs, the content hash
    decides, so touching a file does not trigger an upload.
    """

    def __init__(self, filesystem: Optional[LocalFilesystem] = None):
        """Initialize change detector.

        Args:
            filesystem: Filesystem access (defaults to the real filesystem)
        """
        self.filesystem = filesystem or LocalFilesystem()

    def detect(self, records: Iterable[TrackedFile]) -> list[ChangeDecision]:
        """Compare every record with the current filesystem state.

        Args:
            records: Snapshot of the tracked files

        Returns:
            One ChangeDecision per record, in input order
        """
        return [self.check(record) for record in records]

    def check(self, record: TrackedFile) -> ChangeDecision:
        """Compare a single tracked file with the filesystem."""
        path = record.local_path

        try:
            local_file = self.filesystem.stat(path)
        except FilesystemError as e:
            return ChangeDecision(ChangeStatus.UNREADABLE, str(e), record)

        if local_file is None:
            return ChangeDecision(
                ChangeStatus.DELETED, "File no longer exists on disk", record
            )

        if not self.filesystem.is_readable(path):
            return ChangeDecision(
                ChangeStatus.UNREADABLE,
                "File is not readable",
                record,
                local_file,
            )

        fingerprint = record.fingerprint
        if fingerprint is None:
            return ChangeDecision(
                ChangeStatus.NEVER_SYNCED,
                "No fingerprint recorded",
                record,
                local_file,
            )

        if local_file.size != fingerprint.size:
            return ChangeDecision(
                ChangeStatus.MODIFIED,
                f"Size changed ({fingerprint.size} -> {local_file.size})",
                record,
                local_file,
            )

        if local_file.mtime == fingerprint.mtime:
            return ChangeDecision(
                ChangeStatus.UNCHANGED,
                "Same size and modification time",
                record,
                local_file,
            )

        try:
            current_hash = self.filesystem.hash_file(path)
        except FilesystemError as e:
            return ChangeDecision(ChangeStatus.UNREADABLE, str(e), record, local_file)

        if current_hash != fingerprint.sha256:
            return ChangeDecision(
                ChangeStatus.MODIFIED, "Content hash changed", record, local_file
            )

        logger.debug(f"{path} was touched but its content is unchanged")
        return ChangeDecision(
            ChangeStatus.UNCHANGED,
            "Modification time changed but content is identical",
            record,
            local_file,
        )


def dirty_paths(decisions: Iterable[ChangeDecision]) -> set[str]:
    """Return the local paths of all dirty decisions."""
    return {decision.local_path for decision in decisions if decision.is_dirty}
