"""Filesystem access for sync operations."""

import fnmatch
import logging
import os
import stat as stat_module
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..exceptions import FilesystemError
from ..utils import hash_bytes, hash_file
from .state import Fingerprint

logger = logging.getLogger(__name__)


@dataclass
class LocalFile:
    """Represents a local file with metadata."""

    path: Path
    """Absolute path to the file"""

    size: int
    """File size in bytes"""

    mtime: float
    """Last modification time (Unix timestamp)"""

    file_id: int = 0
    """Filesystem file identifier (inode on Unix, file index on Windows)"""

    @classmethod
    def from_stat(cls, file_path: Path, st: os.stat_result) -> "LocalFile":
        return cls(
            path=file_path,
            size=st.st_size,
            mtime=st.st_mtime,
            file_id=st.st_ino,
        )

    @classmethod
    def from_path(cls, file_path: Path) -> "LocalFile":
        """Create LocalFile from a path.

        Raises:
            OSError: If the file cannot be stat'ed
        """
        return cls.from_stat(file_path, file_path.stat())

    def fingerprint_for(self, data: bytes) -> Fingerprint:
        """Build a fingerprint from bytes read after this stat was taken."""
        return Fingerprint(size=len(data), mtime=self.mtime, sha256=hash_bytes(data))


class LocalFilesystem:
    """Reads and writes local files on behalf of the sync engine.

    Every failure is reported as :class:`FilesystemError`, except a missing
    file in :meth:`stat`, which returns None so callers can tell a deleted
    file from an unreadable one.
    """

    def stat(self, path: str) -> Optional[LocalFile]:
        """Return metadata for a regular file.

        Returns:
            LocalFile, or None if nothing exists at ``path``

        Raises:
            FilesystemError: If the path cannot be stat'ed or is not a file
        """
        file_path = Path(path)
        try:
            st = file_path.stat()
        except (FileNotFoundError, NotADirectoryError):
            return None
        except OSError as e:
            raise FilesystemError(f"Cannot stat {path}: {e}", path=path) from e

        if not stat_module.S_ISREG(st.st_mode):
            raise FilesystemError(f"Not a regular file: {path}", path=path)
        return LocalFile.from_stat(file_path, st)

    def is_readable(self, path: str) -> bool:
        """Check whether the current process may read ``path``."""
        return os.access(path, os.R_OK)

    def read_bytes(self, path: str) -> bytes:
        """Read the full content of a file.

        Raises:
            FilesystemError: If the file cannot be read
        """
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise FilesystemError(f"Cannot read {path}: {e}", path=path) from e

    def hash_file(self, path: str) -> str:
        """Return the SHA-256 digest of a file's content.

        Raises:
            FilesystemError: If the file cannot be read
        """
        try:
            return hash_file(path)
        except OSError as e:
            raise FilesystemError(f"Cannot read {path}: {e}", path=path) from e

    def write_bytes(self, path: str, data: bytes) -> LocalFile:
        """Atomically write ``data`` to ``path``, creating parent directories.

        Returns:
            LocalFile describing the written file

        Raises:
            FilesystemError: If the destination cannot be written
        """
        file_path = Path(path)
        temp_name: Optional[str] = None
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{file_path.name}.", suffix=".part", dir=file_path.parent
            )
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_name, file_path)
            temp_name = None
            return LocalFile.from_path(file_path)
        except OSError as e:
            raise FilesystemError(f"Cannot write {path}: {e}", path=path) from e
        finally:
            if temp_name is not None:
                try:
                    os.unlink(temp_name)
                except OSError:
                    pass


class DirectoryScanner:
    """Lists the files below a directory for directory pushes.

    Examples:
        >>> scanner = DirectoryScanner(ignore_patterns=["*.tmp"])
        >>> files = scanner.scan_local(Path("/home/user/notes"))
    """

    def __init__(
        self,
        ignore_patterns: Optional[list[str]] = None,
        exclude_dot_files: bool = False,
    ):
        """Initialize directory scanner.

        Args:
            ignore_patterns: Glob patterns matched against the file name and
                the path relative to the scanned directory
            exclude_dot_files: Whether to skip files/folders starting with dot
        """
        self.ignore_patterns = ignore_patterns or []
        self.exclude_dot_files = exclude_dot_files

    def should_ignore(self, path: Path, base_path: Path) -> bool:
        """Check if a path should be ignored based on patterns."""
        if self.exclude_dot_files and path.name.startswith("."):
            return True

        relative_path = path.relative_to(base_path).as_posix()
        for pattern in self.ignore_patterns:
            if fnmatch.fnmatch(path.name, pattern) or fnmatch.fnmatch(
                relative_path, pattern
            ):
                logger.debug(f"Ignoring {relative_path} (matches {pattern})")
                return True
        return False

    def scan_local(
        self, directory: Path, base_path: Optional[Path] = None
    ) -> list[LocalFile]:
        """Recursively scan a local directory.

        Unreadable entries are skipped with a warning.

        Args:
            directory: Directory to scan
            base_path: Base path for ignore matching (defaults to directory)

        Returns:
            List of LocalFile objects, sorted by path
        """
        if base_path is None:
            base_path = directory

        files: list[LocalFile] = []
        try:
            entries = sorted(directory.iterdir())
        except PermissionError as e:
            logger.warning(f"Permission denied: {e}")
            return files

        for item in entries:
            if self.should_ignore(item, base_path):
                continue

            if item.is_symlink() and item.is_dir():
                continue
            if item.is_file():
                try:
                    files.append(LocalFile.from_path(item))
                except OSError as e:
                    logger.warning(f"Skipping unreadable file {item}: {e}")
            elif item.is_dir():
                files.extend(self.scan_local(item, base_path))

        return files
