"""Persistent store of tracked files and their last-synced fingerprints.

Each tracked file is stored as its own JSON document in the state
directory, keyed by a hash of its absolute local path. Documents are
replaced atomically (write to a temporary file, fsync, rename), so a
crash can never leave a half-written record behind.
"""

import hashlib
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..exceptions import FilesystemError, NotTrackedError, StoreCorruptionError
from ..utils import normalize_path, parse_iso_timestamp, utcnow
from .modes import SyncDirection

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass(frozen=True)
class Fingerprint:
    """Lightweight signature of a file's content."""

    size: int
    """File size in bytes"""

    mtime: float
    """Last modification time (Unix timestamp)"""

    sha256: str
    """Hex digest of the content"""

    def to_dict(self) -> dict:
        return {"size": self.size, "mtime": self.mtime, "sha256": self.sha256}

    @classmethod
    def from_dict(cls, data: dict) -> "Fingerprint":
        size = data["size"]
        mtime = data["mtime"]
        sha256 = data["sha256"]
        if not isinstance(size, int) or isinstance(size, bool):
            raise TypeError(f"fingerprint size must be an integer, got {size!r}")
        if not isinstance(mtime, (int, float)) or isinstance(mtime, bool):
            raise TypeError(f"fingerprint mtime must be a number, got {mtime!r}")
        if not isinstance(sha256, str):
            raise TypeError(f"fingerprint sha256 must be a string, got {sha256!r}")
        return cls(size=size, mtime=float(mtime), sha256=sha256)


@dataclass(frozen=True)
class TrackedFile:
    """One local file under sync management.

    Records are immutable; the store is the only place that replaces them.
    """

    local_path: str
    """Absolute local path (unique key)"""

    remote_id: Optional[str] = None
    """Remote object identifier, assigned on first successful push"""

    fingerprint: Optional[Fingerprint] = None
    """Fingerprint of the content at the last successful transfer"""

    direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    """Which side is authoritative"""

    last_synced_at: Optional[datetime] = None
    """Time of the last successful transfer (UTC)"""

    last_error: Optional[str] = None
    """Error of the last failed background push, cleared by a successful transfer"""

    extra: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)
    """Unknown fields read from disk, written back unchanged"""

    def to_dict(self) -> dict:
        """Convert record to dictionary for JSON serialization."""
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "version": STATE_VERSION,
                "local_path": self.local_path,
                "remote_id": self.remote_id,
                "direction": self.direction.value,
                "fingerprint": (
                    self.fingerprint.to_dict() if self.fingerprint else None
                ),
                "last_synced_at": (
                    self.last_synced_at.isoformat() if self.last_synced_at else None
                ),
                "last_error": self.last_error,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TrackedFile":
        """Create TrackedFile from dictionary.

        Fields this version does not know about are kept in ``extra``.

        Raises:
            KeyError, TypeError, ValueError: If the data is malformed
        """
        if not isinstance(data, dict):
            raise TypeError(f"record must be an object, got {type(data).__name__}")

        local_path = data["local_path"]
        if not isinstance(local_path, str) or not local_path:
            raise ValueError("record has no local_path")

        remote_id = data.get("remote_id")
        if remote_id is not None and not isinstance(remote_id, str):
            raise TypeError(f"remote_id must be a string, got {remote_id!r}")

        fingerprint_data = data.get("fingerprint")
        fingerprint = (
            Fingerprint.from_dict(fingerprint_data) if fingerprint_data else None
        )

        last_synced_raw = data.get("last_synced_at")
        last_synced_at = parse_iso_timestamp(last_synced_raw)
        if last_synced_raw and last_synced_at is None:
            raise ValueError(f"invalid last_synced_at: {last_synced_raw!r}")

        last_error = data.get("last_error")
        if last_error is not None and not isinstance(last_error, str):
            raise TypeError(f"last_error must be a string, got {last_error!r}")

        known = {
            "version",
            "local_path",
            "remote_id",
            "direction",
            "fingerprint",
            "last_synced_at",
            "last_error",
        }
        return cls(
            local_path=local_path,
            remote_id=remote_id,
            fingerprint=fingerprint,
            direction=SyncDirection(
                data.get("direction", SyncDirection.BIDIRECTIONAL.value)
            ),
            last_synced_at=last_synced_at,
            last_error=last_error,
            extra={k: v for k, v in data.items() if k not in known},
        )


class FingerprintStore:
    """Owns the canonical TrackedFile records and their persistence.

    The store is loaded once by :meth:`open` and kept in memory; every
    mutation is written through to disk before the call returns. All
    access is serialized by a re-entrant lock.

    Examples:
        >>> store = FingerprintStore(Path("/tmp/state"))
        >>> store.open()
        >>> store.upsert(TrackedFile(local_path="/tmp/a.txt"))
        >>> store.get("/tmp/a.txt").remote_id is None
        True
    """

    def __init__(self, state_dir: Path):
        """Initialize the store.

        Args:
            state_dir: Directory holding one JSON file per tracked file
        """
        self.state_dir = Path(state_dir)
        self._records: dict[str, TrackedFile] = {}
        self._lock = threading.RLock()
        self._opened = False

    def _get_state_key(self, local_path: str) -> str:
        """Generate the file key for a local path."""
        return hashlib.sha256(local_path.encode("utf-8")).hexdigest()[:32]

    def _get_state_file(self, local_path: str) -> Path:
        return self.state_dir / f"{self._get_state_key(local_path)}.json"

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def open(self) -> None:
        """Load all records from disk.

        Raises:
            StoreCorruptionError: If any record cannot be parsed
            FilesystemError: If the state directory cannot be created or read
        """
        with self._lock:
            try:
                self.state_dir.mkdir(parents=True, exist_ok=True)
                state_files = sorted(self.state_dir.glob("*.json"))
            except OSError as e:
                raise FilesystemError(
                    f"Cannot access state directory {self.state_dir}: {e}",
                    path=str(self.state_dir),
                ) from e

            self._remove_stale_temp_files()

            records: dict[str, TrackedFile] = {}
            for state_file in state_files:
                record = self._load_record(state_file)
                if record.local_path in records:
                    raise StoreCorruptionError(
                        f"Duplicate record for {record.local_path} in {state_file}",
                        path=str(state_file),
                    )
                records[record.local_path] = record

            self._records = records
            self._opened = True
            logger.debug(
                f"Loaded {len(records)} tracked file(s) from {self.state_dir}"
            )

    def close(self) -> None:
        """Release the in-memory index.

        Every mutation is already durable, so nothing is flushed here.
        """
        with self._lock:
            self._records = {}
            self._opened = False

    def __enter__(self) -> "FingerprintStore":
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if not self._opened:
            raise RuntimeError("FingerprintStore is not open")

    def _remove_stale_temp_files(self) -> None:
        """Delete temporary files left behind by an interrupted write."""
        for temp_file in self.state_dir.glob(".*.tmp"):
            try:
                temp_file.unlink()
                logger.debug(f"Removed stale temporary state file {temp_file}")
            except OSError as e:
                logger.warning(f"Failed to remove stale state file {temp_file}: {e}")

    def _load_record(self, state_file: Path) -> TrackedFile:
        try:
            with open(state_file, encoding="utf-8") as f:
                data = json.load(f)
            return TrackedFile.from_dict(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StoreCorruptionError(
                f"Unreadable state file {state_file}: {e}", path=str(state_file)
            ) from e
        except (KeyError, TypeError, ValueError) as e:
            raise StoreCorruptionError(
                f"Malformed record in {state_file}: {e}", path=str(state_file)
            ) from e
        except OSError as e:
            raise FilesystemError(
                f"Cannot read state file {state_file}: {e}", path=str(state_file)
            ) from e

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _write_record(self, record: TrackedFile) -> None:
        """Atomically replace the state file of ``record``."""
        state_file = self._get_state_file(record.local_path)
        payload = json.dumps(record.to_dict(), indent=2)

        fd, temp_name = tempfile.mkstemp(
            prefix=f".{state_file.stem}.", suffix=".tmp", dir=self.state_dir
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_name, state_file)
        except OSError as e:
            try:
                os.unlink(temp_name)
            except OSError:
                pass
            raise FilesystemError(
                f"Failed to save state for {record.local_path}: {e}",
                path=str(state_file),
            ) from e

    def _delete_record(self, local_path: str) -> None:
        state_file = self._get_state_file(local_path)
        try:
            state_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise FilesystemError(
                f"Failed to remove state for {local_path}: {e}",
                path=str(state_file),
            ) from e

    def _fsync_dir(self) -> None:
        """Make a rename or unlink in the state directory durable.

        Called after the in-memory index was updated, since the change is
        already visible on disk even when this fails.
        """
        if not hasattr(os, "O_DIRECTORY"):
            return
        try:
            dir_fd = os.open(self.state_dir, os.O_RDONLY | os.O_DIRECTORY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
        except OSError as e:
            raise FilesystemError(
                f"Failed to sync state directory {self.state_dir}: {e}",
                path=str(self.state_dir),
            ) from e

    # -------------------------------------------------------------------------
    # Record access
    # -------------------------------------------------------------------------

    def get(self, local_path: str) -> Optional[TrackedFile]:
        """Return the record for ``local_path``, or None if untracked."""
        with self._lock:
            self._ensure_open()
            return self._records.get(normalize_path(local_path))

    def all(self) -> list[TrackedFile]:
        """Return a snapshot of all records, sorted by local path."""
        with self._lock:
            self._ensure_open()
            return [self._records[path] for path in sorted(self._records)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, local_path: object) -> bool:
        if not isinstance(local_path, (str, os.PathLike)):
            return False
        with self._lock:
            return normalize_path(local_path) in self._records

    def upsert(self, record: TrackedFile) -> None:
        """Insert or replace a record, durably.

        Raises:
            ValueError: If the record would change an assigned remote id
            FilesystemError: If the record cannot be written
        """
        record = replace(record, local_path=normalize_path(record.local_path))
        with self._lock:
            self._ensure_open()
            existing = self._records.get(record.local_path)
            if (
                existing is not None
                and existing.remote_id is not None
                and record.remote_id != existing.remote_id
            ):
                raise ValueError(
                    f"Remote id of {record.local_path} is already "
                    f"{existing.remote_id}, refusing to change it to "
                    f"{record.remote_id}"
                )
            self._write_record(record)
            self._records[record.local_path] = record
            self._fsync_dir()

    def record_transfer(
        self,
        local_path: str,
        remote_id: str,
        fingerprint: Fingerprint,
        direction: Optional[SyncDirection] = None,
    ) -> TrackedFile:
        """Record a successful transfer for ``local_path``.

        Creates the record if the path is new, otherwise updates the
        fingerprint and sync time while keeping the other fields.

        Args:
            local_path: Local path that was transferred
            remote_id: Remote object the bytes were transferred to/from
            fingerprint: Fingerprint of the transferred bytes
            direction: Direction to record (keeps the existing one if None)

        Returns:
            The stored record

        Raises:
            ValueError: If the path is already bound to another remote id
        """
        local_path = normalize_path(local_path)
        with self._lock:
            self._ensure_open()
            existing = self._records.get(local_path)
            if existing is None:
                record = TrackedFile(
                    local_path=local_path,
                    remote_id=remote_id,
                    fingerprint=fingerprint,
                    direction=direction or SyncDirection.BIDIRECTIONAL,
                    last_synced_at=utcnow(),
                )
            else:
                record = replace(
                    existing,
                    remote_id=remote_id,
                    fingerprint=fingerprint,
                    direction=direction or existing.direction,
                    last_synced_at=utcnow(),
                    last_error=None,
                )
            self.upsert(record)
            return record

    def record_failure(self, local_path: str, message: str) -> Optional[TrackedFile]:
        """Save the error of a failed push on the record of ``local_path``.

        Fingerprint and remote id are left alone. Nothing is written if the
        path is not tracked or already carries the same error.

        Returns:
            The stored record, or None if the path is not tracked
        """
        local_path = normalize_path(local_path)
        with self._lock:
            self._ensure_open()
            existing = self._records.get(local_path)
            if existing is None or existing.last_error == message:
                return existing
            record = replace(existing, last_error=message)
            self.upsert(record)
            return record

    def remove(self, local_path: str) -> bool:
        """Remove a record.

        Returns:
            True if a record was removed, False if the path was not tracked
        """
        local_path = normalize_path(local_path)
        with self._lock:
            self._ensure_open()
            if local_path not in self._records:
                return False
            self._delete_record(local_path)
            del self._records[local_path]
            self._fsync_dir()
            logger.debug(f"Removed tracked file {local_path}")
            return True

    def require(self, local_path: str) -> TrackedFile:
        """Return the record for ``local_path``.

        Raises:
            NotTrackedError: If the path is not tracked
        """
        record = self.get(local_path)
        if record is None:
            raise NotTrackedError(normalize_path(local_path))
        return record
