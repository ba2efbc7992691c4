"""Push and pull operations against the remote storage service."""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional, Protocol

from ..exceptions import (
    ConfigError,
    FilesystemError,
    NotTrackedError,
    TransferCancelledError,
    TransferError,
    TransferInProgressError,
)
from ..utils import normalize_path
from .modes import SyncDirection
from .scanner import LocalFilesystem
from .state import Fingerprint, FingerprintStore, TrackedFile

logger = logging.getLogger(__name__)


class RemoteStorage(Protocol):
    """Operations the transfer engine needs from the remote service.

    Implementations raise :class:`TransferError` (or a subclass) for
    network, authentication, quota and not-found failures.
    """

    def create_object(self, data: bytes, name: str) -> str: ...

    def update_object(self, remote_id: str, data: bytes) -> None: ...

    def download_object(self, remote_id: str) -> bytes: ...

    def get_object(self, remote_id: str) -> dict[str, Any]: ...


class PathLocks:
    """One mutual exclusion key per local path.

    Shared by foreground requests and the scheduler so that two transfers
    of the same file never run at the same time.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, path: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(path)
            if lock is None:
                lock = threading.Lock()
                self._locks[path] = lock
            return lock

    def is_busy(self, path: str) -> bool:
        """Whether a transfer currently holds ``path``."""
        return self._lock_for(normalize_path(path)).locked()

    @contextmanager
    def hold(self, path: str, blocking: bool = True) -> Iterator[None]:
        """Hold the lock of ``path`` for the duration of the block.

        Args:
            path: Local path to lock
            blocking: Wait for a running transfer to finish if True,
                otherwise fail immediately

        Raises:
            TransferInProgressError: If ``blocking`` is False and the path
                is already held
        """
        path = normalize_path(path)
        lock = self._lock_for(path)
        if not lock.acquire(blocking=blocking):
            raise TransferInProgressError(path)
        try:
            yield
        finally:
            lock.release()


class TransferEngine:
    """Moves file content between the filesystem and the remote service.

    The store is only updated after the remote side confirmed the transfer,
    so a failed or cancelled transfer leaves the previous record intact.
    """

    def __init__(
        self,
        remote: Optional[RemoteStorage],
        store: FingerprintStore,
        filesystem: Optional[LocalFilesystem] = None,
        locks: Optional[PathLocks] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize transfer engine.

        Args:
            remote: Remote storage client; None for an engine that only
                tracks files, in which case transfers raise ConfigError
            store: Fingerprint store to record successful transfers in
            filesystem: Filesystem access (defaults to the real filesystem)
            locks: Per-path locks shared with other callers
            cancel_event: When set, transfers that have not reached the
                remote service yet are aborted
        """
        self.remote = remote
        self.store = store
        self.filesystem = filesystem or LocalFilesystem()
        self.locks = locks or PathLocks()
        self.cancel_event = cancel_event

    def _check_cancelled(self, path: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise TransferCancelledError(f"Transfer of {path} cancelled")

    def _require_remote(self) -> RemoteStorage:
        if self.remote is None:
            raise ConfigError(
                "No remote storage configured. Run 'drivesync init' "
                "or set DRIVESYNC_API_KEY."
            )
        return self.remote

    @staticmethod
    def _check_still_tracked(
        path: str, record: Optional[TrackedFile], expected: TrackedFile
    ) -> None:
        """Fail if ``path`` was untracked or rebound after ``expected`` was read."""
        if (
            record is None
            or record.remote_id != expected.remote_id
            or record.direction != expected.direction
        ):
            raise NotTrackedError(path)

    def push(
        self,
        local_path: str,
        blocking: bool = True,
        direction: Optional[SyncDirection] = None,
        expected: Optional[TrackedFile] = None,
    ) -> str:
        """Upload a local file, creating or updating its remote object.

        The fingerprint is computed from the bytes that were uploaded, not
        from a second read, so a change made during the upload is detected
        on the next scan.

        Args:
            local_path: File to upload
            blocking: Wait for a running transfer of the same path
            direction: Direction to record for a new or existing record
                (keeps the existing direction if None)
            expected: Record the caller based its decision on. When given,
                the push only proceeds if the path is still tracked with the
                same remote id and direction, and a failure is saved on the
                record as its ``last_error``

        Returns:
            Remote id of the uploaded object

        Raises:
            NotTrackedError: If ``expected`` is given and the record was
                removed or rebound in the meantime
            FilesystemError: If the file does not exist or cannot be read
            TransferError: If the upload fails
        """
        path = normalize_path(local_path)

        with self.locks.hold(path, blocking=blocking):
            record = self.store.get(path)
            if expected is not None:
                self._check_still_tracked(path, record, expected)
            try:
                remote_id, fingerprint = self._upload(path, record)
            except TransferCancelledError:
                raise
            except (TransferError, FilesystemError) as e:
                logger.warning(f"Failed to push {path}: {e}")
                if expected is not None:
                    self.store.record_failure(path, str(e))
                raise

            self.store.record_transfer(path, remote_id, fingerprint, direction)
            return remote_id

    def _upload(
        self, path: str, record: Optional[TrackedFile]
    ) -> tuple[str, Fingerprint]:
        local_file = self.filesystem.stat(path)
        if local_file is None:
            raise FilesystemError(f"Cannot push {path}: file does not exist", path)
        data = self.filesystem.read_bytes(path)
        fingerprint = local_file.fingerprint_for(data)

        self._check_cancelled(path)
        remote = self._require_remote()

        if record is not None and record.remote_id:
            remote_id = record.remote_id
            remote.update_object(remote_id, data)
            logger.info(f"Updated {path} -> {remote_id} ({len(data)} bytes)")
        else:
            remote_id = remote.create_object(data, Path(path).name)
            logger.info(f"Uploaded {path} -> {remote_id} ({len(data)} bytes)")
        return remote_id, fingerprint

    def _pull_name(self, remote: RemoteStorage, remote_id: str) -> str:
        """File name for ``remote_id`` inside a destination directory.

        Only the final component of the remote name is used; names that do
        not denote a file (empty, ``.`` or ``..``) fall back to the id.
        """
        name = Path(str(remote.get_object(remote_id).get("name") or "")).name
        if name in ("", ".", ".."):
            name = Path(remote_id).name
        if name in ("", ".", ".."):
            raise FilesystemError(
                f"Cannot derive a file name for remote object {remote_id!r}"
            )
        return name

    def pull(
        self,
        remote_id: str,
        destination_path: str,
        overwrite: bool = False,
        blocking: bool = True,
    ) -> TrackedFile:
        """Download a remote object and start tracking it.

        Args:
            remote_id: Remote object to download
            destination_path: File to write; an existing directory receives
                the object under its remote name
            overwrite: Replace an existing destination file
            blocking: Wait for a running transfer of the same path

        Returns:
            The new TrackedFile record (direction ``pull``)

        Raises:
            FilesystemError: If the destination exists and ``overwrite`` is
                False, or is already synced with another remote object
            TransferError: If the download fails or the destination cannot
                be written
        """
        remote = self._require_remote()
        destination = Path(normalize_path(destination_path))
        if destination.is_dir():
            destination = destination / self._pull_name(remote, remote_id)
        path = str(destination)

        with self.locks.hold(path, blocking=blocking):
            existing = self.store.get(path)
            if (
                existing is not None
                and existing.remote_id
                and existing.remote_id != remote_id
            ):
                raise FilesystemError(
                    f"{path} is already synced with {existing.remote_id}; "
                    "untrack it first",
                    path,
                )
            if destination.exists() and not overwrite:
                raise FilesystemError(
                    f"Destination {path} exists but overwrite was not requested",
                    path,
                )

            self._check_cancelled(path)

            data = remote.download_object(remote_id)
            try:
                local_file = self.filesystem.write_bytes(path, data)
            except FilesystemError as e:
                raise TransferError(f"Cannot write {path}: {e}", cause=e) from e
            logger.info(f"Downloaded {remote_id} -> {path} ({len(data)} bytes)")

            fingerprint = local_file.fingerprint_for(data)
            return self.store.record_transfer(
                path, remote_id, fingerprint, SyncDirection.PULL
            )
