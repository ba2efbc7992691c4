"""Sync engine: the process-wide context tying all sync components together."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..config import Config
from ..exceptions import DriveSyncError, FilesystemError, NotTrackedError
from ..utils import DEFAULT_POLL_INTERVAL, normalize_path
from .comparator import ChangeDetector, ChangeStatus
from .modes import SyncDirection
from .operations import PathLocks, RemoteStorage, TransferEngine
from .scanner import DirectoryScanner, LocalFilesystem
from .scheduler import CycleResult, SchedulerState, SyncScheduler
from .state import Fingerprint, FingerprintStore, TrackedFile

logger = logging.getLogger(__name__)


@dataclass
class PushResult:
    """Outcome of pushing one file of a directory push."""

    local_path: str
    remote_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class FileStatus:
    """Summary of one tracked file, as returned by :meth:`SyncEngine.status`."""

    local_path: str
    remote_id: Optional[str]
    direction: SyncDirection
    fingerprint: Optional[Fingerprint]
    last_synced_at: Optional[datetime]
    change: ChangeStatus
    reason: str
    last_error: Optional[str] = None

    @property
    def is_dirty(self) -> bool:
        return self.change.is_dirty

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "local_path": self.local_path,
            "remote_id": self.remote_id,
            "direction": self.direction.value,
            "fingerprint": self.fingerprint.to_dict() if self.fingerprint else None,
            "last_synced_at": (
                self.last_synced_at.isoformat() if self.last_synced_at else None
            ),
            "status": self.change.value,
            "reason": self.reason,
            "last_error": self.last_error,
        }


class SyncEngine:
    """Owns the store, detector, transfer engine and scheduler of a process.

    Construct it once at startup, :meth:`open` it to load the store and
    :meth:`close` it on shutdown. Foreground calls (push, pull, link,
    untrack) raise their errors to the caller. Errors of background pushes
    are saved on the record and reported by :meth:`status`, also to other
    processes opening the same state directory.

    Examples:
        >>> state_dir = Path("~/.config/drivesync/tracked_files")
        >>> with SyncEngine(client, state_dir) as engine:
        ...     engine.push("/tmp/a.txt")
        ...     engine.start()
    """

    def __init__(
        self,
        remote: Optional[RemoteStorage],
        state_dir: Path,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_workers: int = 1,
        filesystem: Optional[LocalFilesystem] = None,
    ):
        """Initialize sync engine.

        Args:
            remote: Remote storage client; None gives an engine that can
                link, untrack and report status but not transfer
            state_dir: Directory of the fingerprint store
            poll_interval: Seconds between scheduler cycles
            max_workers: Number of parallel pushes per cycle
            filesystem: Filesystem access (defaults to the real filesystem)
        """
        self.remote = remote
        self.filesystem = filesystem or LocalFilesystem()
        self.store = FingerprintStore(Path(state_dir).expanduser())
        self.locks = PathLocks()
        self._stop_event = threading.Event()
        self.detector = ChangeDetector(self.filesystem)
        self.transfers = TransferEngine(
            remote,
            self.store,
            filesystem=self.filesystem,
            locks=self.locks,
            cancel_event=self._stop_event,
        )
        self.scheduler = SyncScheduler(
            self.store,
            self.detector,
            self.transfers,
            poll_interval=poll_interval,
            max_workers=max_workers,
            stop_event=self._stop_event,
        )
        self._opened = False

    @classmethod
    def from_config(
        cls, app_config: Config, remote: Optional[RemoteStorage] = None
    ) -> "SyncEngine":
        """Build an engine from resolved configuration.

        Args:
            app_config: Configuration to read settings from
            remote: Remote client; a DriveClient is created if None
        """
        if remote is None:
            from ..api import DriveClient

            remote = DriveClient(api_key=app_config.api_key, api_url=app_config.api_url)
        return cls(
            remote,
            app_config.state_dir,
            poll_interval=app_config.poll_interval,
            max_workers=app_config.workers,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def open(self) -> None:
        """Load the fingerprint store.

        Raises:
            StoreCorruptionError: If persisted state cannot be read
        """
        self.store.open()
        self._opened = True
        logger.debug(f"Sync engine opened with {len(self.store)} tracked file(s)")

    def close(self) -> None:
        """Stop the scheduler and release the store and remote client."""
        if not self._opened:
            return
        self.scheduler.stop()
        self.store.close()
        close_remote = getattr(self.remote, "close", None)
        if callable(close_remote):
            close_remote()
        self._opened = False

    def __enter__(self) -> "SyncEngine":
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def start(self) -> None:
        """Start the background scheduler."""
        self.scheduler.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the background scheduler."""
        self.scheduler.stop(timeout)

    @property
    def scheduler_state(self) -> SchedulerState:
        return self.scheduler.state

    def sync_once(self) -> CycleResult:
        """Run a single scan and push cycle in the calling thread."""
        return self.scheduler.run_cycle()

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def push(self, path: str, wait: bool = True) -> str:
        """Track a file and push its current content now.

        Args:
            path: File to push
            wait: Wait for a running transfer of the same file instead of
                failing with TransferInProgressError

        Returns:
            Remote id of the file

        Raises:
            FilesystemError: If the file cannot be read
            TransferError: If the upload fails
        """
        local_path = normalize_path(path)
        remote_id = self.transfers.push(local_path, blocking=wait)
        self.scheduler.failures.pop(local_path, None)
        return remote_id

    def push_directory(
        self,
        directory: str,
        ignore_patterns: Optional[list[str]] = None,
        exclude_dot_files: bool = False,
    ) -> list[PushResult]:
        """Push every file below ``directory``.

        A failing file does not stop the others; each outcome is reported.

        Raises:
            FilesystemError: If ``directory`` is not a directory
        """
        root = Path(normalize_path(directory))
        if not root.is_dir():
            raise FilesystemError(f"Not a directory: {root}", str(root))

        scanner = DirectoryScanner(
            ignore_patterns=ignore_patterns, exclude_dot_files=exclude_dot_files
        )
        results: list[PushResult] = []
        for local_file in scanner.scan_local(root):
            path = str(local_file.path)
            try:
                results.append(PushResult(path, remote_id=self.push(path)))
            except DriveSyncError as e:
                logger.warning(f"Failed to push {path}: {e}")
                results.append(PushResult(path, error=str(e)))

        failed = sum(1 for r in results if not r.ok)
        logger.info(
            f"Directory push of {root}: {len(results) - failed} succeeded, "
            f"{failed} failed"
        )
        return results

    def pull(
        self, remote_id: str, destination: str, overwrite: bool = False
    ) -> TrackedFile:
        """Download a remote object and track it with direction ``pull``.

        Raises:
            FilesystemError: If the destination exists and ``overwrite``
                is False
            TransferError: If the download or the write fails
        """
        return self.transfers.pull(remote_id, destination, overwrite=overwrite)

    def link(self, path: str, remote_id: str) -> TrackedFile:
        """Bind a local file to an existing remote object without uploading.

        The record has no fingerprint yet, so the next cycle pushes the
        local content to ``remote_id``.

        Raises:
            FilesystemError: If the file does not exist or the path is
                already synced with another remote object
        """
        local_path = normalize_path(path)
        if self.filesystem.stat(local_path) is None:
            raise FilesystemError(f"{local_path} does not exist", local_path)

        with self.locks.hold(local_path):
            existing = self.store.get(local_path)
            if existing is not None:
                if existing.remote_id and existing.remote_id != remote_id:
                    raise FilesystemError(
                        f"{local_path} is already synced with "
                        f"{existing.remote_id}; untrack it first",
                        local_path,
                    )
                logger.debug(f"{local_path} is already linked to {remote_id}")
                return existing

            record = TrackedFile(local_path=local_path, remote_id=remote_id)
            self.store.upsert(record)

        logger.info(f"Linked {local_path} -> {remote_id}")
        self.scheduler.wake()
        return record

    def untrack(self, path: str) -> None:
        """Stop tracking a file. The remote object is left untouched.

        Raises:
            NotTrackedError: If the path is not tracked
        """
        local_path = normalize_path(path)
        with self.locks.hold(local_path):
            if not self.store.remove(local_path):
                raise NotTrackedError(local_path)
        self.scheduler.failures.pop(local_path, None)
        logger.info(f"Stopped tracking {local_path}")

    def status(self) -> list[FileStatus]:
        """Return a summary of every tracked file, with its current status."""
        records = self.store.all()
        failures = dict(self.scheduler.failures)
        return [
            FileStatus(
                local_path=decision.local_path,
                remote_id=decision.tracked.remote_id,
                direction=decision.tracked.direction,
                fingerprint=decision.tracked.fingerprint,
                last_synced_at=decision.tracked.last_synced_at,
                change=decision.status,
                reason=decision.reason,
                last_error=(
                    failures.get(decision.local_path) or decision.tracked.last_error
                ),
            )
            for decision in self.detector.detect(records)
        ]
