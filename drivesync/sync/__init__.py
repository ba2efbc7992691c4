"""Sync engine for drivesync - tracking, change detection and transfers."""

from .comparator import ChangeDecision, ChangeDetector, ChangeStatus, dirty_paths
from .engine import FileStatus, PushResult, SyncEngine
from .modes import SyncDirection
from .operations import PathLocks, RemoteStorage, TransferEngine
from .scanner import DirectoryScanner, LocalFilesystem, LocalFile
from .scheduler import CycleResult, SchedulerState, SyncScheduler
from .state import Fingerprint, FingerprintStore, TrackedFile

__all__ = [
    "SyncEngine",
    "FileStatus",
    "PushResult",
    "SyncDirection",
    "SyncScheduler",
    "SchedulerState",
    "CycleResult",
    "TransferEngine",
    "RemoteStorage",
    "PathLocks",
    "ChangeDetector",
    "ChangeDecision",
    "ChangeStatus",
    "dirty_paths",
    "DirectoryScanner",
    "LocalFilesystem",
    "LocalFile",
    "Fingerprint",
    "FingerprintStore",
    "TrackedFile",
]
