"""drivesync - keep local files in sync with cloud storage objects."""

from .api import DriveClient
from .exceptions import (
    AuthenticationError,
    ConfigError,
    DriveSyncError,
    FilesystemError,
    NetworkError,
    NotTrackedError,
    PermissionDeniedError,
    QuotaExceededError,
    RateLimitError,
    RemoteNotFoundError,
    StoreCorruptionError,
    TransferCancelledError,
    TransferError,
    TransferInProgressError,
)
from .sync import SyncDirection, SyncEngine, TrackedFile

__all__ = [
    "DriveClient",
    "SyncEngine",
    "SyncDirection",
    "TrackedFile",
    "AuthenticationError",
    "ConfigError",
    "DriveSyncError",
    "FilesystemError",
    "NetworkError",
    "NotTrackedError",
    "PermissionDeniedError",
    "QuotaExceededError",
    "RateLimitError",
    "RemoteNotFoundError",
    "StoreCorruptionError",
    "TransferCancelledError",
    "TransferError",
    "TransferInProgressError",
]
