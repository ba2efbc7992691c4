"""Exceptions raised by drivesync."""

from typing import Optional


class DriveSyncError(Exception):
    """Base exception for all drivesync errors."""

    pass


class ConfigError(DriveSyncError):
    """Raised when the configuration is missing or invalid."""

    pass


class NotTrackedError(DriveSyncError):
    """Raised when an operation targets a path that is not tracked."""

    def __init__(self, local_path: str):
        self.local_path = local_path
        super().__init__(f"Path is not tracked: {local_path}")


class TransferError(DriveSyncError):
    """Raised when a push or pull fails.

    Attributes:
        cause: The underlying exception, if any
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class NetworkError(TransferError):
    """Raised when the remote service cannot be reached."""

    pass


class AuthenticationError(TransferError):
    """Raised when the remote service rejects the credentials."""

    pass


class PermissionDeniedError(TransferError):
    """Raised when the remote service forbids the operation."""

    pass


class RemoteNotFoundError(TransferError):
    """Raised when the remote object does not exist."""

    pass


class QuotaExceededError(TransferError):
    """Raised when the remote storage quota is exhausted."""

    pass


class RateLimitError(TransferError):
    """Raised when the remote service rate limit is exceeded."""

    pass


class TransferInProgressError(TransferError):
    """Raised when a transfer for the same path is already running."""

    def __init__(self, local_path: str):
        self.local_path = local_path
        super().__init__(f"Transfer already in progress: {local_path}")


class TransferCancelledError(TransferError):
    """Raised when a transfer is aborted before reaching the remote service."""

    pass


class FilesystemError(DriveSyncError):
    """Raised when a local path cannot be read or written."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class StoreCorruptionError(DriveSyncError):
    """Raised when persisted sync state cannot be read.

    This is fatal: the store is never rebuilt automatically, since losing
    the recorded remote ids would lead to duplicate uploads.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)
