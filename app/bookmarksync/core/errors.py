from __future__ import annotations


class SyncError(RuntimeError):
    """Base class for engine errors. Messages are short snake_case codes."""

    retryable = False


class NetworkError(SyncError):
    retryable = True


class AuthError(SyncError):
    pass


class IntegrityError(SyncError):
    pass


class CorruptMetadataError(SyncError):
    pass


class LockContentionError(SyncError):
    def __init__(self, message: str = "sync_busy"):
        super().__init__(message)


class SyncCancelledError(SyncError):
    def __init__(self, message: str = "sync_cancelled"):
        super().__init__(message)


class ManualResolutionRequired(SyncError):
    def __init__(self, message: str = "manual_resolution_required"):
        super().__init__(message)
