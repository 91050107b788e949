# quizdesk_Local_API/app/core/Sync/exceptions.py
from typing import Optional


class SyncError(Exception):
    """Base exception for the sync subsystem."""
    pass


class SyncInProgressError(SyncError):
    """A sync pass is already running; the new trigger was rejected without touching any state."""
    pass


class SyncNotAuthorizedError(SyncError):
    """The caller is not allowed to start a sync with the given trigger."""
    pass


class QueueError(SyncError):
    """Represents an error reading or updating the operation queue."""
    def __init__(self, message, operation_id: Optional[str] = None, *args):
        super().__init__(message, *args)
        self.operation_id = operation_id

    def __str__(self):
        base = super().__str__()
        return f"{base} (OperationID: {self.operation_id})" if self.operation_id else base


class RemoteError(SyncError):
    """Represents an error talking to the remote store."""
    def __init__(self, message, status_code: Optional[int] = None, *args):
        super().__init__(message, *args)
        self.status_code = status_code

    def __str__(self):
        base = super().__str__()
        return f"{base} (HTTP {self.status_code})" if self.status_code else base


class RemoteTransientError(RemoteError):
    """Network failure, timeout or server-side error. The operation stays pending and is retried later."""
    pass


class RemoteRejectedError(RemoteError):
    """The remote store refused the payload as invalid. Not retried."""
    pass
