# quizdesk_Local_API/app/core/Sync/__init__.py
from .core import SyncEngine
from .models import (
    OperationStatus,
    OperationType,
    RemoteRecord,
    SyncOperation,
    SyncOptions,
    SyncResult,
    SyncStatus,
    SyncTrigger,
)
from .exceptions import (
    QueueError,
    RemoteError,
    RemoteRejectedError,
    RemoteTransientError,
    SyncError,
    SyncInProgressError,
    SyncNotAuthorizedError,
)
from .operation_queue import OperationQueue
from .transport import RemoteClient, HttpRemoteClient, OfflineRemoteClient
from .conflict import ConflictResolver, LastWriteWinsResolver, Resolution
from .state import SyncStateStore
from .scheduler import SyncScheduler

__all__ = [
    "SyncEngine", "SyncScheduler", "OperationQueue", "SyncStateStore",
    "OperationStatus", "OperationType", "RemoteRecord", "SyncOperation", "SyncOptions",
    "SyncResult", "SyncStatus", "SyncTrigger",
    "SyncError", "SyncInProgressError", "SyncNotAuthorizedError", "QueueError",
    "RemoteError", "RemoteRejectedError", "RemoteTransientError",
    "RemoteClient", "HttpRemoteClient", "OfflineRemoteClient",
    "ConflictResolver", "LastWriteWinsResolver", "Resolution",
]
