# sync_schemas.py
# Description: Request/response models for the sync and local-store command endpoints.
#
# Imports
from typing import Any, Dict, List, Optional
#
# 3rd-party Libraries
from pydantic import BaseModel, ConfigDict, Field
#
# Local Imports
from quizdesk_Local_API.app.core.AuthNZ.Session_Service import SessionData, UserRole
from quizdesk_Local_API.app.core.DB_Management.Local_Store_DB import BackupResult, IntegrityReport
from quizdesk_Local_API.app.core.Sync.models import OperationType, SyncResult, SyncStatus, SyncTrigger
#
########################################################################################################################
#
# Functions:

# --- Requests ---

class SyncTriggerRequest(BaseModel):
    trigger: SyncTrigger = Field(SyncTrigger.MANUAL, description="Reported trigger kind. A signed-in session is required for every kind.")


class ScopedSyncRequest(BaseModel):
    """Body of the sync-questions / sync-users commands."""
    replace_existing: bool = Field(False, alias="replaceExisting",
                                   description="Pull every record in scope and drop local rows the remote no longer has.")
    scope: Optional[List[str]] = Field(None, description="Subset of the command's table family to sync.")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={"example": {"replaceExisting": False, "scope": ["questions"]}},
    )


class QueueOperationRequest(BaseModel):
    type: OperationType = Field(..., description="'insert', 'update' or 'delete'.")
    table_name: str = Field(..., alias="tableName", description="Syncable table the record lives in.")
    record_id: str = Field(..., alias="recordId", min_length=1, description="Client-generated record id.")
    data: Dict[str, Any] = Field(default_factory=dict, description="Column values to write (ignored for deletes).")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "type": "insert",
                "tableName": "subjects",
                "recordId": "0b7e9c1e-3f0c-4a55-9d55-1f1f4c7f2a10",
                "data": {"name": "Mathematics", "subject_code": "MTH-SS1", "class": "SS1"},
            }
        },
    )


class BackupRequest(BaseModel):
    destination: str = Field(..., min_length=1, description="Target file path, or a directory to write a timestamped file into.")


class SessionStartRequest(BaseModel):
    user_id: str = Field(..., alias="userId", min_length=1)
    role: UserRole = UserRole.STUDENT
    ttl_minutes: Optional[int] = Field(None, alias="ttlMinutes", gt=0)

    model_config = ConfigDict(populate_by_name=True)


# --- Responses ---

class SyncErrorItem(BaseModel):
    operation_id: Optional[str] = None
    reason: str


class SyncResultResponse(BaseModel):
    pushed: int
    pulled: int
    conflicts: int
    errors: List[SyncErrorItem] = Field(default_factory=list)
    trigger: Optional[SyncTrigger] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    interrupted_by: Optional[str] = None

    @classmethod
    def from_result(cls, result: SyncResult) -> 'SyncResultResponse':
        return cls(**result.to_dict())


class SyncStatusResponse(BaseModel):
    in_progress: bool = Field(..., description="True while a sync pass holds the sync lock.")
    last_result: Optional[SyncResultResponse] = None
    last_sync_at: Optional[str] = None
    last_error: Optional[str] = None
    pending_operations: int = Field(0, description="Queue backlog waiting for the remote store.")
    queue_counts: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_status(cls, status: SyncStatus) -> 'SyncStatusResponse':
        return cls(
            in_progress=status.in_progress,
            last_result=SyncResultResponse.from_result(status.last_result) if status.last_result else None,
            last_sync_at=status.last_sync_at,
            last_error=status.last_error,
            pending_operations=status.queue_counts.get("pending", 0) + status.queue_counts.get("in_flight", 0),
            queue_counts=status.queue_counts,
        )


class QueueOperationResponse(BaseModel):
    accepted: bool = True
    operation_id: str
    status: str


class LocalDBEmptyResponse(BaseModel):
    is_empty: bool


class IntegrityCheckResponse(BaseModel):
    ok: bool
    messages: List[str] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: IntegrityReport) -> 'IntegrityCheckResponse':
        return cls(ok=report.ok, messages=report.messages)


class BackupResponse(BaseModel):
    success: bool
    path: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: BackupResult) -> 'BackupResponse':
        return cls(success=result.success, path=result.path, error=result.error)


class SessionResponse(BaseModel):
    authenticated: bool
    session: Optional[SessionData] = None

#
# End of sync_schemas.py
########################################################################################################################
