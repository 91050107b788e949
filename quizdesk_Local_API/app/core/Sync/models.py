# quizdesk_Local_API/app/core/Sync/models.py
import json
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from loguru import logger


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat(timespec='milliseconds').replace('+00:00', 'Z')
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return value.decode('utf-8', errors='replace')
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize_payload(payload: Dict[str, Any]) -> str:
    """JSON-encodes a record snapshot, dates rendered as ISO-8601 strings."""
    return json.dumps(payload, default=_json_default, sort_keys=True)


class OperationType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class OperationStatus(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMMITTED = "committed"
    FAILED = "failed"


class SyncTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    STARTUP = "startup"
    APP_CLOSE = "app_close"


# Triggers the app raises on its own; never accepted from outside the process.
SYSTEM_TRIGGERS = frozenset({SyncTrigger.STARTUP, SyncTrigger.SCHEDULED, SyncTrigger.APP_CLOSE})


class SyncTier(str, Enum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    ADMINISTRATIVE = "administrative"


# Push priority: submitted work first, then accounts, then content. Tables not listed are administrative.
TIER_ORDER = [SyncTier.CRITICAL, SyncTier.IMPORTANT, SyncTier.ADMINISTRATIVE]
TABLE_TIERS: Dict[str, SyncTier] = {
    "quiz_attempts": SyncTier.CRITICAL,
    "users": SyncTier.IMPORTANT,
    "subjects": SyncTier.ADMINISTRATIVE,
    "questions": SyncTier.ADMINISTRATIVE,
}


def tables_in_tier(tier: SyncTier) -> List[str]:
    return [table for table, table_tier in TABLE_TIERS.items() if table_tier == tier]


@dataclass
class SyncOperation:
    id: str
    type: OperationType
    table_name: str
    record_id: str
    payload: Dict[str, Any]
    enqueued_at: str
    status: OperationStatus = OperationStatus.PENDING
    seq: Optional[int] = None
    attempted_at: Optional[str] = None
    completed_at: Optional[str] = None
    retry_count: int = 0
    last_error: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'SyncOperation':
        try:
            payload = json.loads(row['payload']) if row['payload'] else {}
        except json.JSONDecodeError:
            logger.error(f"Failed to decode queued payload for operation {row['id']}: {row['payload'][:100]}...")
            payload = {}
        return cls(
            id=row['id'],
            type=OperationType(row['type']),
            table_name=row['table_name'],
            record_id=row['record_id'],
            payload=payload,
            enqueued_at=row['enqueued_at'],
            status=OperationStatus(row['status']),
            seq=row['seq'],
            attempted_at=row['attempted_at'],
            completed_at=row['completed_at'],
            retry_count=row['retry_count'],
            last_error=row['last_error'],
        )


@dataclass
class SyncOptions:
    replace_existing: bool = False
    # None means every syncable table
    scope: Optional[FrozenSet[str]] = None
    # Skip the pull phase (app-close flush)
    push_only: bool = False


@dataclass
class SyncErrorEntry:
    operation_id: Optional[str]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"operation_id": self.operation_id, "reason": self.reason}


@dataclass
class SyncResult:
    pushed: int = 0
    pulled: int = 0
    conflicts: int = 0
    errors: List[SyncErrorEntry] = field(default_factory=list)
    trigger: Optional[SyncTrigger] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    # Set when a transient remote failure stopped the pass early
    interrupted_by: Optional[str] = None

    def add_error(self, operation_id: Optional[str], reason: str):
        self.errors.append(SyncErrorEntry(operation_id=operation_id, reason=reason))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pushed": self.pushed,
            "pulled": self.pulled,
            "conflicts": self.conflicts,
            "errors": [e.to_dict() for e in self.errors],
            "trigger": self.trigger.value if self.trigger else None,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "interrupted_by": self.interrupted_by,
        }


@dataclass
class RemoteRecord:
    table_name: str
    record_id: str
    version: int
    updated_at: Optional[str] = None
    deleted: bool = False
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, table_name: str, data: Dict[str, Any]) -> 'RemoteRecord':
        """Builds a record from one element of a pull response. Raises ValueError on malformed input."""
        if not isinstance(data, dict):
            raise ValueError(f"Remote record must be an object, got {type(data).__name__}")
        body = data.get("data")
        if body is None:
            body = {k: v for k, v in data.items() if k not in ("deleted",)}
        record_id = data.get("id") or body.get("id")
        if not record_id:
            raise ValueError(f"Remote record for '{table_name}' has no id")
        version = data.get("version", body.get("version"))
        if version is None:
            raise ValueError(f"Remote record {record_id} has no version")
        return cls(
            table_name=table_name,
            record_id=str(record_id),
            version=int(version),
            updated_at=data.get("updated_at", body.get("updated_at")),
            deleted=bool(data.get("deleted", False)),
            data=dict(body),
        )

    def to_row(self) -> Dict[str, Any]:
        row = dict(self.data)
        row["id"] = self.record_id
        row["version"] = self.version
        if self.updated_at is not None:
            row["updated_at"] = self.updated_at
        return row


@dataclass
class SyncStatus:
    in_progress: bool
    last_result: Optional[SyncResult]
    last_sync_at: Optional[str]
    last_error: Optional[str]
    queue_counts: Dict[str, int] = field(default_factory=dict)
