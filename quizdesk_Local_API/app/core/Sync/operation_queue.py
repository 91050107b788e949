# quizdesk_Local_API/app/core/Sync/operation_queue.py
# Description: Durable queue of local mutations awaiting confirmation by the remote store.
#
# Imports
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Union
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from quizdesk_Local_API.app.core.DB_Management.Local_Store_DB import (
    ConflictError,
    InputError,
    LocalStoreDB,
    LocalStoreError,
    get_current_utc_timestamp_iso,
)
from quizdesk_Local_API.app.core.DB_Management.Schema_Utils import CHILD_REFERENCES
from quizdesk_Local_API.app.core.Sync.exceptions import QueueError
from quizdesk_Local_API.app.core.Sync.models import (
    OperationStatus,
    OperationType,
    SyncOperation,
    TABLE_TIERS,
    TIER_ORDER,
    serialize_payload,
)
#
########################################################################################################################
#
# Functions:


class OperationQueue:
    """
    The `sync_queue` table seen as a FIFO of pending mutations.

    Draining takes the highest push tier first (quiz attempts, then users, then content)
    and follows the enqueue sequence within a tier. All operations on one record share a
    table, so they always leave in the order they were recorded. Entries are only ever changed by the sync engine
    after enqueue; committed ones stay as an archive until `purge_committed` removes them.
    """

    def __init__(self, store: LocalStoreDB):
        self.store = store

    # --- Enqueue ---
    @staticmethod
    def new_operation(op_type: Union[OperationType, str], table_name: str, record_id: str,
                      payload: Dict[str, Any]) -> SyncOperation:
        return SyncOperation(
            id=str(uuid.uuid4()),
            type=OperationType(op_type),
            table_name=table_name,
            record_id=record_id,
            payload=payload,
            enqueued_at=get_current_utc_timestamp_iso(),
        )

    def enqueue(self, op: SyncOperation, conn: Optional[sqlite3.Connection] = None) -> SyncOperation:
        """
        Appends an operation. Pass the connection of the transaction that wrote the
        record so both land or neither does.
        """
        self.store.validate_syncable_table(op.table_name)
        cursor = self.store.execute_query(
            """INSERT INTO sync_queue (id, type, table_name, record_id, payload, status, enqueued_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (op.id, op.type.value, op.table_name, op.record_id, serialize_payload(op.payload),
             OperationStatus.PENDING.value, op.enqueued_at),
            conn=conn,
        )
        op.seq = cursor.lastrowid
        op.status = OperationStatus.PENDING
        logger.debug(f"[SyncQueue] Enqueued {op.type.value} {op.table_name}/{op.record_id} as {op.id} (seq {op.seq})")
        return op

    def record_local_change(self, op_type: Union[OperationType, str], table_name: str, record_id: str,
                            data: Optional[Dict[str, Any]] = None) -> SyncOperation:
        """
        Applies a local write and queues it for the remote store in one transaction.

        Inserts start at version 1; updates merge `data` over the stored row and bump the
        version. The queued payload is the row as stored after the write (the pre-delete
        row for deletes).

        Raises:
            InputError: unknown table, missing record for update/delete.
            ConflictError: insert of an id that already exists.
        """
        op_type = OperationType(op_type)
        self.store.validate_syncable_table(table_name)
        if not record_id:
            raise InputError("record_id is required.")
        data = dict(data or {})
        now = get_current_utc_timestamp_iso()

        with self.store.transaction() as conn:
            existing = self.store.get_record(table_name, record_id, conn=conn)
            if op_type == OperationType.INSERT:
                if existing is not None:
                    raise ConflictError("Record already exists.", entity=table_name, entity_id=record_id)
                columns = self.store.get_table_columns(table_name, conn=conn)
                row = {**data, "id": record_id, "updated_at": now, "version": 1}
                for ts_column in ("created_at", "started_at"):
                    if ts_column in columns:
                        row.setdefault(ts_column, now)
                self.store.upsert_row(table_name, row, conn=conn)
                payload = self.store.get_record(table_name, record_id, conn=conn)
            elif op_type == OperationType.UPDATE:
                if existing is None:
                    raise InputError(f"Cannot update missing record {table_name}/{record_id}.")
                row = {**existing, **data, "id": record_id, "updated_at": now,
                       "version": int(existing.get("version") or 0) + 1}
                self.store.upsert_row(table_name, row, conn=conn)
                payload = self.store.get_record(table_name, record_id, conn=conn)
            else:
                if existing is None:
                    raise InputError(f"Cannot delete missing record {table_name}/{record_id}.")
                self.store.delete_row(table_name, record_id, conn=conn)
                payload = {**existing, "updated_at": now, "version": int(existing.get("version") or 0) + 1}

            op = self.enqueue(self.new_operation(op_type, table_name, record_id, payload), conn=conn)
        logger.info(f"[SyncQueue] Recorded local {op_type.value} on {table_name}/{record_id}")
        return op

    # --- Drain / inspect ---
    @staticmethod
    def _tier_rank_sql() -> str:
        cases = " ".join(f"WHEN '{table}' THEN {TIER_ORDER.index(tier)}" for table, tier in TABLE_TIERS.items())
        return f"CASE table_name {cases} ELSE {len(TIER_ORDER) - 1} END"

    def drain(self, batch_size: int, tables: Optional[Iterable[str]] = None) -> List[SyncOperation]:
        """Returns up to `batch_size` pending operations by push tier, then enqueue order, without changing them."""
        if batch_size <= 0:
            raise InputError("batch_size must be positive.")
        query = "SELECT * FROM sync_queue WHERE status = ?"
        params: List[Any] = [OperationStatus.PENDING.value]
        if tables is not None:
            table_list = sorted(set(tables))
            if not table_list:
                return []
            query += f" AND table_name IN ({', '.join('?' for _ in table_list)})"
            params.extend(table_list)
        query += f" ORDER BY {self._tier_rank_sql()} ASC, seq ASC LIMIT ?"
        params.append(batch_size)
        rows = self.store.execute_query(query, tuple(params)).fetchall()
        return [SyncOperation.from_row(row) for row in rows]

    def get_operation(self, operation_id: str) -> Optional[SyncOperation]:
        row = self.store.execute_query("SELECT * FROM sync_queue WHERE id = ?", (operation_id,)).fetchone()
        return SyncOperation.from_row(row) if row else None

    def list_operations(self, status: Optional[OperationStatus] = None,
                        record_id: Optional[str] = None) -> List[SyncOperation]:
        query = "SELECT * FROM sync_queue WHERE 1 = 1"
        params: List[Any] = []
        if status is not None:
            query += " AND status = ?"
            params.append(OperationStatus(status).value)
        if record_id is not None:
            query += " AND record_id = ?"
            params.append(record_id)
        rows = self.store.execute_query(query + " ORDER BY seq ASC", tuple(params)).fetchall()
        return [SyncOperation.from_row(row) for row in rows]

    def pending_record_ids(self, table_name: str, conn: Optional[sqlite3.Connection] = None) -> Set[str]:
        """Ids of records with an unconfirmed outbound operation (pending or in flight)."""
        rows = self.store.execute_query(
            "SELECT DISTINCT record_id FROM sync_queue WHERE table_name = ? AND status IN (?, ?)",
            (table_name, OperationStatus.PENDING.value, OperationStatus.IN_FLIGHT.value),
            conn=conn,
        ).fetchall()
        return {row['record_id'] for row in rows}

    def protected_parent_ids(self, table_name: str, conn: Optional[sqlite3.Connection] = None) -> Set[str]:
        """
        Ids of `table_name` rows referenced by a child row that has an unconfirmed outbound
        operation. Deleting such a parent would cascade into the unpushed child.
        """
        parent_ids: Set[str] = set()
        for child_table, fk_column in CHILD_REFERENCES.get(table_name, []):
            rows = self.store.execute_query(
                f"""SELECT DISTINCT c.{fk_column} AS parent_id
                    FROM {child_table} c
                    JOIN sync_queue q ON q.table_name = ? AND q.record_id = c.id
                    WHERE q.status IN (?, ?)""",
                (child_table, OperationStatus.PENDING.value, OperationStatus.IN_FLIGHT.value),
                conn=conn,
            ).fetchall()
            parent_ids.update(row['parent_id'] for row in rows)
        return parent_ids

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in OperationStatus}
        rows = self.store.execute_query("SELECT status, COUNT(*) AS n FROM sync_queue GROUP BY status").fetchall()
        for row in rows:
            counts[row['status']] = row['n']
        return counts

    # --- Status transitions ---
    def _update_status(self, operation_id: str, query: str, params: tuple):
        try:
            cursor = self.store.execute_query(query, params)
        except LocalStoreError as e:
            raise QueueError(f"Failed to update queue entry: {e}", operation_id=operation_id) from e
        if cursor.rowcount == 0:
            raise QueueError("Queue entry not found.", operation_id=operation_id)

    def mark_in_flight(self, operation_id: str):
        self._update_status(
            operation_id,
            "UPDATE sync_queue SET status = ?, attempted_at = ? WHERE id = ?",
            (OperationStatus.IN_FLIGHT.value, get_current_utc_timestamp_iso(), operation_id),
        )

    def mark_committed(self, operation_id: str):
        self._update_status(
            operation_id,
            "UPDATE sync_queue SET status = ?, completed_at = ?, last_error = NULL WHERE id = ?",
            (OperationStatus.COMMITTED.value, get_current_utc_timestamp_iso(), operation_id),
        )

    def mark_failed(self, operation_id: str, reason: str):
        self._update_status(
            operation_id,
            "UPDATE sync_queue SET status = ?, completed_at = ?, last_error = ? WHERE id = ?",
            (OperationStatus.FAILED.value, get_current_utc_timestamp_iso(), reason, operation_id),
        )
        logger.warning(f"[SyncQueue] Operation {operation_id} failed permanently: {reason}")

    def release(self, operation_id: str, reason: str):
        """Puts an in-flight operation back to pending after a transient failure."""
        self._update_status(
            operation_id,
            "UPDATE sync_queue SET status = ?, retry_count = retry_count + 1, last_error = ? WHERE id = ?",
            (OperationStatus.PENDING.value, reason, operation_id),
        )

    def recover_interrupted(self) -> int:
        """Resets operations left in flight by a crash to pending. Run before the first sync pass."""
        cursor = self.store.execute_query(
            "UPDATE sync_queue SET status = ? WHERE status = ?",
            (OperationStatus.PENDING.value, OperationStatus.IN_FLIGHT.value),
        )
        if cursor.rowcount:
            logger.warning(f"[SyncQueue] Reset {cursor.rowcount} interrupted in-flight operation(s) to pending.")
        return cursor.rowcount

    # --- Housekeeping ---
    def purge_committed(self, older_than_days: int) -> int:
        """Deletes committed entries completed more than `older_than_days` days ago."""
        if older_than_days < 0:
            raise InputError("older_than_days cannot be negative.")
        cutoff = (datetime.now(timezone.utc) - timedelta(days=older_than_days))
        cutoff_str = cutoff.isoformat(timespec='milliseconds').replace('+00:00', 'Z')
        cursor = self.store.execute_query(
            "DELETE FROM sync_queue WHERE status = ? AND completed_at <= ?",
            (OperationStatus.COMMITTED.value, cutoff_str),
        )
        if cursor.rowcount:
            logger.info(f"[SyncQueue] Purged {cursor.rowcount} committed operation(s) older than {older_than_days} day(s).")
        return cursor.rowcount

    def clear(self):
        self.store.execute_query("DELETE FROM sync_queue")
        logger.info("[SyncQueue] Queue cleared.")

#
# End of operation_queue.py
########################################################################################################################
