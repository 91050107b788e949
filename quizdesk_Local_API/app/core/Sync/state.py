# quizdesk_Local_API/app/core/Sync/state.py
import sqlite3
from typing import Any, Dict, Iterable, Optional

from loguru import logger

from quizdesk_Local_API.app.core.DB_Management.Local_Store_DB import (
    LocalStoreDB,
    LocalStoreError,
    get_current_utc_timestamp_iso,
)
from .exceptions import SyncError


class SyncStateStore:
    """
    Per-table sync bookkeeping kept in the `sync_timestamps` table of the local store.

    Keeping it in the same file as the data lets the pull watermark advance in the same
    transaction as the merge it describes.
    """

    def __init__(self, store: LocalStoreDB):
        self.store = store

    def get_watermark(self, table_name: str, conn: Optional[sqlite3.Connection] = None) -> Optional[str]:
        try:
            row = self.store.execute_query(
                "SELECT pull_watermark FROM sync_timestamps WHERE table_name = ?", (table_name,), conn=conn
            ).fetchone()
        except LocalStoreError as e:
            raise SyncError(f"Could not read pull watermark for {table_name}: {e}") from e
        return row['pull_watermark'] if row else None

    def advance_watermark(self, table_name: str, watermark: Optional[str], conn: sqlite3.Connection,
                          full_sync: bool = False):
        """Must be called on the connection of the merge transaction."""
        now = get_current_utc_timestamp_iso()
        self.store.execute_query(
            """INSERT INTO sync_timestamps (table_name, pull_watermark, last_pull_sync, last_full_sync)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(table_name) DO UPDATE SET
                   pull_watermark = COALESCE(excluded.pull_watermark, sync_timestamps.pull_watermark),
                   last_pull_sync = excluded.last_pull_sync,
                   last_full_sync = COALESCE(excluded.last_full_sync, sync_timestamps.last_full_sync)""",
            (table_name, watermark, now, now if full_sync else None),
            conn=conn,
        )
        logger.debug(f"[SyncState] Watermark for {table_name} now {watermark}")

    def record_push(self, table_names: Iterable[str]):
        now = get_current_utc_timestamp_iso()
        for table_name in table_names:
            self.store.execute_query(
                """INSERT INTO sync_timestamps (table_name, last_push_sync) VALUES (?, ?)
                   ON CONFLICT(table_name) DO UPDATE SET last_push_sync = excluded.last_push_sync""",
                (table_name, now),
            )

    def get_all(self) -> Dict[str, Dict[str, Any]]:
        rows = self.store.execute_query("SELECT * FROM sync_timestamps ORDER BY table_name").fetchall()
        return {row['table_name']: dict(row) for row in rows}
