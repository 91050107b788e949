# Local_Store_DB.py
# Description: DB Library for the local-first quiz store (users, subjects, questions, attempts, sync queue).
#
# Imports
import json
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
from quizdesk_Local_API.app.core.DB_Management.Schema_Utils import CONTENT_TABLES, SYNCABLE_TABLES
#
########################################################################################################################
#
# Functions:


# --- Custom Exceptions ---
class LocalStoreError(Exception):
    """Base exception for LocalStoreDB related errors."""
    pass


class SchemaError(LocalStoreError):
    """Exception for schema inspection or migration failures."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class ConflictError(LocalStoreError):
    """Indicates a unique-constraint or identity conflict on write."""

    def __init__(self, message="Conflict detected.", entity: Optional[str] = None, entity_id: Any = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id

    def __str__(self):
        base = super().__str__()
        details = []
        if self.entity:
            details.append(f"Entity: {self.entity}")
        if self.entity_id:
            details.append(f"ID: {self.entity_id}")
        return f"{base} ({', '.join(details)})" if details else base


class IntegrityCheckFailedError(LocalStoreError):
    """Raised when the store fails its integrity check. No repair is attempted."""

    def __init__(self, message: str, diagnostics: Optional[List[str]] = None):
        super().__init__(message)
        self.diagnostics = diagnostics or []


# --- Result objects ---
@dataclass
class IntegrityReport:
    ok: bool
    messages: List[str] = field(default_factory=list)


@dataclass
class BackupResult:
    success: bool
    path: Optional[str] = None
    error: Optional[str] = None


def get_current_utc_timestamp_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def to_db_value(value: Any) -> Any:
    """Converts a Python value into something sqlite3 binds natively (JSON text for containers)."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat(timespec='milliseconds').replace('+00:00', 'Z')
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


class LocalStoreDB:
    """
    Manages thread-local SQLite connections to the single local store file.

    Connections run in autocommit mode; every multi-statement change goes through
    `transaction()`, which issues an explicit BEGIN and commits or rolls back on exit.
    The schema itself is owned by the migration runner (see `open_local_store`).
    """

    def __init__(self, db_path: Union[str, Path], client_id: str):
        if not client_id:
            raise ValueError("Client ID cannot be empty or None.")
        self.is_memory_db = str(db_path) == ':memory:'
        if self.is_memory_db:
            self.db_path_str = ':memory:'
        else:
            self.db_path = Path(db_path).resolve()
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path_str = str(self.db_path)
        self.client_id = client_id
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        logger.info(f"LocalStoreDB initialized for {self.db_path_str} (client_id={self.client_id})")

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn:
            try:
                conn.execute("SELECT 1")
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Thread-local connection for {self.db_path_str} became unusable. Reopening.")
                self._forget_connection(conn)
                conn = None

        if not conn:
            try:
                conn = sqlite3.connect(
                    self.db_path_str,
                    check_same_thread=False,
                    timeout=15,
                    isolation_level=None,
                )
                conn.row_factory = sqlite3.Row
                if not self.is_memory_db:
                    conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA foreign_keys = ON;")
                self._local.conn = conn
                with self._connections_lock:
                    self._connections.append(conn)
                logger.debug(f"Opened SQLite connection to {self.db_path_str} for thread {threading.get_ident()}")
            except sqlite3.Error as e:
                logger.error(f"Failed to connect to database {self.db_path_str}: {e}")
                self._local.conn = None
                raise LocalStoreError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return self._local.conn

    def _forget_connection(self, conn: sqlite3.Connection):
        try:
            conn.close()
        except sqlite3.Error:
            logger.debug("Ignoring error while closing a stale connection.")
        with self._connections_lock:
            if conn in self._connections:
                self._connections.remove(conn)

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def _close(self, conn: sqlite3.Connection):
        try:
            if conn.in_transaction:
                logger.warning(f"Connection to {self.db_path_str} closed inside an open transaction. Rolling back.")
                conn.rollback()
            if not self.is_memory_db:
                try:
                    conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
                except sqlite3.Error as cp_err:
                    logger.warning(f"WAL checkpoint failed for {self.db_path_str}: {cp_err}")
            conn.close()
        except sqlite3.Error as e:
            logger.warning(f"Error during SQLite connection close for {self.db_path_str}: {e}")

    def close_connection(self):
        """Closes the calling thread's connection, if any."""
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            self._close(conn)
            with self._connections_lock:
                if conn in self._connections:
                    self._connections.remove(conn)
            self._local.conn = None

    def close_all_connections(self):
        """Closes every connection opened by this instance, across threads."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            self._close(conn)
        self._local = threading.local()
        logger.info(f"Closed {len(connections)} connection(s) to {self.db_path_str}")

    # --- Query Execution ---
    def execute_query(self, query: str, params: Optional[Union[tuple, Dict[str, Any]]] = None,
                      conn: Optional[sqlite3.Connection] = None) -> sqlite3.Cursor:
        conn = conn or self.get_connection()
        try:
            return conn.execute(query, params or ())
        except sqlite3.IntegrityError as e:
            logger.warning(f"Integrity constraint violation: {query[:300]}... Error: {e}")
            if "unique constraint failed" in str(e).lower():
                raise ConflictError(f"Unique constraint violation: {e}") from e
            raise LocalStoreError(f"Database constraint violation: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query execution failed: {query[:300]}... Error: {e}")
            raise LocalStoreError(f"Query execution failed: {e}") from e

    def transaction(self) -> 'TransactionContextManager':
        return TransactionContextManager(self)

    # --- Schema Inspection ---
    def table_exists(self, table_name: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        row = self.execute_query(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table_name,), conn=conn
        ).fetchone()
        return row is not None

    def get_table_definition(self, table_name: str, conn: Optional[sqlite3.Connection] = None) -> Optional[str]:
        row = self.execute_query(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?", (table_name,), conn=conn
        ).fetchone()
        return row['sql'] if row else None

    def get_table_columns(self, table_name: str, conn: Optional[sqlite3.Connection] = None) -> List[str]:
        self._validate_identifier(table_name)
        rows = self.execute_query(f"PRAGMA table_info({table_name})", conn=conn).fetchall()
        return [row['name'] for row in rows]

    @staticmethod
    def _validate_identifier(name: str):
        if not name or not name.replace('_', '').isalnum():
            raise InputError(f"Invalid SQL identifier: {name!r}")

    @staticmethod
    def validate_syncable_table(table_name: str):
        if table_name not in SYNCABLE_TABLES:
            raise InputError(f"Table '{table_name}' is not a syncable table. Expected one of {SYNCABLE_TABLES}.")

    # --- Row Helpers ---
    def get_record(self, table_name: str, record_id: str,
                   conn: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
        self.validate_syncable_table(table_name)
        row = self.execute_query(f"SELECT * FROM {table_name} WHERE id = ?", (record_id,), conn=conn).fetchone()
        return dict(row) if row else None

    def get_records(self, table_name: str, conn: Optional[sqlite3.Connection] = None) -> List[Dict[str, Any]]:
        self.validate_syncable_table(table_name)
        rows = self.execute_query(f"SELECT * FROM {table_name} ORDER BY id", conn=conn).fetchall()
        return [dict(row) for row in rows]

    def get_record_ids(self, table_name: str, conn: Optional[sqlite3.Connection] = None) -> List[str]:
        self.validate_syncable_table(table_name)
        rows = self.execute_query(f"SELECT id FROM {table_name}", conn=conn).fetchall()
        return [row['id'] for row in rows]

    def upsert_row(self, table_name: str, data: Dict[str, Any],
                   conn: Optional[sqlite3.Connection] = None) -> None:
        """
        Inserts or fully replaces a row keyed by its `id`.

        Keys in `data` that are not columns of the table are dropped with a debug log line,
        so payloads produced by a newer remote schema still apply.
        """
        self.validate_syncable_table(table_name)
        if not data.get('id'):
            raise InputError(f"Row for '{table_name}' is missing its 'id'.")
        valid_columns = set(self.get_table_columns(table_name, conn=conn))
        columns = [col for col in data if col in valid_columns]
        ignored = [col for col in data if col not in valid_columns]
        if ignored:
            logger.debug(f"Ignoring unknown columns for {table_name}: {ignored}")

        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{col} = excluded.{col}" for col in columns if col != 'id')
        query = f"INSERT INTO {table_name} ({', '.join(columns)}) VALUES ({placeholders})"
        query += f" ON CONFLICT(id) DO UPDATE SET {updates}" if updates else " ON CONFLICT(id) DO NOTHING"
        self.execute_query(query, tuple(to_db_value(data[col]) for col in columns), conn=conn)

    def delete_row(self, table_name: str, record_id: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        self.validate_syncable_table(table_name)
        cursor = self.execute_query(f"DELETE FROM {table_name} WHERE id = ?", (record_id,), conn=conn)
        return cursor.rowcount > 0

    def count_rows(self, table_name: str, conn: Optional[sqlite3.Connection] = None) -> int:
        self._validate_identifier(table_name)
        return self.execute_query(f"SELECT COUNT(*) FROM {table_name}", conn=conn).fetchone()[0]

    def is_local_db_empty(self) -> bool:
        """True when none of the content tables (users, subjects, questions) holds a row."""
        return all(self.count_rows(table) == 0 for table in CONTENT_TABLES)

    # --- Maintenance ---
    def check_integrity(self) -> IntegrityReport:
        conn = self.get_connection()
        try:
            messages = [row[0] for row in conn.execute("PRAGMA integrity_check").fetchall()]
            ok = messages == ["ok"]
            fk_rows = conn.execute("PRAGMA foreign_key_check").fetchall()
        except sqlite3.Error as e:
            logger.error(f"Integrity check could not run on {self.db_path_str}: {e}")
            return IntegrityReport(ok=False, messages=[f"integrity check could not run: {e}"])
        for fk_row in fk_rows:
            ok = False
            messages.append(f"foreign key violation: {fk_row[0]} rowid {fk_row[1]} references missing {fk_row[2]}")
        if ok:
            logger.info(f"Integrity check passed for {self.db_path_str}")
        else:
            logger.warning(f"Integrity check failed for {self.db_path_str}: {messages}")
        return IntegrityReport(ok=ok, messages=messages)

    def assert_integrity(self) -> IntegrityReport:
        report = self.check_integrity()
        if not report.ok:
            raise IntegrityCheckFailedError(
                f"Integrity check failed for {self.db_path_str}", diagnostics=report.messages
            )
        return report

    def backup_database(self, destination: Union[str, Path]) -> BackupResult:
        """
        Writes a consistent copy of the store using SQLite's online backup API.

        `destination` may be a file path or an existing directory, in which case a
        timestamped file name is generated inside it.
        """
        if self.is_memory_db:
            return BackupResult(success=False, error="Cannot back up an in-memory database.")
        dest_path = Path(destination).expanduser()
        if dest_path.is_dir():
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            dest_path = dest_path / f"local_store_backup_{timestamp}.db"
        dest_path = dest_path.resolve()
        if dest_path == self.db_path:
            return BackupResult(success=False, error="Backup destination is the live database file.")
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            dest_conn = sqlite3.connect(str(dest_path))
            try:
                self.get_connection().backup(dest_conn)
            finally:
                dest_conn.close()
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Backup of {self.db_path_str} to {dest_path} failed: {e}")
            return BackupResult(success=False, path=str(dest_path), error=str(e))
        logger.info(f"Backup created: {dest_path}")
        return BackupResult(success=True, path=str(dest_path))

    def checkpoint(self):
        if not self.is_memory_db:
            self.execute_query("PRAGMA wal_checkpoint(TRUNCATE);")


class TransactionContextManager:
    def __init__(self, db_instance: LocalStoreDB):
        self.db = db_instance
        self.conn: Optional[sqlite3.Connection] = None
        self.is_outermost_transaction = False

    def __enter__(self) -> sqlite3.Connection:
        self.conn = self.db.get_connection()
        if not self.conn.in_transaction:
            self.conn.execute("BEGIN")
            self.is_outermost_transaction = True
            logger.debug(f"Transaction started (outermost) on thread {threading.get_ident()}.")
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.conn:
            logger.error("Transaction context: Connection is None in __exit__.")
            return False

        if self.is_outermost_transaction:
            if exc_type:
                logger.error(f"Transaction failed, rolling back on thread {threading.get_ident()}: "
                             f"{exc_type.__name__} - {exc_val}")
                try:
                    self.conn.rollback()
                except sqlite3.Error as rb_err:
                    logger.critical(f"Rollback FAILED on thread {threading.get_ident()}: {rb_err}")
            else:
                try:
                    self.conn.commit()
                    logger.debug(f"Transaction committed on thread {threading.get_ident()}.")
                except sqlite3.Error as commit_err:
                    logger.error(f"Commit FAILED on thread {threading.get_ident()}, attempting rollback: {commit_err}")
                    try:
                        self.conn.rollback()
                    except sqlite3.Error as rb_err:
                        logger.critical(f"Rollback after failed commit also FAILED: {rb_err}")
                    raise LocalStoreError(f"Commit failed: {commit_err}") from commit_err
        return False


def open_local_store(db_path: Union[str, Path], client_id: str,
                     migrations: Optional[Sequence[Any]] = None) -> LocalStoreDB:
    """
    Opens the store and brings its schema up to date before handing it out.

    Nothing else may touch the store until this returns; a migration failure closes the
    connections and propagates, which aborts application startup.
    """
    from quizdesk_Local_API.app.core.DB_Management.Migrations import MigrationRunner, REGISTERED_MIGRATIONS

    store = LocalStoreDB(db_path, client_id)
    runner = MigrationRunner(migrations if migrations is not None else REGISTERED_MIGRATIONS)
    try:
        applied = runner.apply_all(store)
    except Exception:
        store.close_all_connections()
        raise
    if applied:
        logger.info(f"Applied {len(applied)} migration(s) to {store.db_path_str}: {[e.id for e in applied]}")
    return store

#
# End of Local_Store_DB.py
########################################################################################################################
