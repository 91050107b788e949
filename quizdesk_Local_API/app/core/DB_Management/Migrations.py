# Migrations.py
# Description: Ordered schema migrations for the local store, applied exactly once each and tracked in a ledger.
#
# Imports
import sqlite3
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Set, Tuple
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from quizdesk_Local_API.app.core.DB_Management.Local_Store_DB import (
    LocalStoreDB,
    SchemaError,
    get_current_utc_timestamp_iso,
)
from quizdesk_Local_API.app.core.DB_Management.Schema_Utils import (
    CLASS_CONSTRAINED_TABLES,
    CLASS_VALUES,
    INDEX_SQL,
    MIGRATION_LEDGER_TABLE_SQL,
    QUESTIONS_TABLE_SQL,
    QUIZ_ATTEMPTS_TABLE_SQL,
    SYNC_QUEUE_TABLE_SQL,
    SYNC_TIMESTAMPS_TABLE_SQL,
    SYNCABLE_TABLES,
    get_subjects_table_sql,
    get_table_columns,
    get_table_sql,
    get_users_table_sql,
    parse_check_values,
)
#
########################################################################################################################
#
# Functions:


# --- Exceptions ---
class MigrationError(SchemaError):
    """Base class for migration failures. Any of them blocks startup."""

    def __init__(self, message: str, migration_id: Optional[str] = None):
        super().__init__(message)
        self.migration_id = migration_id

    def __str__(self):
        base = super().__str__()
        return f"{base} (Migration: {self.migration_id})" if self.migration_id else base


class MigrationDetectionError(MigrationError):
    """The current schema could not be inspected well enough to decide whether a change is needed."""
    pass


class MigrationRebuildError(MigrationError):
    """Applying a migration failed. The transaction was rolled back and the ledger left untouched."""
    pass


class MigrationConfigurationError(MigrationError):
    """The registered migrations or a rebuild plan disagree with the schema they target."""
    pass


# --- Value objects ---
@dataclass(frozen=True)
class SchemaMigration:
    id: str
    description: str
    apply: Callable[[sqlite3.Connection], None]


@dataclass(frozen=True)
class MigrationLedgerEntry:
    id: str
    description: str
    applied_at: str


@dataclass(frozen=True)
class RebuildPlan:
    """
    Shadow-table rebuild of one table: create `temp_name` from `create_sql`, copy
    `copy_columns` across, drop the original, rename the shadow into place, then run
    `post_sql` (indexes are dropped together with the original table).
    """
    table_name: str
    temp_name: str
    create_sql: str
    copy_columns: Tuple[str, ...]
    post_sql: Tuple[str, ...] = ()


def _column_names(conn: sqlite3.Connection, table_name: str) -> List[str]:
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table_name})").fetchall()]


def _table_definition(conn: sqlite3.Connection, table_name: str) -> Optional[str]:
    row = conn.execute("SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?", (table_name,)).fetchone()
    return row[0] if row else None


def build_class_rebuild_plan(table_name: str, class_values: Sequence[str] = CLASS_VALUES) -> RebuildPlan:
    temp_name = f"{table_name}_class_migration_temp"
    return RebuildPlan(
        table_name=table_name,
        temp_name=temp_name,
        create_sql=get_table_sql(table_name, temp_name, class_values),
        copy_columns=tuple(get_table_columns(table_name)),
        post_sql=tuple(INDEX_SQL.get(table_name, [])),
    )


def execute_rebuild_plan(conn: sqlite3.Connection, plan: RebuildPlan) -> int:
    """
    Runs a RebuildPlan on a connection that is already inside a transaction.

    Every column of the old table must be listed in `copy_columns` and exist in the shadow
    table; anything else is a configuration error rather than silently dropped data.
    Returns the number of rows copied.
    """
    old_columns = _column_names(conn, plan.table_name)
    if not old_columns:
        raise MigrationConfigurationError(f"Cannot rebuild '{plan.table_name}': table does not exist.")
    not_copied = [col for col in old_columns if col not in plan.copy_columns]
    unknown = [col for col in plan.copy_columns if col not in old_columns]
    if not_copied or unknown:
        raise MigrationConfigurationError(
            f"Rebuild plan for '{plan.table_name}' does not match the table: "
            f"columns not copied={not_copied}, columns missing from table={unknown}"
        )

    try:
        conn.execute(f"DROP TABLE IF EXISTS {plan.temp_name}")
        conn.execute(plan.create_sql)
    except sqlite3.Error as e:
        raise MigrationRebuildError(f"Creating shadow table '{plan.temp_name}' failed: {e}") from e

    shadow_columns = _column_names(conn, plan.temp_name)
    missing_in_shadow = [col for col in plan.copy_columns if col not in shadow_columns]
    extra_in_shadow = [col for col in shadow_columns if col not in plan.copy_columns]
    if missing_in_shadow or extra_in_shadow:
        raise MigrationConfigurationError(
            f"Shadow table '{plan.temp_name}' does not match the plan: "
            f"missing={missing_in_shadow}, not populated={extra_in_shadow}"
        )

    column_list = ", ".join(plan.copy_columns)
    try:
        conn.execute(
            f"INSERT INTO {plan.temp_name} ({column_list}) SELECT {column_list} FROM {plan.table_name}"
        )
        original_count = conn.execute(f"SELECT COUNT(*) FROM {plan.table_name}").fetchone()[0]
        copied_count = conn.execute(f"SELECT COUNT(*) FROM {plan.temp_name}").fetchone()[0]
        if original_count != copied_count:
            raise MigrationRebuildError(
                f"Row copy for '{plan.table_name}' incomplete: {copied_count} of {original_count} rows."
            )
        conn.execute(f"DROP TABLE {plan.table_name}")
        conn.execute(f"ALTER TABLE {plan.temp_name} RENAME TO {plan.table_name}")
        for statement in plan.post_sql:
            conn.execute(statement)
    except sqlite3.Error as e:
        raise MigrationRebuildError(f"Rebuild of '{plan.table_name}' failed: {e}") from e

    logger.info(f"[Migrations] Rebuilt '{plan.table_name}' via '{plan.temp_name}' ({copied_count} rows).")
    return copied_count


class MigrationRunner:
    """Applies pending migrations in ascending id order, one transaction per migration."""

    def __init__(self, migrations: Sequence[SchemaMigration]):
        seen: Set[str] = set()
        duplicates: Set[str] = set()
        for migration in migrations:
            if migration.id in seen:
                duplicates.add(migration.id)
            seen.add(migration.id)
        if duplicates:
            raise MigrationConfigurationError(f"Duplicate migration ids registered: {sorted(duplicates)}")
        self.migrations: List[SchemaMigration] = sorted(migrations, key=lambda m: m.id)

    @staticmethod
    def ensure_ledger(store: LocalStoreDB):
        store.execute_query(MIGRATION_LEDGER_TABLE_SQL)

    def get_ledger(self, store: LocalStoreDB) -> List[MigrationLedgerEntry]:
        self.ensure_ledger(store)
        rows = store.execute_query("SELECT id, description, applied_at FROM schema_migrations ORDER BY id").fetchall()
        return [MigrationLedgerEntry(id=row['id'], description=row['description'], applied_at=row['applied_at'])
                for row in rows]

    def pending(self, store: LocalStoreDB) -> List[SchemaMigration]:
        applied = {entry.id for entry in self.get_ledger(store)}
        return [m for m in self.migrations if m.id not in applied]

    def apply_all(self, store: LocalStoreDB) -> List[MigrationLedgerEntry]:
        """
        Brings the store up to date. Returns the ledger entries written by this call,
        an empty list when the store is already current.

        Raises:
            MigrationDetectionError, MigrationRebuildError, MigrationConfigurationError
        """
        applied_ids = {entry.id for entry in self.get_ledger(store)}
        known_ids = {m.id for m in self.migrations}
        unknown = sorted(applied_ids - known_ids)
        if unknown:
            logger.warning(f"[Migrations] Ledger lists migrations unknown to this build: {unknown}")

        pending = [m for m in self.migrations if m.id not in applied_ids]
        if not pending:
            logger.debug(f"[Migrations] Schema of {store.db_path_str} is current.")
            return []

        logger.info(f"[Migrations] {len(pending)} pending migration(s): {[m.id for m in pending]}")
        return [self._apply_one(store, migration) for migration in pending]

    def _apply_one(self, store: LocalStoreDB, migration: SchemaMigration) -> MigrationLedgerEntry:
        conn = store.get_connection()
        # Has no effect inside a transaction, so it is toggled around it.
        conn.execute("PRAGMA foreign_keys = OFF")
        try:
            with store.transaction() as tx:
                try:
                    migration.apply(tx)
                except MigrationError as e:
                    if e.migration_id is None:
                        e.migration_id = migration.id
                    raise
                except Exception as e:
                    raise MigrationRebuildError(f"Migration failed: {e}", migration_id=migration.id) from e

                violations = tx.execute("PRAGMA foreign_key_check").fetchall()
                if violations:
                    raise MigrationRebuildError(
                        f"Migration left {len(violations)} foreign key violation(s), "
                        f"first in table '{violations[0][0]}'",
                        migration_id=migration.id,
                    )
                entry = MigrationLedgerEntry(
                    id=migration.id, description=migration.description, applied_at=get_current_utc_timestamp_iso()
                )
                tx.execute(
                    "INSERT INTO schema_migrations (id, description, applied_at) VALUES (?, ?, ?)",
                    (entry.id, entry.description, entry.applied_at),
                )
        finally:
            conn.execute("PRAGMA foreign_keys = ON")
        logger.info(f"[Migrations] Applied {migration.id}: {migration.description}")
        return entry


# --- Registered migrations ---
def _create_base_tables(conn: sqlite3.Connection):
    conn.execute(get_users_table_sql(if_not_exists=True))
    conn.execute(get_subjects_table_sql(if_not_exists=True))
    conn.execute(QUESTIONS_TABLE_SQL)
    conn.execute(QUIZ_ATTEMPTS_TABLE_SQL)
    conn.execute(SYNC_QUEUE_TABLE_SQL)
    conn.execute(SYNC_TIMESTAMPS_TABLE_SQL)


def _add_subject_metadata_columns(conn: sqlite3.Connection):
    columns = _column_names(conn, "subjects")
    if "category" not in columns:
        conn.execute("ALTER TABLE subjects ADD COLUMN category TEXT")
    if "academic_year" not in columns:
        conn.execute("ALTER TABLE subjects ADD COLUMN academic_year TEXT")


def _add_revision_columns(conn: sqlite3.Connection):
    for table_name in SYNCABLE_TABLES:
        if "version" not in _column_names(conn, table_name):
            conn.execute(f"ALTER TABLE {table_name} ADD COLUMN version INTEGER NOT NULL DEFAULT 1")


def class_constraint_needs_rebuild(conn: sqlite3.Connection, table_name: str,
                                   desired: Sequence[str] = CLASS_VALUES) -> bool:
    create_sql = _table_definition(conn, table_name)
    if create_sql is None:
        raise MigrationDetectionError(f"Table '{table_name}' does not exist; cannot inspect its class constraint.")
    try:
        current = parse_check_values(create_sql, "class")
    except ValueError as e:
        raise MigrationDetectionError(f"Cannot read class constraint of '{table_name}': {e}") from e
    if current is None:
        raise MigrationDetectionError(f"Table '{table_name}' has no class CHECK constraint to compare.")
    return not set(desired) <= current


def _update_class_enum_constraints(conn: sqlite3.Connection):
    for table_name in CLASS_CONSTRAINED_TABLES:
        if class_constraint_needs_rebuild(conn, table_name):
            execute_rebuild_plan(conn, build_class_rebuild_plan(table_name))
        else:
            logger.debug(f"[Migrations] Class constraint of '{table_name}' already current.")


def _create_indexes(conn: sqlite3.Connection):
    for statements in INDEX_SQL.values():
        for statement in statements:
            conn.execute(statement)


REGISTERED_MIGRATIONS: List[SchemaMigration] = [
    SchemaMigration("000_create_base_tables", "Create application, queue and sync bookkeeping tables",
                    _create_base_tables),
    SchemaMigration("001_add_subject_metadata_columns", "Add category and academic_year to subjects",
                    _add_subject_metadata_columns),
    SchemaMigration("002_add_revision_columns", "Add version revision marker to syncable tables",
                    _add_revision_columns),
    SchemaMigration("003_update_class_enum_constraints", "Widen users/subjects class constraint to all classes",
                    _update_class_enum_constraints),
    SchemaMigration("004_create_indexes", "Create lookup indexes", _create_indexes),
]

#
# End of Migrations.py
########################################################################################################################
