# test_migration_runner.py
# Description: Tests for the migration runner: ledger bookkeeping, legacy upgrades and shadow-table rebuilds.
#
# Imports
import sqlite3
#
# 3rd-party Libraries
import pytest
#
# Local Imports
from quizdesk_Local_API.app.core.DB_Management.Local_Store_DB import (
    LocalStoreDB,
    SchemaError,
    open_local_store,
)
from quizdesk_Local_API.app.core.DB_Management.Migrations import (
    REGISTERED_MIGRATIONS,
    MigrationConfigurationError,
    MigrationDetectionError,
    MigrationRebuildError,
    MigrationRunner,
    RebuildPlan,
    SchemaMigration,
    build_class_rebuild_plan,
    execute_rebuild_plan,
)
from quizdesk_Local_API.app.core.DB_Management.Schema_Utils import (
    CLASS_VALUES,
    LEGACY_CLASS_VALUES,
    parse_check_values,
)
#
#######################################################################################################################
#
# Helpers

REGISTERED_IDS = [m.id for m in REGISTERED_MIGRATIONS]

LEGACY_USERS_SQL = """
CREATE TABLE users (
    id TEXT PRIMARY KEY NOT NULL,
    name TEXT NOT NULL,
    student_code TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    class TEXT NOT NULL CHECK (class IN ('SS2', 'JSS3', 'BASIC5')),
    gender TEXT NOT NULL CHECK (gender IN ('MALE', 'FEMALE')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_synced TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_login TEXT
)"""

LEGACY_SUBJECTS_SQL = """
CREATE TABLE subjects (
    id TEXT PRIMARY KEY NOT NULL,
    name TEXT NOT NULL,
    subject_code TEXT NOT NULL UNIQUE,
    description TEXT,
    class TEXT NOT NULL CHECK (class IN ('SS2', 'JSS3', 'BASIC5')),
    total_questions INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1
)"""

LEGACY_QUESTIONS_SQL = """
CREATE TABLE questions (
    id TEXT PRIMARY KEY NOT NULL,
    subject_id TEXT NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
    subject_code TEXT NOT NULL,
    text TEXT NOT NULL,
    options TEXT NOT NULL,
    answer TEXT NOT NULL,
    question_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    explanation TEXT,
    is_active INTEGER NOT NULL DEFAULT 1
)"""

TS = "2024-03-01T08:00:00.000Z"


def create_legacy_store(path, users_sql=LEGACY_USERS_SQL):
    """Writes a store as shipped by the first desktop release: narrow class enum, no version columns."""
    conn = sqlite3.connect(str(path))
    try:
        conn.execute(users_sql)
        conn.execute(LEGACY_SUBJECTS_SQL)
        conn.execute(LEGACY_QUESTIONS_SQL)
        conn.execute(
            "INSERT INTO users (id, name, student_code, password_hash, class, gender, created_at, updated_at) "
            "VALUES ('u-1', 'Chidi Okafor', 'STU-001', 'hash', 'SS2', 'MALE', ?, ?)", (TS, TS))
        conn.execute(
            "INSERT INTO subjects (id, name, subject_code, class, created_at, updated_at) "
            "VALUES ('s-1', 'English', 'ENG-SS2', 'SS2', ?, ?)", (TS, TS))
        conn.execute(
            "INSERT INTO questions (id, subject_id, subject_code, text, options, answer, created_at, updated_at) "
            "VALUES ('q-1', 's-1', 'ENG-SS2', 'Pick the noun', '[\"run\", \"table\"]', 'table', ?, ?)", (TS, TS))
        conn.commit()
    finally:
        conn.close()


def schema_snapshot(store: LocalStoreDB):
    rows = store.execute_query(
        "SELECT type, name, sql FROM sqlite_master WHERE name NOT LIKE 'sqlite_%' ORDER BY type, name"
    ).fetchall()
    return [tuple(row) for row in rows]


def ledger_ids(store: LocalStoreDB):
    return [entry.id for entry in MigrationRunner(REGISTERED_MIGRATIONS).get_ledger(store)]


@pytest.fixture
def legacy_path(tmp_path):
    path = tmp_path / "legacy_store.db"
    create_legacy_store(path)
    return path


#
#######################################################################################################################
#
# Tests


class TestFreshStore:

    def test_all_registered_migrations_applied_in_order(self, tmp_path):
        store = LocalStoreDB(tmp_path / "fresh.db", "c1")
        try:
            applied = MigrationRunner(REGISTERED_MIGRATIONS).apply_all(store)
            assert [entry.id for entry in applied] == sorted(REGISTERED_IDS)
            assert ledger_ids(store) == sorted(REGISTERED_IDS)
            for table in ("users", "subjects", "questions", "quiz_attempts", "sync_queue", "sync_timestamps"):
                assert store.table_exists(table)
        finally:
            store.close_all_connections()

    def test_fresh_tables_already_carry_the_full_class_enum(self, store):
        for table in ("users", "subjects"):
            values = parse_check_values(store.get_table_definition(table), "class")
            assert values == set(CLASS_VALUES)

    def test_second_run_is_a_no_op(self, store):
        before_schema = schema_snapshot(store)
        before_ledger = MigrationRunner(REGISTERED_MIGRATIONS).get_ledger(store)

        applied = MigrationRunner(REGISTERED_MIGRATIONS).apply_all(store)

        assert applied == []
        assert schema_snapshot(store) == before_schema
        assert MigrationRunner(REGISTERED_MIGRATIONS).get_ledger(store) == before_ledger

    def test_reopening_store_applies_nothing(self, db_path, client_id):
        first = open_local_store(db_path, client_id)
        snapshot = schema_snapshot(first)
        first.close_all_connections()

        second = open_local_store(db_path, client_id)
        try:
            assert schema_snapshot(second) == snapshot
            assert MigrationRunner(REGISTERED_MIGRATIONS).pending(second) == []
        finally:
            second.close_all_connections()

    def test_foreign_keys_re_enabled_after_run(self, store):
        assert store.execute_query("PRAGMA foreign_keys").fetchone()[0] == 1


class TestLegacyUpgrade:

    def test_legacy_store_is_upgraded_with_rows_preserved(self, legacy_path):
        store = open_local_store(legacy_path, "c1")
        try:
            assert ledger_ids(store) == sorted(REGISTERED_IDS)

            user = store.get_record("users", "u-1")
            assert user["name"] == "Chidi Okafor"
            assert user["class"] == "SS2"
            assert user["version"] == 1

            subject = store.get_record("subjects", "s-1")
            assert subject["subject_code"] == "ENG-SS2"
            assert subject["category"] is None
            assert subject["academic_year"] is None

            # The rebuild of subjects must not cascade into its questions
            question = store.get_record("questions", "q-1")
            assert question is not None
            assert question["version"] == 1
        finally:
            store.close_all_connections()

    def test_upgraded_constraint_accepts_new_classes(self, legacy_path):
        store = open_local_store(legacy_path, "c1")
        try:
            for table in ("users", "subjects"):
                values = parse_check_values(store.get_table_definition(table), "class")
                assert set(CLASS_VALUES) <= values
            store.execute_query("UPDATE users SET class = 'BASIC1' WHERE id = 'u-1'")
            assert store.get_record("users", "u-1")["class"] == "BASIC1"
            assert not store.table_exists("users_class_migration_temp")
            assert not store.table_exists("subjects_class_migration_temp")
        finally:
            store.close_all_connections()

    def test_indexes_recreated_after_rebuild(self, legacy_path):
        store = open_local_store(legacy_path, "c1")
        try:
            indexes = {row["name"] for row in store.execute_query(
                "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name IN ('users', 'subjects')"
            ).fetchall()}
            assert "idx_users_student_code" in indexes
            assert "idx_subjects_class" in indexes
        finally:
            store.close_all_connections()

    def test_upgraded_store_passes_integrity_check(self, legacy_path):
        store = open_local_store(legacy_path, "c1")
        try:
            assert store.check_integrity().ok
        finally:
            store.close_all_connections()


class TestInterruptedRebuild:

    def test_failure_mid_rebuild_leaves_original_table_and_ledger(self, legacy_path):
        def crash_after_rebuild(conn):
            execute_rebuild_plan(conn, build_class_rebuild_plan("users"))
            raise RuntimeError("simulated crash")

        migrations = [m for m in REGISTERED_MIGRATIONS if m.id != "003_update_class_enum_constraints"]
        migrations.append(SchemaMigration("003_update_class_enum_constraints", "crashes", crash_after_rebuild))

        with pytest.raises(MigrationRebuildError) as exc_info:
            open_local_store(legacy_path, "c1", migrations=migrations)
        assert exc_info.value.migration_id == "003_update_class_enum_constraints"

        conn = sqlite3.connect(str(legacy_path))
        try:
            users_sql = conn.execute("SELECT sql FROM sqlite_master WHERE name = 'users'").fetchone()[0]
            assert parse_check_values(users_sql, "class") == set(LEGACY_CLASS_VALUES)
            assert conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 1
            assert conn.execute(
                "SELECT COUNT(*) FROM sqlite_master WHERE name = 'users_class_migration_temp'").fetchone()[0] == 0
            applied = [row[0] for row in conn.execute("SELECT id FROM schema_migrations ORDER BY id")]
            assert applied == ["000_create_base_tables", "001_add_subject_metadata_columns",
                               "002_add_revision_columns"]
        finally:
            conn.close()

        # A clean run afterwards completes the upgrade
        store = open_local_store(legacy_path, "c1")
        try:
            assert ledger_ids(store) == sorted(REGISTERED_IDS)
            assert store.get_record("users", "u-1")["name"] == "Chidi Okafor"
        finally:
            store.close_all_connections()

    def test_foreign_keys_restored_after_failed_migration(self, tmp_path):
        def boom(conn):
            conn.execute("CREATE TABLE scratch (id INTEGER)")
            raise RuntimeError("boom")

        store = LocalStoreDB(tmp_path / "fk.db", "c1")
        try:
            runner = MigrationRunner([SchemaMigration("000_boom", "fails", boom)])
            with pytest.raises(MigrationRebuildError):
                runner.apply_all(store)
            assert store.execute_query("PRAGMA foreign_keys").fetchone()[0] == 1
            assert not store.table_exists("scratch")
            assert runner.get_ledger(store) == []
        finally:
            store.close_all_connections()

    def test_migration_leaving_dangling_reference_is_rolled_back(self, tmp_path):
        def orphan_question(conn):
            conn.execute("CREATE TABLE parent (id TEXT PRIMARY KEY)")
            conn.execute("CREATE TABLE child (id TEXT PRIMARY KEY, parent_id TEXT REFERENCES parent(id))")
            conn.execute("INSERT INTO child (id, parent_id) VALUES ('c', 'missing')")

        store = LocalStoreDB(tmp_path / "orphan.db", "c1")
        try:
            with pytest.raises(MigrationRebuildError, match="foreign key"):
                MigrationRunner([SchemaMigration("000_orphan", "orphans", orphan_question)]).apply_all(store)
            assert not store.table_exists("child")
        finally:
            store.close_all_connections()


class TestDetectionAndConfiguration:

    def test_unparseable_class_constraint_is_detection_error(self, tmp_path):
        path = tmp_path / "odd.db"
        create_legacy_store(path, users_sql=LEGACY_USERS_SQL.replace(
            "CHECK (class IN ('SS2', 'JSS3', 'BASIC5'))", "CHECK (class IN ('SS2', name))"))

        with pytest.raises(MigrationDetectionError) as exc_info:
            open_local_store(path, "c1")
        assert exc_info.value.migration_id == "003_update_class_enum_constraints"

    def test_missing_class_constraint_is_detection_error(self, tmp_path):
        path = tmp_path / "unchecked.db"
        create_legacy_store(path, users_sql=LEGACY_USERS_SQL.replace(
            " CHECK (class IN ('SS2', 'JSS3', 'BASIC5'))", ""))

        with pytest.raises(MigrationDetectionError):
            open_local_store(path, "c1")

    def test_detection_error_is_a_schema_error(self):
        assert issubclass(MigrationDetectionError, SchemaError)

    def test_unknown_legacy_column_is_configuration_error(self, tmp_path):
        path = tmp_path / "extra_column.db"
        create_legacy_store(path, users_sql=LEGACY_USERS_SQL.replace(
            "last_login TEXT", "last_login TEXT,\n    nickname TEXT"))

        with pytest.raises(MigrationConfigurationError, match="nickname"):
            open_local_store(path, "c1")

        conn = sqlite3.connect(str(path))
        try:
            columns = [row[1] for row in conn.execute("PRAGMA table_info(users)")]
            assert "nickname" in columns
        finally:
            conn.close()

    def test_plan_shadow_mismatch_is_configuration_error(self, store):
        plan = RebuildPlan(
            table_name="users",
            temp_name="users_shadow",
            create_sql="CREATE TABLE users_shadow (id TEXT PRIMARY KEY)",
            copy_columns=tuple(store.get_table_columns("users")),
        )
        with pytest.raises(MigrationConfigurationError):
            with store.transaction() as conn:
                execute_rebuild_plan(conn, plan)
        assert not store.table_exists("users_shadow")

    def test_duplicate_migration_ids_rejected(self):
        noop = SchemaMigration("001_same", "first", lambda conn: None)
        again = SchemaMigration("001_same", "second", lambda conn: None)
        with pytest.raises(MigrationConfigurationError, match="001_same"):
            MigrationRunner([noop, again])

    def test_migrations_sorted_by_id(self):
        late = SchemaMigration("010_late", "late", lambda conn: None)
        early = SchemaMigration("002_early", "early", lambda conn: None)
        assert [m.id for m in MigrationRunner([late, early]).migrations] == ["002_early", "010_late"]

    def test_unknown_ledger_entries_do_not_block(self, store):
        store.execute_query(
            "INSERT INTO schema_migrations (id, description, applied_at) VALUES ('999_future', 'newer build', ?)",
            (TS,))
        assert MigrationRunner(REGISTERED_MIGRATIONS).apply_all(store) == []

#
# End of test_migration_runner.py
#######################################################################################################################
