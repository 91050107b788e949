# Schema_Utils.py
# Description: Table definitions, column lists and constraint parsing for the local quiz store.
#
# Imports
import re
from typing import Dict, List, Optional, Sequence, Set, Tuple
#
# 3rd-party Libraries
#
# Local Imports
#
########################################################################################################################
#
# Functions:

# --- Class (grade) values ---
# Full set of classes the app accepts in users.class / subjects.class
CLASS_VALUES: List[str] = [
    "BASIC1", "BASIC2", "BASIC3", "BASIC4", "BASIC5", "BASIC6",
    "JSS1", "JSS2", "JSS3",
    "SS1", "SS2", "SS3",
]
# Set shipped by the first desktop releases; stores created back then still carry it.
LEGACY_CLASS_VALUES: List[str] = ["SS2", "JSS3", "BASIC5"]

GENDER_VALUES: List[str] = ["MALE", "FEMALE"]

# Parents before children, the order in which pulled rows are merged.
SYNCABLE_TABLES: List[str] = ["users", "subjects", "questions", "quiz_attempts"]

# Tables holding a CHECK (class IN (...)) constraint.
CLASS_CONSTRAINED_TABLES: List[str] = ["users", "subjects"]

# (child table, foreign key column) pairs whose rows ON DELETE CASCADE removes with the parent.
CHILD_REFERENCES: Dict[str, List[Tuple[str, str]]] = {
    "users": [("quiz_attempts", "user_id")],
    "subjects": [("questions", "subject_id"), ("quiz_attempts", "subject_id")],
}

# Tables whose content decides whether the local store counts as "empty".
CONTENT_TABLES: List[str] = ["users", "subjects", "questions"]

USER_COLUMNS: List[str] = [
    "id", "name", "student_code", "password_hash", "class", "gender",
    "created_at", "updated_at", "last_synced", "is_active", "last_login", "version",
]

SUBJECT_COLUMNS: List[str] = [
    "id", "name", "subject_code", "description", "class", "total_questions",
    "created_at", "updated_at", "is_active", "category", "academic_year", "version",
]

QUESTION_COLUMNS: List[str] = [
    "id", "subject_id", "subject_code", "text", "options", "answer", "question_order",
    "created_at", "updated_at", "explanation", "is_active", "version",
]

QUIZ_ATTEMPT_COLUMNS: List[str] = [
    "id", "user_id", "subject_id", "answers", "score", "total_questions", "submitted",
    "started_at", "submitted_at", "updated_at", "session_duration", "elapsed_time",
    "last_active_at", "version",
]

TABLE_COLUMNS: Dict[str, List[str]] = {
    "users": USER_COLUMNS,
    "subjects": SUBJECT_COLUMNS,
    "questions": QUESTION_COLUMNS,
    "quiz_attempts": QUIZ_ATTEMPT_COLUMNS,
}


def format_check_values(values: Sequence[str]) -> str:
    """Renders values as the body of a SQL IN (...) list: 'A', 'B'."""
    return ", ".join(f"'{value}'" for value in values)


def get_users_table_sql(table_name: str = "users", class_values: Sequence[str] = CLASS_VALUES,
                        if_not_exists: bool = False) -> str:
    exists_clause = "IF NOT EXISTS " if if_not_exists else ""
    return f"""CREATE TABLE {exists_clause}{table_name} (
    id TEXT PRIMARY KEY NOT NULL,
    name TEXT NOT NULL,
    student_code TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    class TEXT NOT NULL CHECK (class IN ({format_check_values(class_values)})),
    gender TEXT NOT NULL CHECK (gender IN ({format_check_values(GENDER_VALUES)})),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_synced TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_login TEXT,
    version INTEGER NOT NULL DEFAULT 1
)"""


def get_subjects_table_sql(table_name: str = "subjects", class_values: Sequence[str] = CLASS_VALUES,
                           if_not_exists: bool = False) -> str:
    exists_clause = "IF NOT EXISTS " if if_not_exists else ""
    return f"""CREATE TABLE {exists_clause}{table_name} (
    id TEXT PRIMARY KEY NOT NULL,
    name TEXT NOT NULL,
    subject_code TEXT NOT NULL UNIQUE,
    description TEXT,
    class TEXT NOT NULL CHECK (class IN ({format_check_values(class_values)})),
    total_questions INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    category TEXT,
    academic_year TEXT,
    version INTEGER NOT NULL DEFAULT 1
)"""


QUESTIONS_TABLE_SQL = """CREATE TABLE IF NOT EXISTS questions (
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
    is_active INTEGER NOT NULL DEFAULT 1,
    version INTEGER NOT NULL DEFAULT 1
)"""

QUIZ_ATTEMPTS_TABLE_SQL = """CREATE TABLE IF NOT EXISTS quiz_attempts (
    id TEXT PRIMARY KEY NOT NULL,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    subject_id TEXT NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
    answers TEXT NOT NULL DEFAULT '{}',
    score INTEGER,
    total_questions INTEGER NOT NULL DEFAULT 0,
    submitted INTEGER NOT NULL DEFAULT 0,
    started_at TEXT NOT NULL,
    submitted_at TEXT,
    updated_at TEXT NOT NULL,
    session_duration INTEGER,
    elapsed_time INTEGER NOT NULL DEFAULT 0,
    last_active_at TEXT,
    version INTEGER NOT NULL DEFAULT 1
)"""

# --- Internal tables ---
MIGRATION_LEDGER_TABLE_SQL = """CREATE TABLE IF NOT EXISTS schema_migrations (
    id TEXT PRIMARY KEY NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    applied_at TEXT NOT NULL
)"""

SYNC_QUEUE_TABLE_SQL = """CREATE TABLE IF NOT EXISTS sync_queue (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    type TEXT NOT NULL CHECK (type IN ('insert', 'update', 'delete')),
    table_name TEXT NOT NULL,
    record_id TEXT NOT NULL,
    payload TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'in_flight', 'committed', 'failed')),
    enqueued_at TEXT NOT NULL,
    attempted_at TEXT,
    completed_at TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    last_error TEXT
)"""

SYNC_TIMESTAMPS_TABLE_SQL = """CREATE TABLE IF NOT EXISTS sync_timestamps (
    table_name TEXT PRIMARY KEY NOT NULL,
    pull_watermark TEXT,
    last_pull_sync TEXT,
    last_push_sync TEXT,
    last_full_sync TEXT
)"""

INDEX_SQL: Dict[str, List[str]] = {
    "users": [
        "CREATE INDEX IF NOT EXISTS idx_users_student_code ON users(student_code)",
        "CREATE INDEX IF NOT EXISTS idx_users_class ON users(class)",
    ],
    "subjects": [
        "CREATE INDEX IF NOT EXISTS idx_subjects_subject_code ON subjects(subject_code)",
        "CREATE INDEX IF NOT EXISTS idx_subjects_class ON subjects(class)",
    ],
    "questions": [
        "CREATE INDEX IF NOT EXISTS idx_questions_subject_id ON questions(subject_id)",
    ],
    "quiz_attempts": [
        "CREATE INDEX IF NOT EXISTS idx_quiz_attempts_user_id ON quiz_attempts(user_id)",
        "CREATE INDEX IF NOT EXISTS idx_quiz_attempts_subject_id ON quiz_attempts(subject_id)",
    ],
    "sync_queue": [
        "CREATE INDEX IF NOT EXISTS idx_sync_queue_status_seq ON sync_queue(status, seq)",
        "CREATE INDEX IF NOT EXISTS idx_sync_queue_record ON sync_queue(table_name, record_id)",
    ],
}


def get_table_sql(table_name: str, target_name: Optional[str] = None,
                  class_values: Sequence[str] = CLASS_VALUES, if_not_exists: bool = False) -> str:
    """Returns the CREATE TABLE statement of a class-constrained table, optionally under another name."""
    target_name = target_name or table_name
    if table_name == "users":
        return get_users_table_sql(target_name, class_values, if_not_exists)
    if table_name == "subjects":
        return get_subjects_table_sql(target_name, class_values, if_not_exists)
    raise ValueError(f"No rebuildable definition for table '{table_name}'")


def get_table_columns(table_name: str) -> List[str]:
    try:
        return list(TABLE_COLUMNS[table_name])
    except KeyError:
        raise ValueError(f"Unknown syncable table '{table_name}'") from None


# --- Constraint parsing ---
_QUOTED_VALUE_RE = re.compile(r"'((?:[^']|'')*)'")


def parse_check_values(create_sql: Optional[str], column: str) -> Optional[Set[str]]:
    """
    Extracts the allowed-value set of a `CHECK (column IN (...))` clause from a stored
    CREATE TABLE statement.

    Returns None when the statement carries no such clause for the column. Raises ValueError
    when a clause is present but its value list cannot be read.
    """
    if not create_sql:
        return None
    pattern = re.compile(
        r"CHECK\s*\(\s*[\"`\[]?" + re.escape(column) + r"[\"`\]]?\s+IN\s*\(([^)]*)\)",
        re.IGNORECASE,
    )
    match = pattern.search(create_sql)
    if not match:
        return None
    body = match.group(1).strip()
    if not body:
        raise ValueError(f"Empty value list in CHECK constraint on '{column}'")
    values = [v.replace("''", "'") for v in _QUOTED_VALUE_RE.findall(body)]
    # Every comma-separated item must be a quoted literal
    if len(values) != len([item for item in body.split(",") if item.strip()]):
        raise ValueError(f"Unparseable CHECK constraint on '{column}': ({body})")
    return set(values)

#
# End of Schema_Utils.py
########################################################################################################################
