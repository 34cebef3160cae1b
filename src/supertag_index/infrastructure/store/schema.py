"""
Index store schema definitions and migrations.

Everything here is idempotent: creation uses IF NOT EXISTS and migrations
only add what is missing. Nothing is ever dropped or truncated.
"""

import logging
import sqlite3
from typing import Optional

from supertag_index.core.config import RetryConfig

from .models import MigrationError
from .retry import with_db_retry

logger = logging.getLogger(__name__)

SCHEMA = """
-- One row per exported document
CREATE TABLE IF NOT EXISTS nodes (
    id TEXT PRIMARY KEY,
    name TEXT,
    parent_id TEXT,
    node_type TEXT NOT NULL DEFAULT 'node',
    created INTEGER,
    updated INTEGER,
    done_at INTEGER,
    raw_data TEXT NOT NULL
);

-- Type definition tuples
CREATE TABLE IF NOT EXISTS supertags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    node_id TEXT NOT NULL,
    tag_name TEXT NOT NULL,
    tag_id TEXT NOT NULL,
    color TEXT
);

-- Field definition tuples
CREATE TABLE IF NOT EXISTS fields (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    node_id TEXT NOT NULL,
    field_name TEXT NOT NULL,
    field_id TEXT NOT NULL
);

-- Inline references extracted from node text
CREATE TABLE IF NOT EXISTS "references" (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    from_node TEXT NOT NULL,
    to_node TEXT NOT NULL,
    reference_type TEXT NOT NULL
);

-- Which data nodes carry which tags
CREATE TABLE IF NOT EXISTS tag_applications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tuple_node_id TEXT NOT NULL,
    data_node_id TEXT NOT NULL,
    tag_id TEXT NOT NULL,
    tag_name TEXT NOT NULL
);

-- Field label id to name
CREATE TABLE IF NOT EXISTS field_names (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    field_id TEXT NOT NULL UNIQUE,
    field_name TEXT NOT NULL,
    supertags TEXT
);

-- Concrete field values attached to data nodes
CREATE TABLE IF NOT EXISTS field_values (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tuple_id TEXT NOT NULL,
    parent_id TEXT NOT NULL,
    field_def_id TEXT NOT NULL,
    field_name TEXT NOT NULL,
    value_node_id TEXT NOT NULL,
    value_text TEXT NOT NULL,
    value_order INTEGER DEFAULT 0,
    created INTEGER
);

-- Field names never extracted as values
CREATE TABLE IF NOT EXISTS field_exclusions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    field_name TEXT NOT NULL UNIQUE,
    reason TEXT
);

-- Type definitions
CREATE TABLE IF NOT EXISTS supertag_metadata (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tag_id TEXT NOT NULL UNIQUE,
    tag_name TEXT NOT NULL,
    normalized_name TEXT,
    description TEXT,
    color TEXT,
    created_at INTEGER DEFAULT (strftime('%s', 'now') * 1000)
);

-- Fields declared on each type
CREATE TABLE IF NOT EXISTS supertag_fields (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tag_id TEXT NOT NULL,
    tag_name TEXT NOT NULL,
    field_name TEXT NOT NULL,
    field_label_id TEXT NOT NULL,
    field_order INTEGER DEFAULT 0,
    UNIQUE(tag_id, field_name)
);

-- Type inheritance edges
CREATE TABLE IF NOT EXISTS supertag_parents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    child_tag_id TEXT NOT NULL,
    parent_tag_id TEXT NOT NULL,
    UNIQUE(child_tag_id, parent_tag_id)
);

-- Content fingerprints from the last sync
CREATE TABLE IF NOT EXISTS node_checksums (
    node_id TEXT PRIMARY KEY,
    checksum TEXT NOT NULL,
    last_seen INTEGER NOT NULL
);

-- Singleton bookkeeping row
CREATE TABLE IF NOT EXISTS sync_metadata (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    last_export_file TEXT NOT NULL,
    last_sync_timestamp INTEGER NOT NULL,
    total_nodes INTEGER NOT NULL
);
"""

# Columns added to supertag_fields after the table was first introduced.
SUPERTAG_FIELD_COLUMNS = {
    "normalized_name": "TEXT",
    "description": "TEXT",
    "inferred_data_type": "TEXT DEFAULT 'text'",
    "target_supertag_id": "TEXT",
    "target_supertag_name": "TEXT",
    "default_value_id": "TEXT",
    "default_value_text": "TEXT",
    "option_values": "TEXT",
}

NODE_COLUMNS = {
    "updated": "INTEGER",
    "done_at": "INTEGER",
}

INDEXES = {
    "idx_nodes_name": "nodes(name)",
    "idx_nodes_parent": "nodes(parent_id)",
    "idx_nodes_created": "nodes(created)",
    "idx_supertags_node": "supertags(node_id)",
    "idx_supertags_tag_name": "supertags(tag_name)",
    "idx_fields_node": "fields(node_id)",
    "idx_fields_field_name": "fields(field_name)",
    "idx_references_from": '"references"(from_node)',
    "idx_references_to": '"references"(to_node)',
    "idx_tag_apps_data_node": "tag_applications(data_node_id)",
    "idx_tag_apps_tag_name": "tag_applications(tag_name)",
    "idx_tag_apps_tuple": "tag_applications(tuple_node_id)",
    "idx_field_names_name": "field_names(field_name)",
    "idx_field_values_parent": "field_values(parent_id)",
    "idx_field_values_field_name": "field_values(field_name)",
    "idx_field_values_field_def": "field_values(field_def_id)",
    "idx_field_values_created": "field_values(created)",
    "idx_supertag_fields_tag": "supertag_fields(tag_id)",
    "idx_supertag_fields_name": "supertag_fields(tag_name)",
    "idx_supertag_parents_child": "supertag_parents(child_tag_id)",
    "idx_supertag_parents_parent": "supertag_parents(parent_tag_id)",
    "idx_supertag_metadata_name": "supertag_metadata(tag_name)",
    "idx_supertag_metadata_normalized": "supertag_metadata(normalized_name)",
}

FTS_TABLE = "field_values_fts"

FTS_SCHEMA = f"""
CREATE VIRTUAL TABLE {FTS_TABLE} USING fts5(
    field_name,
    value_text,
    content='field_values',
    content_rowid='id',
    tokenize='porter unicode61'
)
"""

# Updates are modeled as delete + insert, so there is no update trigger.
FTS_TRIGGERS = {
    "field_values_ai": f"""
        CREATE TRIGGER field_values_ai AFTER INSERT ON field_values BEGIN
            INSERT INTO {FTS_TABLE}(rowid, field_name, value_text)
            VALUES (new.id, new.field_name, new.value_text);
        END
    """,
    "field_values_ad": f"""
        CREATE TRIGGER field_values_ad AFTER DELETE ON field_values BEGIN
            INSERT INTO {FTS_TABLE}({FTS_TABLE}, rowid, field_name, value_text)
            VALUES ('delete', old.id, old.field_name, old.value_text);
        END
    """,
}


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def trigger_exists(conn: sqlite3.Connection, trigger: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='trigger' AND name=?", (trigger,)
    ).fetchone()
    return row is not None


def list_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    cursor = conn.execute(f'PRAGMA table_info("{table}")')
    return {row[1] for row in cursor.fetchall()}


def column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    return column in list_columns(conn, table)


def list_tables(conn: sqlite3.Connection) -> list[str]:
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
    return [row[0] for row in cursor.fetchall()]


def _schema_statements(script: str) -> list[str]:
    """Split a DDL script into statements.

    executescript() would commit the caller's open transaction, so the
    statements are run one by one instead.
    """
    statements = []
    for chunk in script.split(";"):
        body = "\n".join(
            line for line in chunk.splitlines() if not line.strip().startswith("--")
        ).strip()
        if body:
            statements.append(body)
    return statements


def initialize_schema(conn: sqlite3.Connection) -> None:
    """Create every table, the full-text index and its triggers if absent."""
    for statement in _schema_statements(SCHEMA):
        conn.execute(statement)

    if not table_exists(conn, FTS_TABLE):
        logger.info(f"Creating full-text index {FTS_TABLE}")
        conn.execute(FTS_SCHEMA)
        # Index rows written before the full-text table existed.
        conn.execute(f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES ('rebuild')")

    for name, ddl in FTS_TRIGGERS.items():
        if not trigger_exists(conn, name):
            conn.execute(ddl)


def migrate_schema(conn: sqlite3.Connection) -> list[str]:
    """
    Bring an existing database up to date.

    Only adds nullable columns and missing indexes. Returns a description of
    each change applied, empty when the schema was already current.
    """
    applied: list[str] = []

    for table, columns in (("supertag_fields", SUPERTAG_FIELD_COLUMNS), ("nodes", NODE_COLUMNS)):
        existing = list_columns(conn, table)
        for column, ddl in columns.items():
            if column in existing:
                continue
            logger.info(f"Migrating database: adding {column} column to {table}")
            conn.execute(f'ALTER TABLE "{table}" ADD COLUMN {column} {ddl}')
            applied.append(f"{table}.{column}")

    for index_name, target in INDEXES.items():
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type='index' AND name=?", (index_name,)
        ).fetchone()
        if row is None:
            conn.execute(f"CREATE INDEX IF NOT EXISTS {index_name} ON {target}")
            applied.append(index_name)

    return applied


def ensure_schema(conn: sqlite3.Connection, retry_config: Optional[RetryConfig] = None) -> list[str]:
    """
    Create and migrate the schema, retrying on lock contention.

    Raises:
        MigrationError: If the schema cannot be brought up to date
    """

    def _apply() -> list[str]:
        conn.execute("BEGIN IMMEDIATE")
        try:
            initialize_schema(conn)
            applied = migrate_schema(conn)
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
        return applied

    try:
        return with_db_retry(_apply, retry_config, context="schema migration")
    except sqlite3.Error as e:
        raise MigrationError(f"Failed to initialize schema: {e}") from e
