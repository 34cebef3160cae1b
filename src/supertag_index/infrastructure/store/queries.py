"""
Low-level SQL query executor for the index store.
"""

import sqlite3
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

# Stay well under SQLITE_MAX_VARIABLE_NUMBER on older builds.
_CHUNK_SIZE = 500

NODE_KEYED_TABLES: Tuple[Tuple[str, str], ...] = (
    ("nodes", "id"),
    ("node_checksums", "node_id"),
    ("supertags", "node_id"),
    ("supertags", "tag_id"),
    ("fields", "node_id"),
    ("fields", "field_id"),
    ('"references"', "from_node"),
    ("tag_applications", "tuple_node_id"),
    ("tag_applications", "data_node_id"),
    ("tag_applications", "tag_id"),
)

DERIVED_TABLES: Tuple[str, ...] = (
    "nodes",
    "supertags",
    "fields",
    '"references"',
    "tag_applications",
    "field_names",
    "node_checksums",
)


def _chunks(ids: Sequence[str], size: int = _CHUNK_SIZE) -> Iterable[Sequence[str]]:
    for start in range(0, len(ids), size):
        yield ids[start:start + size]


def _placeholders(count: int) -> str:
    return ",".join("?" * count)


class IndexQueryExecutor:
    """Executes SQL queries for the index store.

    Writes never commit; the caller owns the transaction.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    # ─────────────────────────────────────────────────────────────────
    # Generic helpers
    # ─────────────────────────────────────────────────────────────────

    def count(self, table: str) -> int:
        row = self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
        return row[0] if row else 0

    def delete_where_in(self, table: str, column: str, ids: Iterable[str]) -> int:
        """Delete rows whose column value is in ids. Returns rows deleted."""
        id_list = sorted(set(ids))
        deleted = 0
        for chunk in _chunks(id_list):
            cursor = self._conn.execute(
                f"DELETE FROM {table} WHERE {column} IN ({_placeholders(len(chunk))})",
                tuple(chunk),
            )
            deleted += cursor.rowcount
        return deleted

    def count_where_in(self, table: str, column: str, ids: Iterable[str]) -> int:
        id_list = sorted(set(ids))
        total = 0
        for chunk in _chunks(id_list):
            row = self._conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE {column} IN ({_placeholders(len(chunk))})",
                tuple(chunk),
            ).fetchone()
            total += row[0] if row else 0
        return total

    def clear_table(self, table: str) -> int:
        cursor = self._conn.execute(f"DELETE FROM {table}")
        return cursor.rowcount

    def table_exists(self, table: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (table,)
        ).fetchone()
        return row is not None

    # ─────────────────────────────────────────────────────────────────
    # Nodes
    # ─────────────────────────────────────────────────────────────────

    def insert_nodes(self, rows: List[Tuple[Any, ...]]) -> None:
        """Insert (id, name, parent_id, node_type, created, updated, done_at, raw_data) rows."""
        self._conn.executemany(
            """
            INSERT INTO nodes
                (id, name, parent_id, node_type, created, updated, done_at, raw_data)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )

    def update_nodes(self, rows: List[Tuple[Any, ...]]) -> None:
        """Update (name, parent_id, created, updated, done_at, raw_data, id) rows in place."""
        self._conn.executemany(
            """
            UPDATE nodes
            SET name = ?, parent_id = ?, created = ?, updated = ?, done_at = ?, raw_data = ?
            WHERE id = ?
            """,
            rows,
        )

    def update_parent_ids(self, rows: List[Tuple[Optional[str], str]]) -> None:
        self._conn.executemany("UPDATE nodes SET parent_id = ? WHERE id = ?", rows)

    def get_children_of(self, parent_ids: Iterable[str]) -> List[str]:
        id_list = sorted(set(parent_ids))
        result: List[str] = []
        for chunk in _chunks(id_list):
            cursor = self._conn.execute(
                f"SELECT id FROM nodes WHERE parent_id IN ({_placeholders(len(chunk))})",
                tuple(chunk),
            )
            result.extend(row[0] for row in cursor.fetchall())
        return result

    def get_node(self, node_id: str) -> Optional[sqlite3.Row]:
        cursor = self._conn.execute(
            """
            SELECT id, name, parent_id, node_type, created, updated, done_at, raw_data
            FROM nodes WHERE id = ?
            """,
            (node_id,),
        )
        return cursor.fetchone()

    def get_parent_id(self, node_id: str) -> Optional[str]:
        row = self._conn.execute("SELECT parent_id FROM nodes WHERE id = ?", (node_id,)).fetchone()
        return row[0] if row else None

    def get_parent_ids(self, node_ids: Iterable[str]) -> Dict[str, Optional[str]]:
        id_list = sorted(set(node_ids))
        result: Dict[str, Optional[str]] = {}
        for chunk in _chunks(id_list):
            cursor = self._conn.execute(
                f"SELECT id, parent_id FROM nodes WHERE id IN ({_placeholders(len(chunk))})",
                tuple(chunk),
            )
            result.update((row[0], row[1]) for row in cursor.fetchall())
        return result

    def find_nodes_by_name(self, pattern: str, limit: int) -> List[sqlite3.Row]:
        cursor = self._conn.execute(
            """
            SELECT id, name, parent_id, node_type, created, updated, done_at, raw_data
            FROM nodes WHERE name LIKE ?
            ORDER BY created DESC
            LIMIT ?
            """,
            (pattern, limit),
        )
        return cursor.fetchall()

    def find_nodes_by_tag(self, tag_name: str, limit: int) -> List[sqlite3.Row]:
        cursor = self._conn.execute(
            """
            SELECT DISTINCT n.id, n.name, n.parent_id, n.node_type, n.created,
                   n.updated, n.done_at, n.raw_data
            FROM nodes n
            INNER JOIN tag_applications ta ON ta.data_node_id = n.id
            WHERE ta.tag_name = ?
            ORDER BY n.created DESC
            LIMIT ?
            """,
            (tag_name, limit),
        )
        return cursor.fetchall()

    def get_tag_names_for_node(self, node_id: str) -> List[str]:
        cursor = self._conn.execute(
            """
            SELECT DISTINCT tag_name FROM tag_applications
            WHERE data_node_id = ?
            ORDER BY tag_name
            """,
            (node_id,),
        )
        return [row[0] for row in cursor.fetchall()]

    # ─────────────────────────────────────────────────────────────────
    # Checksums
    # ─────────────────────────────────────────────────────────────────

    def get_all_checksums(self) -> Dict[str, str]:
        cursor = self._conn.execute("SELECT node_id, checksum FROM node_checksums")
        return {row[0]: row[1] for row in cursor.fetchall()}

    def upsert_checksums(self, rows: List[Tuple[str, str, int]]) -> None:
        self._conn.executemany(
            """
            INSERT INTO node_checksums (node_id, checksum, last_seen)
            VALUES (?, ?, ?)
            ON CONFLICT(node_id) DO UPDATE SET
                checksum = excluded.checksum,
                last_seen = excluded.last_seen
            """,
            rows,
        )

    # ─────────────────────────────────────────────────────────────────
    # Supertags, fields, references, tag applications
    # ─────────────────────────────────────────────────────────────────

    def insert_supertags(self, rows: List[Tuple[str, str, str, Optional[str]]]) -> None:
        self._conn.executemany(
            "INSERT INTO supertags (node_id, tag_name, tag_id, color) VALUES (?, ?, ?, ?)",
            rows,
        )

    def insert_fields(self, rows: List[Tuple[str, str, str]]) -> None:
        self._conn.executemany(
            "INSERT INTO fields (node_id, field_name, field_id) VALUES (?, ?, ?)",
            rows,
        )

    def insert_references(self, rows: List[Tuple[str, str, str]]) -> None:
        self._conn.executemany(
            'INSERT INTO "references" (from_node, to_node, reference_type) VALUES (?, ?, ?)',
            rows,
        )

    def insert_tag_applications(self, rows: List[Tuple[str, str, str, str]]) -> None:
        self._conn.executemany(
            """
            INSERT INTO tag_applications (tuple_node_id, data_node_id, tag_id, tag_name)
            VALUES (?, ?, ?, ?)
            """,
            rows,
        )

    def get_outbound_references(self, node_id: str) -> List[sqlite3.Row]:
        cursor = self._conn.execute(
            'SELECT from_node, to_node, reference_type FROM "references" WHERE from_node = ? ORDER BY id',
            (node_id,),
        )
        return cursor.fetchall()

    def get_inbound_references(self, node_id: str) -> List[sqlite3.Row]:
        cursor = self._conn.execute(
            'SELECT from_node, to_node, reference_type FROM "references" WHERE to_node = ? ORDER BY id',
            (node_id,),
        )
        return cursor.fetchall()

    # ─────────────────────────────────────────────────────────────────
    # Field names and values
    # ─────────────────────────────────────────────────────────────────

    def insert_field_names(self, rows: List[Tuple[str, str, str]]) -> None:
        self._conn.executemany(
            "INSERT INTO field_names (field_id, field_name, supertags) VALUES (?, ?, ?)",
            rows,
        )

    def get_field_name(self, field_id: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT field_name FROM field_names WHERE field_id = ?", (field_id,)
        ).fetchone()
        return row[0] if row else None

    def get_excluded_field_names(self) -> set[str]:
        cursor = self._conn.execute("SELECT field_name FROM field_exclusions")
        return {row[0] for row in cursor.fetchall()}

    def add_field_exclusion(self, field_name: str, reason: Optional[str]) -> None:
        self._conn.execute(
            """
            INSERT INTO field_exclusions (field_name, reason) VALUES (?, ?)
            ON CONFLICT(field_name) DO UPDATE SET reason = excluded.reason
            """,
            (field_name, reason),
        )

    def insert_field_values(self, rows: List[Tuple[Any, ...]]) -> None:
        """Insert rows; the triggers keep the full-text index in step."""
        self._conn.executemany(
            """
            INSERT INTO field_values
                (tuple_id, parent_id, field_def_id, field_name,
                 value_node_id, value_text, value_order, created)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )

    def get_field_values_for_node(self, node_id: str) -> List[sqlite3.Row]:
        cursor = self._conn.execute(
            """
            SELECT tuple_id, parent_id, field_def_id, field_name,
                   value_node_id, value_text, value_order, created
            FROM field_values
            WHERE parent_id = ?
            ORDER BY field_name, value_order
            """,
            (node_id,),
        )
        return cursor.fetchall()

    def search_field_values(
        self, match: str, field_name: Optional[str], limit: int
    ) -> List[sqlite3.Row]:
        sql = """
            SELECT fv.tuple_id, fv.parent_id, fv.field_def_id, fv.field_name,
                   fv.value_node_id, fv.value_text, fv.value_order, fv.created,
                   bm25(field_values_fts) AS rank
            FROM field_values_fts
            JOIN field_values fv ON fv.id = field_values_fts.rowid
            WHERE field_values_fts MATCH ?
        """
        params: List[Any] = [match]
        if field_name is not None:
            sql += " AND fv.field_name = ?"
            params.append(field_name)
        sql += " ORDER BY rank LIMIT ?"
        params.append(limit)
        return self._conn.execute(sql, params).fetchall()

    # ─────────────────────────────────────────────────────────────────
    # Sync metadata
    # ─────────────────────────────────────────────────────────────────

    def write_sync_metadata(self, export_file: str, timestamp: int, total_nodes: int) -> None:
        self._conn.execute(
            """
            INSERT OR REPLACE INTO sync_metadata
                (id, last_export_file, last_sync_timestamp, total_nodes)
            VALUES (1, ?, ?, ?)
            """,
            (export_file, timestamp, total_nodes),
        )

    def get_sync_metadata(self) -> Optional[sqlite3.Row]:
        return self._conn.execute(
            "SELECT last_export_file, last_sync_timestamp, total_nodes FROM sync_metadata WHERE id = 1"
        ).fetchone()

    # ─────────────────────────────────────────────────────────────────
    # Embeddings (owned by an external pipeline, may be absent)
    # ─────────────────────────────────────────────────────────────────

    def count_orphaned_embeddings(self) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM embeddings WHERE node_id NOT IN (SELECT id FROM nodes)"
        ).fetchone()
        return row[0] if row else 0

    def delete_orphaned_embeddings(self) -> int:
        cursor = self._conn.execute(
            "DELETE FROM embeddings WHERE node_id NOT IN (SELECT id FROM nodes)"
        )
        return cursor.rowcount
