"""
Index Store implementation.

SQLite-backed storage for the mirrored export graph: connection lifecycle,
schema setup, transactions, and the read API used by query collaborators.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from supertag_index.core.config import SyncConfig

from .connection import is_in_memory, open_connection
from .models import (
    FieldValueRecord,
    NodeRecord,
    ReferenceRecord,
    StoreCapabilities,
    StoreError,
    SyncMetadata,
    TaggedAncestor,
)
from .queries import IndexQueryExecutor
from .retry import with_db_retry
from .schema import ensure_schema, table_exists

logger = logging.getLogger(__name__)

EMBEDDINGS_TABLE = "embeddings"


def _node_from_row(row: sqlite3.Row) -> NodeRecord:
    return NodeRecord(
        id=row["id"],
        name=row["name"],
        parent_id=row["parent_id"],
        node_type=row["node_type"],
        created=row["created"],
        updated=row["updated"],
        done_at=row["done_at"],
        raw_data=row["raw_data"],
    )


def _field_value_from_row(row: sqlite3.Row, with_rank: bool = False) -> FieldValueRecord:
    return FieldValueRecord(
        tuple_id=row["tuple_id"],
        parent_id=row["parent_id"],
        field_def_id=row["field_def_id"],
        field_name=row["field_name"],
        value_node_id=row["value_node_id"],
        value_text=row["value_text"],
        value_order=row["value_order"],
        created=row["created"],
        rank=row["rank"] if with_rank else None,
    )


def _fts_query(text: str) -> str:
    """Quote each term so user input cannot inject FTS5 syntax."""
    terms = [term.replace('"', '""') for term in text.split() if term]
    return " ".join(f'"{term}"' for term in terms)


class IndexStore:
    """
    SQLite-based index of one export snapshot.

    The connection is opened lazily. Optional features (the embeddings table
    owned by an external pipeline) are detected once on initialize() and
    exposed through ``capabilities``.
    """

    def __init__(self, db_path: Path | str, config: Optional[SyncConfig] = None):
        self._db_path = db_path if is_in_memory(db_path) else Path(db_path)
        self._config = config or SyncConfig()
        self._conn: Optional[sqlite3.Connection] = None
        self._query: Optional[IndexQueryExecutor] = None
        self._capabilities: Optional[StoreCapabilities] = None
        self._initialized = False

    @property
    def db_path(self) -> Path | str:
        return self._db_path

    @property
    def config(self) -> SyncConfig:
        return self._config

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = open_connection(self._db_path, self._config.database)
            self._query = IndexQueryExecutor(self._conn)
        return self._conn

    def initialize(self) -> None:
        """Create or migrate the schema and resolve optional capabilities."""
        if self._initialized:
            return
        conn = self._get_connection()
        applied = ensure_schema(conn, self._config.retry)
        self._capabilities = StoreCapabilities(
            has_embeddings_table=table_exists(conn, EMBEDDINGS_TABLE),
        )
        self._initialized = True
        logger.info(
            f"Initialized index store: {self._db_path}",
            extra={"migrations": applied, "capabilities": self._capabilities},
        )

    @property
    def connection(self) -> sqlite3.Connection:
        self.initialize()
        return self._get_connection()

    @property
    def query(self) -> IndexQueryExecutor:
        """Ensure query executor is available."""
        self.initialize()
        assert self._query is not None
        return self._query

    @property
    def capabilities(self) -> StoreCapabilities:
        self.initialize()
        assert self._capabilities is not None
        return self._capabilities

    @contextmanager
    def transaction(self, retry: bool = True) -> Iterator[IndexQueryExecutor]:
        """
        Run a block inside BEGIN IMMEDIATE ... COMMIT.

        Any exception rolls the transaction back and propagates. With retry,
        acquiring the write lock and committing are retried on contention;
        callers that retry the whole unit themselves pass retry=False.
        """
        conn = self.connection

        def _execute(statement: str) -> None:
            if retry:
                with_db_retry(lambda: conn.execute(statement), self._config.retry, context=statement)
            else:
                conn.execute(statement)

        _execute("BEGIN IMMEDIATE")
        try:
            yield self.query
            _execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    # ─────────────────────────────────────────────────────────────────
    # Sync bookkeeping
    # ─────────────────────────────────────────────────────────────────

    def get_prior_checksums(self) -> Dict[str, str]:
        """Snapshot of checksums written by the previous sync."""
        try:
            return self.query.get_all_checksums()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read node checksums: {e}") from e

    def count_nodes(self) -> int:
        return self.query.count("nodes")

    def count_checksums(self) -> int:
        return self.query.count("node_checksums")

    def get_sync_metadata(self) -> Optional[SyncMetadata]:
        row = self.query.get_sync_metadata()
        if row is None:
            return None
        return SyncMetadata(
            last_export_file=row["last_export_file"],
            last_sync_timestamp=row["last_sync_timestamp"],
            total_nodes=row["total_nodes"],
        )

    def add_field_exclusion(self, field_name: str, reason: Optional[str] = None) -> None:
        """Exclude a field name from value extraction on future syncs."""
        try:
            with self.transaction() as query:
                query.add_field_exclusion(field_name, reason)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to add field exclusion: {e}") from e

    # ─────────────────────────────────────────────────────────────────
    # Read API
    # ─────────────────────────────────────────────────────────────────

    def get_node(self, node_id: str) -> Optional[NodeRecord]:
        try:
            row = self.query.get_node(node_id)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to get node: {e}") from e
        return _node_from_row(row) if row is not None else None

    def find_nodes_by_name(self, pattern: str, limit: int = 100) -> List[NodeRecord]:
        """Nodes whose name matches a SQL LIKE pattern, newest first."""
        return [_node_from_row(row) for row in self.query.find_nodes_by_name(pattern, limit)]

    def find_nodes_by_tag(self, tag_name: str, limit: int = 100) -> List[NodeRecord]:
        return [_node_from_row(row) for row in self.query.find_nodes_by_tag(tag_name, limit)]

    def get_tags(self, node_id: str) -> List[str]:
        return self.query.get_tag_names_for_node(node_id)

    def get_outbound_references(self, node_id: str) -> List[ReferenceRecord]:
        return [
            ReferenceRecord(row["from_node"], row["to_node"], row["reference_type"])
            for row in self.query.get_outbound_references(node_id)
        ]

    def get_inbound_references(self, node_id: str) -> List[ReferenceRecord]:
        return [
            ReferenceRecord(row["from_node"], row["to_node"], row["reference_type"])
            for row in self.query.get_inbound_references(node_id)
        ]

    def get_field_name(self, field_id: str) -> Optional[str]:
        return self.query.get_field_name(field_id)

    def find_tagged_ancestor(self, node_id: str, max_depth: int = 20) -> Optional[TaggedAncestor]:
        """
        Walk up parent_id links from node_id (inclusive) to the first node
        carrying at least one tag.
        """
        current: Optional[str] = node_id
        depth = 0
        while current and depth < max_depth:
            tags = self.query.get_tag_names_for_node(current)
            if tags:
                row = self.query.get_node(current)
                name = row["name"] if row is not None else None
                return TaggedAncestor(node_id=current, name=name, tag_names=tags, depth=depth)
            current = self.query.get_parent_id(current)
            depth += 1
        return None

    def find_named_ancestor(self, node_id: str, max_depth: int = 20) -> Optional[NodeRecord]:
        """Walk up parent_id links from node_id (inclusive) to the first named node."""
        current: Optional[str] = node_id
        depth = 0
        while current and depth < max_depth:
            row = self.query.get_node(current)
            if row is None:
                return None
            if row["name"]:
                return _node_from_row(row)
            current = row["parent_id"]
            depth += 1
        return None

    def search_field_values(
        self,
        text: str,
        field_name: Optional[str] = None,
        limit: int = 50,
    ) -> List[FieldValueRecord]:
        """Full-text search over field values, best match first."""
        match = _fts_query(text)
        if not match:
            return []
        try:
            rows = self.query.search_field_values(match, field_name, limit)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to search field values: {e}") from e
        return [_field_value_from_row(row, with_rank=True) for row in rows]

    def get_field_values(self, node_id: str) -> List[FieldValueRecord]:
        return [_field_value_from_row(row) for row in self.query.get_field_values_for_node(node_id)]

    def get_stats(self) -> Dict[str, int]:
        """Row counts of the main tables."""
        tables = {
            "nodes": "nodes",
            "supertags": "supertags",
            "fields": "fields",
            "references": '"references"',
            "tag_applications": "tag_applications",
            "field_names": "field_names",
            "field_values": "field_values",
            "supertag_metadata": "supertag_metadata",
            "supertag_fields": "supertag_fields",
            "supertag_parents": "supertag_parents",
            "node_checksums": "node_checksums",
        }
        return {key: self.query.count(table) for key, table in tables.items()}

    def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._query = None
            self._initialized = False
            self._capabilities = None


def create_index_store(
    db_path: Optional[Path | str] = None,
    config: Optional[SyncConfig] = None,
) -> IndexStore:
    """
    Factory function to create an IndexStore.

    Args:
        db_path: Database location. Defaults to ``config.database.path``.
        config: Configuration, loaded with defaults when omitted.

    Returns:
        Initialized IndexStore instance
    """
    config = config or SyncConfig()
    store = IndexStore(db_path if db_path is not None else config.database.path, config)
    store.initialize()
    return store
