"""
Index Store module for supertag-index.

SQLite-based storage for the mirrored graph, its derived tables, and the
full-text index over field values.
"""

from .connection import configure_for_concurrency, is_in_memory, open_connection
from .models import (
    DatabaseLockedError,
    FieldValueRecord,
    MigrationError,
    NodeRecord,
    ReferenceRecord,
    StoreCapabilities,
    StoreError,
    SyncError,
    SyncMetadata,
    TaggedAncestor,
)
from .queries import DERIVED_TABLES, NODE_KEYED_TABLES, IndexQueryExecutor
from .retry import compute_delay, is_lock_error, with_db_retry
from .schema import (
    column_exists,
    ensure_schema,
    initialize_schema,
    list_tables,
    migrate_schema,
    table_exists,
    trigger_exists,
)
from .store import IndexStore, create_index_store

__all__ = [
    # Main classes
    "IndexStore",
    "StoreCapabilities",
    # Records
    "NodeRecord",
    "ReferenceRecord",
    "FieldValueRecord",
    "TaggedAncestor",
    "SyncMetadata",
    # Errors
    "StoreError",
    "DatabaseLockedError",
    "MigrationError",
    "SyncError",
    # Query executor
    "IndexQueryExecutor",
    "NODE_KEYED_TABLES",
    "DERIVED_TABLES",
    # Schema
    "initialize_schema",
    "migrate_schema",
    "ensure_schema",
    "table_exists",
    "trigger_exists",
    "column_exists",
    "list_tables",
    # Connection and retry
    "open_connection",
    "configure_for_concurrency",
    "is_in_memory",
    "with_db_retry",
    "is_lock_error",
    "compute_delay",
    # Factory
    "create_index_store",
]
