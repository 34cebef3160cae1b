"""
Infrastructure Layer - SQLite index store, schema migrations, and lock retry.
"""

from supertag_index.infrastructure.store import (
    DatabaseLockedError,
    IndexQueryExecutor,
    IndexStore,
    MigrationError,
    StoreCapabilities,
    StoreError,
    SyncError,
    create_index_store,
    ensure_schema,
    with_db_retry,
)

__all__ = [
    "IndexStore",
    "IndexQueryExecutor",
    "StoreCapabilities",
    "StoreError",
    "DatabaseLockedError",
    "MigrationError",
    "SyncError",
    "create_index_store",
    "ensure_schema",
    "with_db_retry",
]
