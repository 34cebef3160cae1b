"""
Data models for the index store.
"""

from dataclasses import dataclass
from typing import Optional


class StoreError(Exception):
    """Base exception for index store errors."""
    pass


class DatabaseLockedError(StoreError):
    """Lock contention persisted through every retry attempt."""

    def __init__(self, message: str, attempts: int = 0, context: str = ""):
        self.attempts = attempts
        self.context = context
        super().__init__(message)


class MigrationError(StoreError):
    """Schema creation or migration failed; no sync can proceed."""
    pass


class SyncError(StoreError):
    """Applying a sync failed and the transaction was rolled back."""
    pass


@dataclass(frozen=True)
class StoreCapabilities:
    """Optional features of a store, resolved once when it is opened."""

    has_embeddings_table: bool = False


@dataclass
class NodeRecord:
    """A row of the nodes table."""
    id: str
    name: Optional[str]
    parent_id: Optional[str]
    node_type: str
    created: Optional[int]
    updated: Optional[int]
    done_at: Optional[int]
    raw_data: str


@dataclass
class ReferenceRecord:
    """A directed inline reference."""
    from_node: str
    to_node: str
    reference_type: str


@dataclass
class TaggedAncestor:
    """Nearest ancestor carrying a tag, with the tags it carries."""
    node_id: str
    name: Optional[str]
    tag_names: list[str]
    depth: int


@dataclass
class FieldValueRecord:
    """A row of field_values, optionally with a search rank."""
    tuple_id: str
    parent_id: str
    field_def_id: str
    field_name: str
    value_node_id: str
    value_text: str
    value_order: int
    created: Optional[int]
    rank: Optional[float] = None


@dataclass
class SyncMetadata:
    """Bookkeeping row written at the end of every sync."""
    last_export_file: str
    last_sync_timestamp: int
    total_nodes: int
