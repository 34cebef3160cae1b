"""
Sync Service data models.

Contains the sync state machine states and the result returned to callers.
"""

from dataclasses import dataclass
from enum import Enum


class SyncState(str, Enum):
    """Lifecycle of one sync call."""

    IDLE = "idle"
    SCHEMA_READY = "schema_ready"
    FULL_REINDEX = "full_reindex"
    INCREMENTAL_SYNC = "incremental_sync"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class SyncResult:
    """Result of a sync operation."""

    nodes_indexed: int = 0
    nodes_added: int = 0
    nodes_modified: int = 0
    nodes_deleted: int = 0
    supertags_indexed: int = 0
    fields_indexed: int = 0
    references_indexed: int = 0
    tag_applications_indexed: int = 0
    field_names_indexed: int = 0
    field_values_indexed: int = 0
    supertag_fields_extracted: int = 0
    supertag_parents_extracted: int = 0
    embeddings_cleared: int = 0
    full_reindex: bool = False
    duration_ms: int = 0

    def to_dict(self) -> dict:
        """Caller-facing representation with camelCase keys."""
        return {
            "nodesIndexed": self.nodes_indexed,
            "nodesAdded": self.nodes_added,
            "nodesModified": self.nodes_modified,
            "nodesDeleted": self.nodes_deleted,
            "supertagsIndexed": self.supertags_indexed,
            "fieldsIndexed": self.fields_indexed,
            "referencesIndexed": self.references_indexed,
            "tagApplicationsIndexed": self.tag_applications_indexed,
            "fieldNamesIndexed": self.field_names_indexed,
            "fieldValuesIndexed": self.field_values_indexed,
            "supertagFieldsExtracted": self.supertag_fields_extracted,
            "supertagParentsExtracted": self.supertag_parents_extracted,
            "embeddingsCleared": self.embeddings_cleared,
            "fullReindex": self.full_reindex,
            "durationMs": self.duration_ms,
        }
