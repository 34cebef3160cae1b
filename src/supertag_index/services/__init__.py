"""
Service Layer - SyncService, field extraction, supertag metadata, and SyncServicesContainer.
"""

from supertag_index.services.container import SyncServicesContainer, create_services
from supertag_index.services.field_extractor import (
    FieldValueRow,
    TargetSupertag,
    apply_explicit_types,
    apply_value_inference,
    extract_explicit_field_types,
    extract_field_values,
    infer_type_from_values,
)
from supertag_index.services.supertag_metadata import (
    Ancestor,
    MetadataExtractionResult,
    SupertagField,
    SupertagMetadataService,
    extract_field_names,
    extract_supertag_metadata,
)
from supertag_index.services.sync_models import SyncResult, SyncState
from supertag_index.services.sync_service import SyncService

__all__ = [
    # Container and factory
    "SyncServicesContainer",
    "create_services",
    # Sync
    "SyncService",
    "SyncResult",
    "SyncState",
    # Field values and types
    "FieldValueRow",
    "TargetSupertag",
    "extract_field_values",
    "extract_explicit_field_types",
    "apply_explicit_types",
    "infer_type_from_values",
    "apply_value_inference",
    # Supertag metadata
    "SupertagMetadataService",
    "SupertagField",
    "Ancestor",
    "MetadataExtractionResult",
    "extract_supertag_metadata",
    "extract_field_names",
]
