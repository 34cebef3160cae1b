"""
Core Layer - Export parsing, graph building, change detection, and configuration.
"""

from supertag_index.core.change_detector import (
    ChangeSet,
    compute_checksums,
    compute_node_checksum,
    detect_changes,
)
from supertag_index.core.config import (
    DatabaseConfig,
    IndexingConfig,
    LoggingConfig,
    RetryConfig,
    SyncConfig,
    configure_logging,
    load_config,
)
from supertag_index.core.export_models import (
    ExportDocument,
    ExportNode,
    ExportParseError,
    ExportProps,
    load_export,
    parse_export,
)
from supertag_index.core.graph_builder import (
    FieldTuple,
    GraphBuilder,
    InlineReference,
    NodeGraph,
    NodeKind,
    SupertagTuple,
    TagApplication,
    build_graph,
)
from supertag_index.core.naming import infer_data_type_from_name, normalize_name

__all__ = [
    # Config
    "SyncConfig",
    "DatabaseConfig",
    "RetryConfig",
    "IndexingConfig",
    "LoggingConfig",
    "load_config",
    "configure_logging",
    # Export models
    "ExportDocument",
    "ExportNode",
    "ExportProps",
    "ExportParseError",
    "load_export",
    "parse_export",
    # Graph
    "GraphBuilder",
    "NodeGraph",
    "NodeKind",
    "SupertagTuple",
    "FieldTuple",
    "TagApplication",
    "InlineReference",
    "build_graph",
    # Change detection
    "ChangeSet",
    "compute_node_checksum",
    "compute_checksums",
    "detect_changes",
    # Naming
    "normalize_name",
    "infer_data_type_from_name",
]
