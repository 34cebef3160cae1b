"""
Change detection between two export snapshots.

Every node gets a content checksum over the fields that matter for
indexing. Comparing the new checksums with the snapshot stored by the
previous sync yields the added/modified/deleted id sets.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from supertag_index.core.export_models import ExportNode
from supertag_index.core.graph_builder import NodeGraph


@dataclass
class ChangeSet:
    """Result of comparing a graph with a prior checksum snapshot."""

    added: set[str] = field(default_factory=set)
    modified: set[str] = field(default_factory=set)
    deleted: set[str] = field(default_factory=set)

    @property
    def changed(self) -> set[str]:
        """Ids whose rows must be (re)written."""
        return self.added | self.modified

    @property
    def total(self) -> int:
        return len(self.added) + len(self.modified) + len(self.deleted)

    @property
    def is_empty(self) -> bool:
        return self.total == 0


def compute_node_checksum(node: ExportNode, tag_ids: Optional[Iterable[str]] = None) -> str:
    """
    Fingerprint a node.

    Covers name, created, first modification timestamp, completion marker,
    the sorted child ids and the sorted ids of applied tags. Any other
    property change is invisible to change detection.
    """
    payload = {
        "name": node.props.name,
        "created": node.props.created,
        "modified": node.first_modified,
        "doneAt": node.props.done_marker,
        "children": sorted(node.child_ids),
        "supertags": sorted(tag_ids or ()),
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def compute_checksums(graph: NodeGraph) -> dict[str, str]:
    """Checksums for every node of the graph."""
    return {
        node_id: compute_node_checksum(node, graph.tag_ids_for(node_id))
        for node_id, node in graph.nodes.items()
    }


def detect_changes(
    graph: NodeGraph,
    prior_checksums: Mapping[str, str],
    current_checksums: Optional[Mapping[str, str]] = None,
) -> ChangeSet:
    """
    Diff a graph against the checksums recorded by the previous sync.

    Pure function of its arguments: the prior snapshot is passed in rather
    than cached between runs.
    """
    current = current_checksums if current_checksums is not None else compute_checksums(graph)
    changes = ChangeSet()

    for node_id, checksum in current.items():
        previous = prior_checksums.get(node_id)
        if previous is None:
            changes.added.add(node_id)
        elif previous != checksum:
            changes.modified.add(node_id)

    changes.deleted = {node_id for node_id in prior_checksums if node_id not in current}
    return changes
