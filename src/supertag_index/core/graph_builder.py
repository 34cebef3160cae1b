"""
Graph builder for export documents.

Turns the flat list of exported nodes into a typed graph: node lookup, the
structural parent map, and the tuples that encode type definitions, field
definitions and tag applications, plus inline references found in text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from supertag_index.core.export_models import ExportDocument, ExportNode

logger = logging.getLogger(__name__)

TAG_NAME_MARKER = "SYS_A13"
TYPE_MARKER = "SYS_T01"
FIELD_MARKER = "SYS_T02"
SYSTEM_PREFIX = "SYS_"
TRASH_MARKER = "TRASH"

REFERENCE_INLINE = "inline_ref"
REFERENCE_INLINE_INDIRECT = "inline_ref_indirect"

INLINE_REF_PATTERN = re.compile(r'<span data-inlineref-node="([^"]*)"></span>')


class NodeKind(str, Enum):
    """Structural role of a node once classified."""

    CONTENT = "content"
    TYPE_DEFINITION_TUPLE = "type_definition_tuple"
    FIELD_DEFINITION_TUPLE = "field_definition_tuple"
    TAG_APPLICATION_TUPLE = "tag_application_tuple"


@dataclass(frozen=True)
class SupertagTuple:
    node_id: str
    tag_name: str
    tag_id: str
    superclasses: tuple[str, ...] = ()
    color: Optional[str] = None


@dataclass(frozen=True)
class FieldTuple:
    node_id: str
    field_name: str
    field_id: str


@dataclass(frozen=True)
class TagApplication:
    tuple_node_id: str
    data_node_id: str
    tag_id: str
    tag_name: str


@dataclass(frozen=True)
class InlineReference:
    source_node_id: str
    target_node_ids: tuple[str, ...]
    type: str = REFERENCE_INLINE


@dataclass
class NodeGraph:
    """In-memory graph built from one export snapshot."""

    nodes: Dict[str, ExportNode] = field(default_factory=dict)
    trash: Dict[str, ExportNode] = field(default_factory=dict)
    parent_map: Dict[str, str] = field(default_factory=dict)
    kinds: Dict[str, NodeKind] = field(default_factory=dict)
    # Definition tuples keyed by tuple node id; names may repeat.
    supertags: Dict[str, SupertagTuple] = field(default_factory=dict)
    fields: Dict[str, FieldTuple] = field(default_factory=dict)
    tag_applications: List[TagApplication] = field(default_factory=list)
    inline_refs: List[InlineReference] = field(default_factory=list)
    tag_colors: Dict[str, str] = field(default_factory=dict)
    _applied_tags: Dict[str, set[str]] = field(default_factory=dict, repr=False)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    def get(self, node_id: str) -> Optional[ExportNode]:
        return self.nodes.get(node_id)

    def kind_of(self, node_id: str) -> NodeKind:
        return self.kinds.get(node_id, NodeKind.CONTENT)

    def tag_ids_for(self, node_id: str) -> list[str]:
        """Sorted ids of the tags currently applied to a data node."""
        return sorted(self._applied_tags.get(node_id, ()))

    def supertags_named(self, tag_name: str) -> list[SupertagTuple]:
        return [tuple_ for tuple_ in self.supertags.values() if tuple_.tag_name == tag_name]

    def fields_named(self, field_name: str) -> list[FieldTuple]:
        return [tuple_ for tuple_ in self.fields.values() if tuple_.field_name == field_name]

    def tag_applications_for(self, node_ids: set[str]) -> list[TagApplication]:
        return [app for app in self.tag_applications if app.data_node_id in node_ids]

    def add_tag_application(self, app: TagApplication) -> None:
        self.tag_applications.append(app)
        self._applied_tags.setdefault(app.data_node_id, set()).add(app.tag_id)


def _is_system_id(node_id: str) -> bool:
    return node_id.startswith(SYSTEM_PREFIX)


def extract_inline_ref_ids(text: Optional[str]) -> list[str]:
    """Target ids of every inline-reference marker in text, in order, deduplicated."""
    if not text:
        return []
    return list(dict.fromkeys(INLINE_REF_PATTERN.findall(text)))


def is_reference_wrapper(text: Optional[str]) -> bool:
    """True when text holds inline-reference markers and nothing else."""
    if not text or not INLINE_REF_PATTERN.search(text):
        return False
    return INLINE_REF_PATTERN.sub("", text).strip() == ""


class GraphBuilder:
    """
    Builds a NodeGraph from export documents.

    Classification runs over every non-trashed node and inspects its child
    ids for the marker ids that distinguish the tuple variants.
    """

    def __init__(self, trash_depth: int = 20):
        self._trash_depth = trash_depth

    def build(self, source: ExportDocument | Iterable[ExportNode]) -> NodeGraph:
        docs = list(source.docs) if isinstance(source, ExportDocument) else list(source)
        graph = NodeGraph()

        self._split_trash(docs, graph)
        self._build_parent_map(docs, graph)

        for node in docs:
            if node.id not in graph.nodes:
                continue
            graph.kinds[node.id] = NodeKind.CONTENT
            self._classify(node, graph)

        self._extract_inline_refs(docs, graph)

        logger.debug(
            f"Built graph: {graph.node_count} nodes, {len(graph.trash)} trashed, "
            f"{len(graph.supertags)} supertags, {len(graph.fields)} fields, "
            f"{len(graph.tag_applications)} tag applications, "
            f"{len(graph.inline_refs)} inline references"
        )
        return graph

    # ─────────────────────────────────────────────────────────────────
    # Trash and structure
    # ─────────────────────────────────────────────────────────────────

    def _split_trash(self, docs: list[ExportNode], graph: NodeGraph) -> None:
        by_id = {node.id: node for node in docs}
        trashed: set[str] = set()

        for node in docs:
            if TRASH_MARKER in node.id:
                trashed.add(node.id)
                trashed.update(node.child_ids)

        for node in docs:
            if node.id in trashed or self._owned_by_trash(node, by_id):
                graph.trash[node.id] = node
            else:
                graph.nodes[node.id] = node

    def _owned_by_trash(self, node: ExportNode, by_id: dict[str, ExportNode]) -> bool:
        current: Optional[ExportNode] = node
        depth = 0
        while current is not None and depth < self._trash_depth:
            owner_id = current.props.owner_id
            if not owner_id:
                return False
            if TRASH_MARKER in owner_id:
                return True
            current = by_id.get(owner_id)
            depth += 1
        return False

    def _build_parent_map(self, docs: list[ExportNode], graph: NodeGraph) -> None:
        # First structural edge wins; later parents are reference-style links.
        for node in docs:
            if node.id not in graph.nodes:
                continue
            for child_id in node.child_ids:
                if child_id == node.id or child_id not in graph.nodes:
                    continue
                graph.parent_map.setdefault(child_id, node.id)

    # ─────────────────────────────────────────────────────────────────
    # Tuple classification
    # ─────────────────────────────────────────────────────────────────

    def _classify(self, node: ExportNode, graph: NodeGraph) -> None:
        children = node.child_ids
        if not children or _is_system_id(node.id) or TAG_NAME_MARKER not in children:
            return

        if TYPE_MARKER in children:
            self._detect_supertag(node, graph)
        elif FIELD_MARKER in children:
            self._detect_field(node, graph)
        else:
            self._detect_tag_application(node, graph)

    def _owner_of_owner(self, node: ExportNode, graph: NodeGraph) -> Optional[str]:
        meta_id = node.props.owner_id
        if not meta_id:
            return None
        meta = graph.nodes.get(meta_id)
        if meta is None:
            return None
        owner_id = meta.props.owner_id
        if not owner_id or owner_id not in graph.nodes:
            return None
        return owner_id

    def _detect_supertag(self, node: ExportNode, graph: NodeGraph) -> None:
        tag_id = self._owner_of_owner(node, graph)
        if tag_id is None:
            return
        tag_name = graph.nodes[tag_id].name
        if not tag_name:
            return

        superclasses = tuple(
            graph.nodes[child_id].name
            for child_id in node.child_ids
            if not _is_system_id(child_id)
            and child_id in graph.nodes
            and graph.nodes[child_id].name
        )
        graph.kinds[node.id] = NodeKind.TYPE_DEFINITION_TUPLE
        graph.supertags[node.id] = SupertagTuple(
            node_id=node.id,
            tag_name=tag_name,
            tag_id=tag_id,
            superclasses=superclasses,
            color=node.color,
        )
        if node.color:
            graph.tag_colors[tag_name] = node.color

    def _detect_field(self, node: ExportNode, graph: NodeGraph) -> None:
        field_id = self._owner_of_owner(node, graph)
        if field_id is None:
            return
        field_name = graph.nodes[field_id].name
        if not field_name:
            return

        graph.kinds[node.id] = NodeKind.FIELD_DEFINITION_TUPLE
        graph.fields[node.id] = FieldTuple(node_id=node.id, field_name=field_name, field_id=field_id)

    def _resolve_data_node(self, node: ExportNode, graph: NodeGraph) -> Optional[str]:
        """
        Find the node a tag-application tuple tags.

        The tuple normally hangs off the data node's meta node, so the data
        node is the meta node's owner. A tuple placed directly under its
        data node resolves to that parent.
        """
        holder_id = node.props.owner_id or graph.parent_map.get(node.id)
        if not holder_id:
            return None
        holder = graph.nodes.get(holder_id)
        if holder is None:
            return None

        if self._is_meta_node(holder, graph):
            data_id = holder.props.owner_id or graph.parent_map.get(holder_id)
        else:
            data_id = holder_id

        if not data_id or data_id not in graph.nodes:
            return None
        return data_id

    @staticmethod
    def _is_meta_node(node: ExportNode, graph: NodeGraph) -> bool:
        if node.props.doc_type == "metanode":
            return True
        owner = graph.nodes.get(node.props.owner_id) if node.props.owner_id else None
        return owner is not None and owner.props.meta_node_id == node.id

    def _detect_tag_application(self, node: ExportNode, graph: NodeGraph) -> None:
        data_id = self._resolve_data_node(node, graph)
        if data_id is None:
            return

        graph.kinds[node.id] = NodeKind.TAG_APPLICATION_TUPLE
        for child_id in node.child_ids:
            if _is_system_id(child_id):
                continue
            tag_node = graph.nodes.get(child_id)
            if tag_node is None or not tag_node.name:
                continue
            graph.add_tag_application(
                TagApplication(
                    tuple_node_id=node.id,
                    data_node_id=data_id,
                    tag_id=child_id,
                    tag_name=tag_node.name,
                )
            )

    # ─────────────────────────────────────────────────────────────────
    # Inline references
    # ─────────────────────────────────────────────────────────────────

    def _extract_inline_refs(self, docs: list[ExportNode], graph: NodeGraph) -> None:
        for node in docs:
            if node.id not in graph.nodes:
                continue

            targets = extract_inline_ref_ids(node.props.name)
            for target_id in extract_inline_ref_ids(node.props.description):
                if target_id not in targets:
                    targets.append(target_id)
            if not targets:
                continue

            graph.inline_refs.append(
                InlineReference(source_node_id=node.id, target_node_ids=tuple(targets))
            )

            parent_id = graph.parent_map.get(node.id)
            if parent_id and is_reference_wrapper(node.props.name):
                graph.inline_refs.append(
                    InlineReference(
                        source_node_id=parent_id,
                        target_node_ids=tuple(targets),
                        type=REFERENCE_INLINE_INDIRECT,
                    )
                )


def build_graph(source: ExportDocument | Iterable[ExportNode], trash_depth: int = 20) -> NodeGraph:
    """Build a NodeGraph with the default builder."""
    return GraphBuilder(trash_depth=trash_depth).build(source)
