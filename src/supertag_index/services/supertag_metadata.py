"""
Supertag metadata: field definitions and type inheritance.

Extraction walks every type definition node (``_docType == "tagDef"``) and
records its fields and its parent types. SupertagMetadataService answers
inheritance questions over the stored rows.
"""

import json
import logging
import sqlite3
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from supertag_index.core.export_models import ExportNode
from supertag_index.core.graph_builder import TAG_NAME_MARKER, TRASH_MARKER, NodeGraph
from supertag_index.core.naming import infer_data_type_from_name, normalize_name
from supertag_index.services.field_extractor import SYSTEM_FIELD_NAMES

logger = logging.getLogger(__name__)

TAG_DEF_DOC_TYPE = "tagDef"

# Field labels that appear as raw marker ids instead of label nodes.
SYSTEM_FIELD_MARKERS: dict[str, str] = {
    "SYS_A90": "Date",
    "SYS_A61": "Due Date",
    "Mp2A7_2PQw": "Attendees",
}

# Field ids whose names are known without a label node.
BUILTIN_FIELD_NAMES: dict[str, str] = {
    key: SYSTEM_FIELD_NAMES[key]
    for key in ("SYS_A13", "SYS_A61", "SYS_A90", "SYS_A142", "SYS_T01", "SYS_T02")
}


@dataclass
class ExtractedField:
    field_name: str
    field_label_id: str
    field_order: int
    normalized_name: str
    inferred_data_type: str
    default_value_id: Optional[str] = None
    default_value_text: Optional[str] = None


@dataclass
class MetadataExtractionResult:
    tag_defs_processed: int = 0
    fields_extracted: int = 0
    parents_extracted: int = 0


@dataclass
class FieldNameMapping:
    field_name: str
    supertags: List[str] = field(default_factory=list)


@dataclass
class SupertagField:
    """A field as declared on a type, or inherited by it."""

    tag_id: str
    tag_name: str
    field_name: str
    field_label_id: str
    field_order: int
    normalized_name: Optional[str] = None
    description: Optional[str] = None
    inferred_data_type: Optional[str] = None
    target_supertag_id: Optional[str] = None
    target_supertag_name: Optional[str] = None
    default_value_id: Optional[str] = None
    default_value_text: Optional[str] = None
    option_values: Optional[List[str]] = None
    origin_tag_id: Optional[str] = None
    origin_tag_name: Optional[str] = None
    depth: int = 0


@dataclass(frozen=True)
class Ancestor:
    tag_id: str
    tag_name: Optional[str]
    depth: int


# ─────────────────────────────────────────────────────────────────
# Extraction
# ─────────────────────────────────────────────────────────────────


def is_in_trash(node: ExportNode, nodes: Mapping[str, ExportNode], max_depth: int = 20) -> bool:
    """True if the node's ownership chain reaches a trash container."""
    current: Optional[ExportNode] = node
    depth = 0
    while current is not None and depth < max_depth:
        owner_id = current.props.owner_id
        if not owner_id:
            return False
        if TRASH_MARKER in owner_id:
            return True
        current = nodes.get(owner_id)
        depth += 1
    return False


def _default_value(tuple_node: ExportNode, nodes: Mapping[str, ExportNode]) -> tuple[Optional[str], Optional[str]]:
    if len(tuple_node.child_ids) < 2:
        return None, None
    default_id = tuple_node.child_ids[1]
    default_node = nodes.get(default_id)
    if default_node is None or not default_node.name:
        return None, None
    return default_id, default_node.name


def extract_fields_from_tag_def(tag_def: ExportNode, nodes: Mapping[str, ExportNode]) -> list[ExtractedField]:
    """Field definitions declared directly on a type, in declaration order."""
    fields: list[ExtractedField] = []
    for child_id in tag_def.child_ids:
        child = nodes.get(child_id)
        if child is None or child.props.doc_type != "tuple" or not child.child_ids:
            continue

        label_id = child.child_ids[0]
        label = nodes.get(label_id)
        if label is None and label_id in SYSTEM_FIELD_MARKERS:
            field_name = SYSTEM_FIELD_MARKERS[label_id]
        elif label is not None and label.name:
            field_name = label.name
        else:
            continue

        default_id, default_text = _default_value(child, nodes)
        fields.append(
            ExtractedField(
                field_name=field_name,
                field_label_id=label_id,
                field_order=len(fields),
                normalized_name=normalize_name(field_name),
                inferred_data_type=infer_data_type_from_name(field_name),
                default_value_id=default_id,
                default_value_text=default_text,
            )
        )
    return fields


def extract_parents_from_tag_def(tag_def: ExportNode, nodes: Mapping[str, ExportNode]) -> list[str]:
    """
    Parent type ids declared by a type.

    The "extends" tuple sits under the type's meta node and starts with the
    tag-name marker; its other children that are type definitions are the
    parents.
    """
    meta_id = tag_def.props.meta_node_id
    meta = nodes.get(meta_id) if meta_id else None
    if meta is None:
        return []

    for tuple_id in meta.child_ids:
        tuple_node = nodes.get(tuple_id)
        if tuple_node is None or tuple_node.props.doc_type != "tuple":
            continue
        if len(tuple_node.child_ids) < 2:
            continue

        first_id = tuple_node.child_ids[0]
        first_node = nodes.get(first_id)
        if first_id != TAG_NAME_MARKER and (first_node is None or first_node.name != TAG_NAME_MARKER):
            continue

        parents = []
        for candidate_id in tuple_node.child_ids[1:]:
            candidate = nodes.get(candidate_id)
            if candidate is not None and candidate.props.doc_type == TAG_DEF_DOC_TYPE and candidate_id != tag_def.id:
                parents.append(candidate_id)
        return parents
    return []


def clear_supertag_metadata(conn: sqlite3.Connection) -> None:
    conn.execute("DELETE FROM supertag_fields")
    conn.execute("DELETE FROM supertag_parents")
    conn.execute("DELETE FROM supertag_metadata")


def extract_supertag_metadata(conn: sqlite3.Connection, graph: NodeGraph) -> MetadataExtractionResult:
    """Rebuild supertag_metadata, supertag_fields and supertag_parents from a graph."""
    result = MetadataExtractionResult()
    clear_supertag_metadata(conn)

    for tag_id, node in graph.nodes.items():
        if node.props.doc_type != TAG_DEF_DOC_TYPE or is_in_trash(node, graph.nodes):
            continue
        result.tag_defs_processed += 1

        tag_name = node.name or ""
        extra = node.props.model_extra or {}
        conn.execute(
            """
            INSERT INTO supertag_metadata (tag_id, tag_name, normalized_name, description, color)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(tag_id) DO UPDATE SET
                tag_name = excluded.tag_name,
                normalized_name = excluded.normalized_name,
                description = excluded.description,
                color = excluded.color
            """,
            (
                tag_id,
                tag_name,
                normalize_name(tag_name),
                node.props.description or extra.get("_description"),
                node.color or extra.get("_color"),
            ),
        )

        for extracted in extract_fields_from_tag_def(node, graph.nodes):
            conn.execute(
                """
                INSERT INTO supertag_fields
                    (tag_id, tag_name, field_name, field_label_id, field_order,
                     normalized_name, inferred_data_type, default_value_id, default_value_text)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(tag_id, field_name) DO UPDATE SET
                    tag_name = excluded.tag_name,
                    field_label_id = excluded.field_label_id,
                    field_order = excluded.field_order,
                    normalized_name = excluded.normalized_name,
                    inferred_data_type = excluded.inferred_data_type,
                    default_value_id = excluded.default_value_id,
                    default_value_text = excluded.default_value_text
                """,
                (
                    tag_id,
                    tag_name,
                    extracted.field_name,
                    extracted.field_label_id,
                    extracted.field_order,
                    extracted.normalized_name,
                    extracted.inferred_data_type,
                    extracted.default_value_id,
                    extracted.default_value_text,
                ),
            )
            result.fields_extracted += 1

        for parent_id in extract_parents_from_tag_def(node, graph.nodes):
            cursor = conn.execute(
                """
                INSERT INTO supertag_parents (child_tag_id, parent_tag_id) VALUES (?, ?)
                ON CONFLICT(child_tag_id, parent_tag_id) DO NOTHING
                """,
                (tag_id, parent_id),
            )
            result.parents_extracted += cursor.rowcount

    logger.debug(
        f"Extracted metadata for {result.tag_defs_processed} supertags: "
        f"{result.fields_extracted} fields, {result.parents_extracted} parents"
    )
    return result


def extract_field_names(graph: NodeGraph) -> Dict[str, FieldNameMapping]:
    """Field label id -> name and declaring supertags, plus built-in system fields."""
    mappings: Dict[str, FieldNameMapping] = {}

    for supertag in graph.supertags.values():
        tag_name = supertag.tag_name
        tag_node = graph.nodes.get(supertag.tag_id)
        if tag_node is None:
            continue
        for child_id in tag_node.child_ids:
            child = graph.nodes.get(child_id)
            if child is None or child.props.doc_type != "tuple" or not child.child_ids:
                continue
            field_id = child.child_ids[0]
            field_node = graph.nodes.get(field_id)
            if field_node is None or not field_node.name:
                continue
            mapping = mappings.setdefault(field_id, FieldNameMapping(field_name=field_node.name))
            if tag_name not in mapping.supertags:
                mapping.supertags.append(tag_name)

    for field_id, field_name in BUILTIN_FIELD_NAMES.items():
        mappings.setdefault(field_id, FieldNameMapping(field_name=field_name, supertags=["system"]))

    return mappings


# ─────────────────────────────────────────────────────────────────
# Query service
# ─────────────────────────────────────────────────────────────────


class SupertagMetadataService:
    """Read-side queries over supertag fields and inheritance."""

    def __init__(self, conn: sqlite3.Connection, max_depth: int = 10):
        self._conn = conn
        self._max_depth = max_depth

    def _row_to_field(self, row: sqlite3.Row) -> SupertagField:
        options = row["option_values"]
        return SupertagField(
            tag_id=row["tag_id"],
            tag_name=row["tag_name"],
            field_name=row["field_name"],
            field_label_id=row["field_label_id"],
            field_order=row["field_order"],
            normalized_name=row["normalized_name"],
            description=row["description"],
            inferred_data_type=row["inferred_data_type"],
            target_supertag_id=row["target_supertag_id"],
            target_supertag_name=row["target_supertag_name"],
            default_value_id=row["default_value_id"],
            default_value_text=row["default_value_text"],
            option_values=json.loads(options) if options else None,
            origin_tag_id=row["tag_id"],
            origin_tag_name=row["tag_name"],
        )

    def get_fields(self, tag_id: str) -> List[SupertagField]:
        """Fields declared directly on a type, in declaration order."""
        cursor = self._conn.execute(
            "SELECT * FROM supertag_fields WHERE tag_id = ? ORDER BY field_order",
            (tag_id,),
        )
        return [self._row_to_field(row) for row in cursor.fetchall()]

    get_own_fields = get_fields

    def get_fields_by_name(self, tag_name: str) -> List[SupertagField]:
        tag_id = self.find_tag_id_by_name(tag_name)
        return self.get_fields(tag_id) if tag_id else []

    def get_direct_parents(self, tag_id: str) -> List[str]:
        cursor = self._conn.execute(
            "SELECT parent_tag_id FROM supertag_parents WHERE child_tag_id = ? ORDER BY id",
            (tag_id,),
        )
        return [row[0] for row in cursor.fetchall()]

    def get_tag_name(self, tag_id: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT tag_name FROM supertag_metadata WHERE tag_id = ?", (tag_id,)
        ).fetchone()
        if row is not None:
            return row[0]
        row = self._conn.execute(
            "SELECT tag_name FROM supertag_fields WHERE tag_id = ? LIMIT 1", (tag_id,)
        ).fetchone()
        return row[0] if row is not None else None

    def get_ancestors(self, tag_id: str, max_depth: Optional[int] = None) -> List[Ancestor]:
        """
        Every ancestor of a type with its minimum distance, nearest first.

        Breadth-first over supertag_parents. The visited set and the depth
        limit both stop cycles.
        """
        limit = self._max_depth if max_depth is None else max_depth
        visited = {tag_id}
        queue = deque([(tag_id, 0)])
        ancestors: List[Ancestor] = []

        while queue:
            current, depth = queue.popleft()
            if depth >= limit:
                continue
            for parent_id in self.get_direct_parents(current):
                if parent_id in visited:
                    continue
                visited.add(parent_id)
                ancestors.append(Ancestor(parent_id, self.get_tag_name(parent_id), depth + 1))
                queue.append((parent_id, depth + 1))
        return ancestors

    def get_inheritance_chain(self, tag_id: str) -> List[str]:
        """The type itself followed by its ancestors, nearest first."""
        return [tag_id] + [ancestor.tag_id for ancestor in self.get_ancestors(tag_id)]

    def get_all_fields(self, tag_id: str) -> List[SupertagField]:
        """
        Own fields followed by inherited ones, nearest ancestor first.

        A field name appears once: a closer declaration shadows a farther one.
        """
        seen: set[str] = set()
        result: List[SupertagField] = []

        levels = [(tag_id, self.get_tag_name(tag_id), 0)]
        levels.extend((a.tag_id, a.tag_name, a.depth) for a in self.get_ancestors(tag_id))

        for origin_id, origin_name, depth in levels:
            for entry in self.get_fields(origin_id):
                if entry.field_name in seen:
                    continue
                seen.add(entry.field_name)
                entry.origin_tag_id = origin_id
                entry.origin_tag_name = origin_name or entry.tag_name
                entry.depth = depth
                result.append(entry)
        return result

    def find_tag_id_by_name(self, tag_name: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT tag_id FROM supertag_metadata WHERE tag_name = ? OR normalized_name = ? LIMIT 1",
            (tag_name, normalize_name(tag_name)),
        ).fetchone()
        return row[0] if row is not None else None

    def validate_field_name(self, tag_id: str, field_name: str) -> bool:
        """True if the type declares or inherits a field with this name."""
        wanted = normalize_name(field_name)
        return any(
            entry.field_name == field_name or entry.normalized_name == wanted
            for entry in self.get_all_fields(tag_id)
        )
