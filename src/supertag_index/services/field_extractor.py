"""
Field value extraction and field type resolution.

Field values live in tuple-shaped children of data nodes: the first child
of the tuple is the field label, the rest are values. Field types come from
the explicit type declaration on the label node where one exists, and from
the shape of observed values otherwise.
"""

import json
import logging
import re
import sqlite3
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from supertag_index.core.export_models import ExportNode
from supertag_index.core.graph_builder import NodeGraph, NodeKind
from supertag_index.core.naming import (
    DATA_TYPE_CHECKBOX,
    DATA_TYPE_DATE,
    DATA_TYPE_EMAIL,
    DATA_TYPE_NUMBER,
    DATA_TYPE_OPTIONS,
    DATA_TYPE_REFERENCE,
    DATA_TYPE_TEXT,
    DATA_TYPE_URL,
)

logger = logging.getLogger(__name__)

SYSTEM_FIELD_NAMES: dict[str, str] = {
    "SYS_A13": "Tag",
    "SYS_A61": "Due date",
    "SYS_A90": "Date",
    "SYS_A142": "Attendees",
    "SYS_T01": "Supertag",
    "SYS_T02": "Field",
    "SYS_T03": "Option value",
    "SYS_A15": "Search expression",
    "SYS_A144": "Search title",
    "SYS_A130": "Entity type",
    "SYS_A150": "Speaker",
    "SYS_A199": "Transcript",
    "SYS_A252": "Transcript speaker",
    "SYS_A253": "Start time",
    "SYS_A254": "End time",
    "SYS_A12": "System reference",
    "SYS_A16": "Default value",
    "SYS_A20": "Field reference",
}

# Data type codes used in a label's typeChoice tuple.
SYS_D_TYPE_CODES: dict[str, str] = {
    "SYS_D01": DATA_TYPE_CHECKBOX,
    "SYS_D03": DATA_TYPE_DATE,
    "SYS_D05": DATA_TYPE_REFERENCE,  # options from supertag
    "SYS_D06": DATA_TYPE_TEXT,
    "SYS_D08": DATA_TYPE_NUMBER,
    "SYS_D10": DATA_TYPE_URL,
    "SYS_D11": DATA_TYPE_EMAIL,
    "SYS_D12": DATA_TYPE_OPTIONS,
    "SYS_D13": DATA_TYPE_REFERENCE,  # user
}

TYPE_CHOICE_NAME = "typeChoice"
TYPE_CHOICE_MARKER = "SYS_T06"
SOURCE_SUPERTAG_MARKER = "SYS_A05"
SOURCE_SUPERTAG_DESCRIPTION = "Selected source supertag"

_OUTLINE_PREFIXES = ("  - ", "    - ")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}([T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?)?$")
_RELATIVE_DATE = re.compile(r"^PARENT([+-]\d+)?$")
_DATE_SPAN = re.compile(r'^<span data-inlineref-date="[^"]*"></span>$')
_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")
_URL = re.compile(r"^https?://\S+$", re.IGNORECASE)
_BOOLEANS = {"true", "false"}


@dataclass
class FieldValueRow:
    tuple_id: str
    parent_id: str
    field_def_id: str
    field_name: str
    value_node_id: str
    value_text: str
    value_order: int
    created: Optional[int] = None

    def as_tuple(self) -> tuple:
        return (
            self.tuple_id,
            self.parent_id,
            self.field_def_id,
            self.field_name,
            self.value_node_id,
            self.value_text,
            self.value_order,
            self.created,
        )


@dataclass(frozen=True)
class TargetSupertag:
    tag_def_id: str
    tag_name: str


# ─────────────────────────────────────────────────────────────────
# Field values
# ─────────────────────────────────────────────────────────────────


def is_field_tuple(
    node: ExportNode,
    nodes: Mapping[str, ExportNode],
    max_children: int = 50,
) -> bool:
    """True if node is a tuple shaped like a field label followed by values."""
    if node.props.doc_type != "tuple":
        return False
    children = node.child_ids
    if len(children) < 2 or len(children) > max_children:
        return False

    first_child = children[0]
    if first_child.startswith("SYS_"):
        return True

    label = nodes.get(first_child)
    if label is None or not label.name:
        return False
    # Indented outline text pasted into a tuple is not a label.
    return not label.name.startswith(_OUTLINE_PREFIXES)


def resolve_field_name(node: ExportNode, nodes: Mapping[str, ExportNode]) -> Optional[str]:
    children = node.child_ids
    if not children:
        return None
    first_child = children[0]
    if first_child.startswith("SYS_"):
        return SYSTEM_FIELD_NAMES.get(first_child)
    label = nodes.get(first_child)
    return label.name if label is not None and label.name else None


def _nested_text(node_id: str, nodes: Mapping[str, ExportNode], depth: int, max_depth: int) -> str:
    if depth > max_depth:
        return ""
    node = nodes.get(node_id)
    if node is None:
        return ""

    parts = [node.name] if node.name else []
    if depth < max_depth:
        for child_id in node.child_ids:
            text = _nested_text(child_id, nodes, depth + 1, max_depth)
            if text:
                parts.append(text)
    return "\n".join(parts)


def extract_values_from_tuple(
    node: ExportNode,
    nodes: Mapping[str, ExportNode],
    include_nested: bool = False,
    nested_depth: int = 2,
) -> list[tuple[str, str, int]]:
    """(value_node_id, value_text, value_order) for each non-empty value of a tuple."""
    values: list[tuple[str, str, int]] = []
    order = 0
    for child_id in node.child_ids[1:]:
        child = nodes.get(child_id)
        if child is None:
            continue

        text = child.name or ""
        if include_nested and child.child_ids:
            parts = [text]
            for nested_id in child.child_ids:
                nested = _nested_text(nested_id, nodes, 0, nested_depth)
                if nested:
                    parts.append(nested)
            text = "\n".join(part for part in parts if part)

        if not text.strip():
            continue
        values.append((child_id, text, order))
        order += 1
    return values


def find_tuple_parent(
    tuple_id: str,
    nodes: Mapping[str, ExportNode],
    parent_map: Mapping[str, str],
) -> Optional[str]:
    """First structural ancestor of a tuple that is not itself a tuple."""
    seen = {tuple_id}
    parent_id = parent_map.get(tuple_id)
    while parent_id and parent_id not in seen:
        parent = nodes.get(parent_id)
        if parent is None or parent.props.doc_type != "tuple":
            return parent_id
        seen.add(parent_id)
        parent_id = parent_map.get(parent_id)
    return None


def extract_field_values(
    graph: NodeGraph,
    excluded_names: Iterable[str] = (),
    max_children: int = 50,
    include_nested: bool = False,
    nested_depth: int = 2,
) -> list[FieldValueRow]:
    """
    Produce one row per value of every field tuple in the graph.

    Rows are only produced for parents present in the graph, so every
    ``parent_id`` refers to an indexed node.
    """
    excluded = set(excluded_names)
    rows: list[FieldValueRow] = []

    for node_id, node in graph.nodes.items():
        if graph.kind_of(node_id) in (
            NodeKind.TYPE_DEFINITION_TUPLE,
            NodeKind.FIELD_DEFINITION_TUPLE,
        ):
            continue
        if not is_field_tuple(node, graph.nodes, max_children):
            continue

        field_name = resolve_field_name(node, graph.nodes)
        if not field_name or field_name in excluded:
            continue

        parent_id = find_tuple_parent(node_id, graph.nodes, graph.parent_map)
        if parent_id is None or parent_id not in graph.nodes:
            logger.debug(f"Skipping field tuple {node_id}: no indexed parent")
            continue

        created = graph.nodes[parent_id].props.created
        for value_node_id, value_text, order in extract_values_from_tuple(
            node, graph.nodes, include_nested, nested_depth
        ):
            rows.append(
                FieldValueRow(
                    tuple_id=node_id,
                    parent_id=parent_id,
                    field_def_id=node.props.source_id or "",
                    field_name=field_name,
                    value_node_id=value_node_id,
                    value_text=value_text,
                    value_order=order,
                    created=created,
                )
            )
    return rows


# ─────────────────────────────────────────────────────────────────
# Explicit field types
# ─────────────────────────────────────────────────────────────────


def map_type_code(code: str) -> Optional[str]:
    return SYS_D_TYPE_CODES.get(code)


def type_from_type_choice(children: Optional[Iterable[str]]) -> Optional[str]:
    """Data type named by the SYS_D code among a typeChoice tuple's children."""
    if not children:
        return None
    for child_id in children:
        data_type = map_type_code(child_id)
        if data_type is not None:
            return data_type
    return None


def _is_type_choice(node: ExportNode) -> bool:
    if node.props.doc_type != "tuple":
        return False
    if node.name == TYPE_CHOICE_NAME:
        return True
    return bool(node.child_ids) and node.child_ids[0] == TYPE_CHOICE_MARKER


def extract_explicit_field_types(nodes: Mapping[str, ExportNode]) -> dict[str, str]:
    """Map of field label id -> declared data type."""
    types: dict[str, str] = {}
    for label_id, label in nodes.items():
        for child_id in label.child_ids:
            child = nodes.get(child_id)
            if child is None or not _is_type_choice(child):
                continue
            data_type = type_from_type_choice(child.child_ids)
            if data_type is not None:
                types[label_id] = data_type
                break
    return types


def extract_target_supertag(
    nodes: Mapping[str, ExportNode], label_id: str
) -> Optional[TargetSupertag]:
    """The supertag a reference field draws its options from, if declared."""
    label = nodes.get(label_id)
    if label is None:
        return None

    for child_id in label.child_ids:
        child = nodes.get(child_id)
        if child is None or child.props.doc_type != "tuple" or not child.child_ids:
            continue
        if (
            child.props.description != SOURCE_SUPERTAG_DESCRIPTION
            and child.child_ids[0] != SOURCE_SUPERTAG_MARKER
        ):
            continue
        for candidate_id in child.child_ids:
            candidate = nodes.get(candidate_id)
            if candidate is not None and candidate.props.doc_type == "tagDef":
                return TargetSupertag(tag_def_id=candidate_id, tag_name=candidate.name or "")
    return None


def extract_option_values(nodes: Mapping[str, ExportNode], label_id: str) -> list[str]:
    """Names of the inline options listed under an options field's label."""
    label = nodes.get(label_id)
    if label is None:
        return []
    options = []
    for child_id in label.child_ids:
        child = nodes.get(child_id)
        if child is None or child.props.doc_type == "tuple" or not child.name:
            continue
        options.append(child.name)
    return options


def apply_explicit_types(conn: sqlite3.Connection, nodes: Mapping[str, ExportNode]) -> tuple[int, set[str]]:
    """
    Write declared types onto supertag_fields rows.

    Returns the number of rows updated and the label ids that carry an
    explicit declaration.
    """
    explicit = extract_explicit_field_types(nodes)
    updated = 0
    for label_id, data_type in explicit.items():
        target = extract_target_supertag(nodes, label_id) if data_type == DATA_TYPE_REFERENCE else None
        options = extract_option_values(nodes, label_id) if data_type == DATA_TYPE_OPTIONS else []
        cursor = conn.execute(
            """
            UPDATE supertag_fields
            SET inferred_data_type = ?,
                target_supertag_id = ?,
                target_supertag_name = ?,
                option_values = ?
            WHERE field_label_id = ?
            """,
            (
                data_type,
                target.tag_def_id if target else None,
                target.tag_name if target else None,
                json.dumps(options) if options else None,
                label_id,
            ),
        )
        updated += cursor.rowcount
    return updated, set(explicit)


# ─────────────────────────────────────────────────────────────────
# Value-shape inference
# ─────────────────────────────────────────────────────────────────


def _is_date_like(text: str) -> bool:
    return bool(_ISO_DATE.match(text) or _RELATIVE_DATE.match(text) or _DATE_SPAN.match(text))


def infer_type_from_values(values: list[tuple[str, bool]]) -> Optional[str]:
    """
    Guess a data type from observed (value_text, is_reference) pairs.

    A majority of reference-shaped values wins; otherwise every value must
    agree on a shape. Returns None when nothing can be inferred.
    """
    if not values:
        return None

    references = sum(1 for _, is_reference in values if is_reference)
    if references * 2 > len(values):
        return DATA_TYPE_REFERENCE

    texts = [text.strip() for text, _ in values]
    if all(_is_date_like(text) for text in texts):
        return DATA_TYPE_DATE
    if all(text.lower() in _BOOLEANS for text in texts):
        return DATA_TYPE_CHECKBOX
    if all(_NUMBER.match(text) for text in texts):
        return DATA_TYPE_NUMBER
    if all(_URL.match(text) for text in texts):
        return DATA_TYPE_URL
    return None


def apply_value_inference(
    conn: sqlite3.Connection,
    nodes: Mapping[str, ExportNode],
    explicit_label_ids: Iterable[str] = (),
) -> int:
    """
    Upgrade 'text' fields whose observed values have a clearer shape.

    Fields with an explicit declaration are left alone. Returns the number
    of supertag_fields rows updated.
    """
    skip = set(explicit_label_ids)
    candidates = conn.execute(
        """
        SELECT id, field_name, field_label_id FROM supertag_fields
        WHERE inferred_data_type IS NULL OR inferred_data_type = ?
        """,
        (DATA_TYPE_TEXT,),
    ).fetchall()

    observed: dict[str, list[tuple[str, bool]]] = {}
    updated = 0
    for row_id, field_name, label_id in candidates:
        if label_id in skip:
            continue
        if field_name not in observed:
            cursor = conn.execute(
                "SELECT value_node_id, value_text FROM field_values WHERE field_name = ?",
                (field_name,),
            )
            observed[field_name] = [
                (
                    value_text,
                    value_node_id in nodes and nodes[value_node_id].props.meta_node_id is not None,
                )
                for value_node_id, value_text in cursor.fetchall()
            ]

        data_type = infer_type_from_values(observed[field_name])
        if data_type is None or data_type == DATA_TYPE_TEXT:
            continue
        conn.execute(
            "UPDATE supertag_fields SET inferred_data_type = ? WHERE id = ?",
            (data_type, row_id),
        )
        updated += 1

    if updated:
        logger.debug(f"Value inference upgraded {updated} field types")
    return updated
