"""
Property-based and scenario tests for SyncService.

**Feature: supertag-index, Property 10: Sync Idempotence**
**Feature: supertag-index, Property 4: Diff Correctness**
**Feature: supertag-index, Property 11: Referential Cleanliness**
**Validates: Requirements 4.6, 7, 8**
"""

import json
import sqlite3
import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from supertag_index.core.config import DatabaseConfig, RetryConfig, SyncConfig
from supertag_index.core.export_models import ExportParseError, parse_export
from supertag_index.infrastructure.store import DatabaseLockedError, IndexStore, SyncError
from supertag_index.services.sync_models import SyncState
from supertag_index.services.sync_service import SyncService
from tests.support.export_builders import (
    make_export,
    make_field_def,
    make_field_label,
    make_field_value,
    make_node,
    make_tag_def,
    make_tagged_node,
    node_id_strategy,
    node_name_strategy,
    scenario_docs,
    write_export,
)

NODE_REFERENCING_COLUMNS = [
    ("node_checksums", "node_id"),
    ("supertags", "node_id"),
    ("fields", "node_id"),
    ('"references"', "from_node"),
    ("tag_applications", "tuple_node_id"),
    ("tag_applications", "data_node_id"),
    ("field_values", "parent_id"),
    ("field_values", "tuple_id"),
]


def _ref(node_id: str) -> str:
    return f'<span data-inlineref-node="{node_id}"></span>'


def _ids_in(store: IndexStore, table: str, column: str) -> set:
    rows = store.connection.execute(f"SELECT {column} FROM {table}").fetchall()
    return {row[0] for row in rows}


def _assert_referentially_clean(store: IndexStore) -> None:
    node_ids = _ids_in(store, "nodes", "id")
    for table, column in NODE_REFERENCING_COLUMNS:
        dangling = _ids_in(store, table, column) - node_ids
        assert not dangling, f"{table}.{column} references missing nodes: {dangling}"


def _rich_docs(include_task: bool = True, status: str = "In progress") -> list[dict]:
    """A tagged project holding a tagged task with a field value and a reference."""
    docs = make_tag_def("tag_project", "project", field_labels=["label_status"])
    docs += make_tag_def("tag_task", "task", parents=["tag_project"])
    docs += make_field_label("label_status", "Status")
    children = ["task", "mention"] if include_task else ["mention"]
    docs += make_tagged_node("project", "Launch", ["tag_project"], children=children)
    docs.append(make_node("mention", f"Owner is {_ref('person')}"))
    docs.append(make_node("person", "Ada"))
    if include_task:
        docs += make_tagged_node("task", "Draft plan", ["tag_task"], children=["task_status"])
        docs += make_field_value("task_status", "task", "label_status", [("status_value", status)])
    return docs


@st.composite
def export_docs_strategy(draw):
    """Random trees of plain nodes with names and child links."""
    ids = draw(st.lists(node_id_strategy, min_size=1, max_size=15, unique=True))
    docs = []
    for node_id in ids:
        children = draw(st.lists(st.sampled_from(ids), max_size=3, unique=True))
        docs.append(make_node(node_id, draw(node_name_strategy), children=children))
    return docs


# ─────────────────────────────────────────────────────────────────
# Core properties
# ─────────────────────────────────────────────────────────────────


@given(docs=export_docs_strategy())
@settings(max_examples=30, deadline=None)
def test_second_sync_of_same_export_changes_nothing(docs):
    """
    *For any* export, syncing it twice reports no added, modified or
    deleted nodes on the second run.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        export_path = write_export(Path(tmpdir), docs)
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            first = service.sync(export_path)
            second = service.sync(export_path)

            assert first.full_reindex is True
            assert second.full_reindex is False
            assert (second.nodes_added, second.nodes_modified, second.nodes_deleted) == (0, 0, 0)
            assert second.nodes_indexed == len(docs)
        finally:
            store.close()


@given(docs=export_docs_strategy(), data=st.data())
@settings(max_examples=30, deadline=None)
def test_removed_nodes_leave_every_table(docs, data):
    """
    *For any* export A and export B missing some of A's nodes, syncing A
    then B reports the missing ids as deleted and removes them everywhere.
    """
    ids = [doc["id"] for doc in docs]
    dropped = set(data.draw(st.lists(st.sampled_from(ids), unique=True)))

    with tempfile.TemporaryDirectory() as tmpdir:
        path_a = write_export(Path(tmpdir), docs, "a.json")
        path_b = write_export(Path(tmpdir), [d for d in docs if d["id"] not in dropped], "b.json")
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            service.sync(path_a)
            result = service.sync(path_b)

            assert service.last_changes.deleted == dropped
            assert result.nodes_deleted == len(dropped)
            assert not (_ids_in(store, "nodes", "id") & dropped)
            assert not (_ids_in(store, "node_checksums", "node_id") & dropped)
            _assert_referentially_clean(store)
            for node_id in ids:
                node = store.get_node(node_id)
                if node is not None and node.parent_id is not None:
                    assert store.get_node(node.parent_id) is not None
        finally:
            store.close()


def test_removing_a_tagged_node_keeps_tables_clean():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            first = service.sync(write_export(Path(tmpdir), _rich_docs(), "a.json"))
            assert first.field_values_indexed >= 1
            assert store.find_nodes_by_tag("task")[0].id == "task"

            service.sync(write_export(Path(tmpdir), _rich_docs(include_task=False), "b.json"))

            assert {"task", "task_status", "status_value"} <= service.last_changes.deleted
            assert store.find_nodes_by_tag("task") == []
            assert store.search_field_values("progress") == []
            _assert_referentially_clean(store)
        finally:
            store.close()


def test_scenario_tag_resolution_survives_rename_and_root_removal():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            service.sync(write_export(Path(tmpdir), scenario_docs(), "a.json"))

            ancestor = store.find_tagged_ancestor("C")
            assert ancestor.node_id == "B"
            assert ancestor.tag_names == ["project"]

            result = service.sync(
                write_export(Path(tmpdir), scenario_docs(c_name="revised note", include_root=False), "b.json")
            )

            changes = service.last_changes
            assert changes.deleted == {"A"}
            assert changes.modified == {"C"}
            assert changes.added == set()
            assert (result.nodes_added, result.nodes_modified, result.nodes_deleted) == (0, 1, 1)

            assert store.get_node("A") is None
            assert store.get_node("C").name == "revised note"
            assert store.get_node("B").parent_id is None
            ancestor = store.find_tagged_ancestor("C")
            assert ancestor.node_id == "B"
            assert ancestor.tag_names == ["project"]
        finally:
            store.close()


def test_full_reindex_when_checksums_are_missing():
    with tempfile.TemporaryDirectory() as tmpdir:
        export_path = write_export(Path(tmpdir), scenario_docs())
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            service.sync(export_path)
            node_count = store.count_nodes()
            store.connection.execute("DELETE FROM node_checksums")
            store.connection.execute(
                "INSERT INTO supertags (node_id, tag_name, tag_id) VALUES ('stale', 'stale', 'stale')"
            )

            result = service.sync(export_path)

            assert result.full_reindex is True
            assert SyncState.FULL_REINDEX in service.state_history
            assert store.count_nodes() == node_count
            assert store.count_checksums() == node_count
            assert "stale" not in _ids_in(store, "supertags", "node_id")
        finally:
            store.close()


def test_force_full_reindex():
    with tempfile.TemporaryDirectory() as tmpdir:
        export_path = write_export(Path(tmpdir), scenario_docs())
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            service.sync(export_path)

            result = service.sync(export_path, force_full=True)

            assert result.full_reindex is True
            assert result.nodes_added == result.nodes_indexed
        finally:
            store.close()


def test_state_history_of_incremental_sync():
    with tempfile.TemporaryDirectory() as tmpdir:
        export_path = write_export(Path(tmpdir), scenario_docs())
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            service.sync(export_path)
            service.sync(export_path)

            assert service.state == SyncState.COMMITTED
            assert service.state_history == [
                SyncState.IDLE,
                SyncState.SCHEMA_READY,
                SyncState.INCREMENTAL_SYNC,
                SyncState.COMMITTED,
            ]
        finally:
            store.close()


def test_sync_metadata_and_result_shape():
    with tempfile.TemporaryDirectory() as tmpdir:
        docs = scenario_docs()
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            result = SyncService(store).sync(write_export(Path(tmpdir), docs, "workspace.json"))

            metadata = store.get_sync_metadata()
            assert metadata.last_export_file == "workspace.json"
            assert metadata.total_nodes == len(docs)
            assert metadata.last_sync_timestamp > 0

            payload = result.to_dict()
            assert payload["nodesIndexed"] == len(docs)
            assert payload["supertagsIndexed"] == 1
            assert payload["tagApplicationsIndexed"] == 1
            assert payload["fullReindex"] is True
            assert {
                "nodesAdded",
                "nodesModified",
                "nodesDeleted",
                "fieldsIndexed",
                "referencesIndexed",
                "fieldNamesIndexed",
                "fieldValuesIndexed",
                "supertagFieldsExtracted",
                "supertagParentsExtracted",
                "embeddingsCleared",
                "durationMs",
            } <= payload.keys()
        finally:
            store.close()


# ─────────────────────────────────────────────────────────────────
# Incremental refresh of derived rows
# ─────────────────────────────────────────────────────────────────


def test_changed_field_value_is_searchable():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            service.sync(write_export(Path(tmpdir), _rich_docs(status="In progress"), "a.json"))
            service.sync(write_export(Path(tmpdir), _rich_docs(status="Shipped"), "b.json"))

            assert store.search_field_values("progress") == []
            [hit] = store.search_field_values("shipped")
            assert hit.parent_id == "task"
            assert hit.field_name == "Status"
        finally:
            store.close()


def test_renamed_tag_updates_applications():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            service.sync(write_export(Path(tmpdir), scenario_docs(), "a.json"))

            docs = scenario_docs()
            next(doc for doc in docs if doc["id"] == "tag_project")["props"]["name"] = "initiative"
            service.sync(write_export(Path(tmpdir), docs, "b.json"))

            assert service.last_changes.modified == {"tag_project"}
            assert [node.id for node in store.find_nodes_by_tag("initiative")] == ["B"]
            assert store.find_nodes_by_tag("project") == []
            assert _ids_in(store, "supertags", "tag_name") == {"initiative"}
        finally:
            store.close()


def test_moved_node_gets_new_parent():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            service.sync(write_export(Path(tmpdir), scenario_docs(), "a.json"))

            docs = scenario_docs()
            next(doc for doc in docs if doc["id"] == "A")["children"] = ["B", "C"]
            next(doc for doc in docs if doc["id"] == "B")["children"] = []
            service.sync(write_export(Path(tmpdir), docs, "b.json"))

            assert store.get_node("C").parent_id == "A"
            assert store.find_tagged_ancestor("C") is None
        finally:
            store.close()


def test_indirect_reference_follows_wrapper_edits():
    def docs_pointing_at(target: str) -> list[dict]:
        return [
            make_node("parent", "Project", children=["wrapper"]),
            make_node("wrapper", _ref(target)),
            make_node("first", "First"),
            make_node("second", "Second"),
        ]

    with tempfile.TemporaryDirectory() as tmpdir:
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            service.sync(write_export(Path(tmpdir), docs_pointing_at("first"), "a.json"))
            assert [ref.to_node for ref in store.get_outbound_references("parent")] == ["first"]

            service.sync(write_export(Path(tmpdir), docs_pointing_at("second"), "b.json"))

            assert service.last_changes.modified == {"wrapper"}
            outbound = store.get_outbound_references("parent")
            assert [(ref.to_node, ref.reference_type) for ref in outbound] == [
                ("second", "inline_ref_indirect")
            ]
            assert [ref.from_node for ref in store.get_inbound_references("first")] == []
        finally:
            store.close()


def test_field_exclusion_applies_on_next_sync():
    with tempfile.TemporaryDirectory() as tmpdir:
        export_path = write_export(Path(tmpdir), _rich_docs())
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            service.sync(export_path)
            assert store.get_field_values("task")

            store.add_field_exclusion("Status", reason="noise")
            service.sync(export_path)

            assert store.get_field_values("task") == []
        finally:
            store.close()


# ─────────────────────────────────────────────────────────────────
# Failure handling
# ─────────────────────────────────────────────────────────────────


def test_parse_error_leaves_store_untouched():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            bad_path = Path(tmpdir) / "bad.json"
            bad_path.write_text(json.dumps({"docs": [{"id": "x", "props": {}}]}), encoding="utf-8")

            with pytest.raises(ExportParseError):
                service.sync(bad_path)

            assert service.state == SyncState.IDLE
            assert store.count_nodes() == 0
        finally:
            store.close()


def test_failure_during_apply_rolls_back(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            service.sync(write_export(Path(tmpdir), scenario_docs(), "a.json"))
            stats_before = store.get_stats()
            checksums_before = store.get_prior_checksums()

            def _explode(conn, graph):
                raise sqlite3.IntegrityError("UNIQUE constraint failed: supertag_fields.tag_id")

            monkeypatch.setattr("supertag_index.services.sync_service.extract_supertag_metadata", _explode)

            with pytest.raises(SyncError) as exc_info:
                service.sync(
                    write_export(Path(tmpdir), scenario_docs(c_name="changed", include_root=False), "b.json")
                )

            assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)
            assert service.state == SyncState.ROLLED_BACK
            assert store.get_stats() == stats_before
            assert store.get_prior_checksums() == checksums_before
            assert store.get_node("A") is not None
            assert store.get_node("C").name == "note text"
            assert not store.connection.in_transaction
        finally:
            store.close()


def test_locked_database_raises_after_retries():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "index.db"
        config = SyncConfig(
            database=DatabaseConfig(path=str(db_path), busy_timeout_ms=0),
            retry=RetryConfig(max_retries=2, base_delay=0.01, max_delay=0.02, jitter=0.0),
        )
        store = IndexStore(db_path, config)
        store.initialize()
        blocker = sqlite3.connect(str(db_path), isolation_level=None)
        try:
            blocker.execute("BEGIN IMMEDIATE")
            service = SyncService(store)

            with pytest.raises(DatabaseLockedError) as exc_info:
                service.sync(write_export(Path(tmpdir), scenario_docs()))

            assert exc_info.value.attempts == 2
            assert service.state == SyncState.ROLLED_BACK
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()
            store.close()


# ─────────────────────────────────────────────────────────────────
# Optional embeddings table
# ─────────────────────────────────────────────────────────────────


def _create_embeddings(db_path: Path, node_ids) -> None:
    conn = sqlite3.connect(str(db_path))
    conn.execute("CREATE TABLE IF NOT EXISTS embeddings (node_id TEXT PRIMARY KEY, vector BLOB)")
    conn.executemany("INSERT INTO embeddings (node_id, vector) VALUES (?, x'00')", [(n,) for n in node_ids])
    conn.commit()
    conn.close()


def test_embeddings_cleared_for_deleted_and_modified_nodes():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "index.db"
        _create_embeddings(db_path, ["A", "B", "C"])
        store = IndexStore(db_path)
        try:
            service = SyncService(store)
            first = service.sync(write_export(Path(tmpdir), scenario_docs(), "a.json"))
            assert first.embeddings_cleared == 0

            result = service.sync(
                write_export(Path(tmpdir), scenario_docs(c_name="edited", include_root=False), "b.json")
            )

            assert result.embeddings_cleared == 2
            assert _ids_in(store, "embeddings", "node_id") == {"B"}
        finally:
            store.close()


def test_full_reindex_clears_orphaned_embeddings():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "index.db"
        _create_embeddings(db_path, ["A", "gone"])
        store = IndexStore(db_path)
        try:
            result = SyncService(store).sync(write_export(Path(tmpdir), scenario_docs()))

            assert result.embeddings_cleared == 1
            assert _ids_in(store, "embeddings", "node_id") == {"A"}
        finally:
            store.close()


def test_missing_embeddings_table_reports_zero():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = IndexStore(Path(tmpdir) / "index.db")
        try:
            service = SyncService(store)
            service.sync(write_export(Path(tmpdir), scenario_docs(), "a.json"))
            result = service.sync(write_export(Path(tmpdir), scenario_docs(include_root=False), "b.json"))

            assert store.capabilities.has_embeddings_table is False
            assert result.embeddings_cleared == 0
        finally:
            store.close()


# ─────────────────────────────────────────────────────────────────
# Incremental sync matches a full reindex
# ─────────────────────────────────────────────────────────────────

DERIVED_ROW_QUERIES = {
    "nodes": "SELECT id, name, parent_id FROM nodes",
    "supertags": "SELECT node_id, tag_name, tag_id, color FROM supertags",
    "fields": "SELECT node_id, field_name, field_id FROM fields",
    "references": 'SELECT from_node, to_node, reference_type FROM "references"',
    "tag_applications": "SELECT tuple_node_id, data_node_id, tag_id, tag_name FROM tag_applications",
}


def _derived_rows(store: IndexStore) -> dict:
    return {
        table: sorted(tuple(row) for row in store.connection.execute(sql).fetchall())
        for table, sql in DERIVED_ROW_QUERIES.items()
    }


def _sync_docs(service: SyncService, docs: list[dict]):
    return service.sync_document(parse_export(make_export(docs)), "export.json")


def _full_reindex_rows(docs: list[dict]) -> dict:
    store = IndexStore(":memory:")
    try:
        _sync_docs(SyncService(store), docs)
        return _derived_rows(store)
    finally:
        store.close()


def _incremental_rows(*versions: list[dict]) -> dict:
    store = IndexStore(":memory:")
    try:
        service = SyncService(store)
        for docs in versions:
            _sync_docs(service, docs)
        return _derived_rows(store)
    finally:
        store.close()


def test_reference_to_removed_target_is_kept_and_survives_its_return():
    with_target = [make_node("source", f"see {_ref('target')}"), make_node("target", "Target")]
    without_target = [make_node("source", f"see {_ref('target')}")]

    after_removal = _incremental_rows(with_target, without_target)
    assert after_removal["references"] == [("source", "target", "inline_ref")]
    assert after_removal == _full_reindex_rows(without_target)

    after_return = _incremental_rows(with_target, without_target, with_target)
    assert after_return["references"] == [("source", "target", "inline_ref")]
    assert after_return == _full_reindex_rows(with_target)


def test_wrapper_moves_its_indirect_reference_to_the_next_parent():
    both_parents = [
        make_node("first_parent", "First", children=["wrapper"]),
        make_node("second_parent", "Second", children=["wrapper"]),
        make_node("wrapper", _ref("target")),
        make_node("target", "Target"),
    ]
    second_only = [doc for doc in both_parents if doc["id"] != "first_parent"]

    rows = _incremental_rows(both_parents, second_only)

    assert rows["references"] == [
        ("second_parent", "target", "inline_ref_indirect"),
        ("wrapper", "target", "inline_ref"),
    ]
    assert ("wrapper", _ref("target"), "second_parent") in rows["nodes"]
    assert rows == _full_reindex_rows(second_only)


def test_removed_wrapper_takes_its_indirect_reference_along():
    with_wrapper = [
        make_node("parent", "Parent", children=["wrapper"]),
        make_node("wrapper", _ref("target")),
        make_node("target", "Target"),
    ]
    without_wrapper = [doc for doc in with_wrapper if doc["id"] != "wrapper"]

    rows = _incremental_rows(with_wrapper, without_wrapper)

    assert rows["references"] == []
    assert rows == _full_reindex_rows(without_wrapper)


def test_child_dropped_by_first_parent_moves_to_the_next_parent():
    before = [
        make_node("first_parent", "First", children=["child"]),
        make_node("second_parent", "Second", children=["child"]),
        make_node("child", "Child"),
    ]
    after = [
        make_node("first_parent", "First", children=[]),
        make_node("second_parent", "Second", children=["child"]),
        make_node("child", "Child"),
    ]

    rows = _incremental_rows(before, after)

    assert ("child", "Child", "second_parent") in rows["nodes"]
    assert rows == _full_reindex_rows(after)


def test_field_labels_sharing_a_name_each_keep_their_row():
    one_label = make_field_def("label_one", "Status")
    two_labels = one_label + make_field_def("label_two", "Status")

    rows = _incremental_rows(one_label, two_labels)
    assert rows["fields"] == [
        ("label_one_def", "Status", "label_one"),
        ("label_two_def", "Status", "label_two"),
    ]
    assert rows == _full_reindex_rows(two_labels)

    assert _incremental_rows(two_labels, one_label) == _full_reindex_rows(one_label)


def test_types_sharing_a_name_each_keep_their_row():
    one_type = make_tag_def("tag_one", "project")
    two_types = one_type + make_tag_def("tag_two", "project")

    rows = _incremental_rows(one_type, two_types)
    assert [row[2] for row in rows["supertags"]] == ["tag_one", "tag_two"]
    assert rows == _full_reindex_rows(two_types)

    assert _incremental_rows(two_types, one_type) == _full_reindex_rows(one_type)


CONTENT_IDS = ["n0", "n1", "n2", "n3", "w0", "w1", "t0", "t1"]
TAG_IDS = ["tag_a", "tag_b"]
LABEL_IDS = ["label_x", "label_y"]
REF_TARGETS = CONTENT_IDS + TAG_IDS + ["ghost"]


@st.composite
def export_version_strategy(draw):
    """
    One version of a small workspace drawn from a fixed id universe.

    Documents always appear in the same relative order, so two versions
    differ only in which units are present and in their names, children,
    references, tags and type definitions.
    """
    present = st.booleans()
    children = st.lists(st.sampled_from(CONTENT_IDS), max_size=3, unique=True)
    docs: list[dict] = []

    for tag_id in TAG_IDS:
        if draw(present):
            parents = draw(st.lists(st.sampled_from([t for t in TAG_IDS if t != tag_id]), max_size=1))
            docs += make_tag_def(tag_id, draw(st.sampled_from(["project", "task"])), parents=parents)

    for label_id in LABEL_IDS:
        if draw(present):
            docs += make_field_def(label_id, draw(st.sampled_from(["Status", "Owner"])))

    for node_id in ["t0", "t1"]:
        if draw(present):
            tags = draw(st.lists(st.sampled_from(TAG_IDS + ["ghost"]), min_size=1, max_size=2, unique=True))
            docs += make_tagged_node(node_id, draw(st.sampled_from(["Plan", "Review"])), tags, children=draw(children))

    for node_id in ["n0", "n1", "n2", "n3"]:
        if draw(present):
            name = draw(st.sampled_from(["Note", "Other note", None]))
            if name is None:
                name = f"see {_ref(draw(st.sampled_from(REF_TARGETS)))}"
            docs.append(make_node(node_id, name, children=draw(children)))

    for node_id in ["w0", "w1"]:
        if draw(present):
            name = draw(st.one_of(st.just("plain"), st.sampled_from(REF_TARGETS).map(_ref)))
            docs.append(make_node(node_id, name))

    return docs


@given(before=export_version_strategy(), after=export_version_strategy())
@settings(max_examples=60, deadline=None)
def test_incremental_sync_matches_full_reindex(before, after):
    """
    *For any* two exports A and B, syncing A and then B leaves the same
    nodes, parents, type and field definitions, references and tag
    applications as a full reindex of B.
    """
    assert _incremental_rows(before, after) == _full_reindex_rows(after)
