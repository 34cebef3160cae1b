"""
Sync Service for supertag-index.

Coordinates one sync pass: parse the export, build the graph, ensure the
schema, choose full reindex or incremental sync, and apply the result to
every derived table inside a single transaction.
"""

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Callable, List, Optional

from supertag_index.core.change_detector import ChangeSet, compute_checksums, detect_changes
from supertag_index.core.config import SyncConfig
from supertag_index.core.export_models import ExportDocument, load_export
from supertag_index.core.graph_builder import GraphBuilder, NodeGraph
from supertag_index.infrastructure.store import (
    DERIVED_TABLES,
    NODE_KEYED_TABLES,
    DatabaseLockedError,
    IndexQueryExecutor,
    IndexStore,
    SyncError,
    with_db_retry,
)
from supertag_index.infrastructure.store.store import EMBEDDINGS_TABLE
from supertag_index.services.field_extractor import (
    apply_explicit_types,
    apply_value_inference,
    extract_field_values,
)
from supertag_index.services.supertag_metadata import extract_field_names, extract_supertag_metadata
from supertag_index.services.sync_models import SyncResult, SyncState

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _node_row(node_id: str, graph: NodeGraph) -> tuple:
    node = graph.nodes[node_id]
    return (
        node_id,
        node.props.name,
        graph.parent_map.get(node_id),
        "node",
        node.props.created,
        node.first_modified,
        node.done_at,
        node.to_raw_json(),
    )


def _node_update_row(node_id: str, graph: NodeGraph) -> tuple:
    node = graph.nodes[node_id]
    return (
        node.props.name,
        graph.parent_map.get(node_id),
        node.props.created,
        node.first_modified,
        node.done_at,
        node.to_raw_json(),
        node_id,
    )


class SyncService:
    """
    Service for synchronizing an export into the index store.

    Single-threaded per call. Atomicity comes from running every write of a
    sync in one transaction that is rolled back on any error.
    """

    def __init__(
        self,
        store: IndexStore,
        config: Optional[SyncConfig] = None,
        graph_builder: Optional[GraphBuilder] = None,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ):
        """
        Initialize the sync service.

        Args:
            store: Index store to write to
            config: Configuration. Defaults to the store's configuration.
            graph_builder: Builder used to classify export nodes
            progress_callback: Optional callback(current, total, message)
        """
        self._store = store
        self._config = config or store.config
        self._graph_builder = graph_builder or GraphBuilder(
            trash_depth=self._config.indexing.trash_max_depth
        )
        self._progress_callback = progress_callback
        self._state = SyncState.IDLE
        self._history: List[SyncState] = [SyncState.IDLE]
        self._last_changes: Optional[ChangeSet] = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def last_changes(self) -> Optional[ChangeSet]:
        """Change set applied by the most recent committed sync."""
        return self._last_changes

    @property
    def state_history(self) -> List[SyncState]:
        """States visited by the most recent sync call."""
        return list(self._history)

    def _transition(self, state: SyncState) -> None:
        logger.debug(f"Sync state: {self._state.value} -> {state.value}")
        self._state = state
        self._history.append(state)

    def _report_progress(self, current: int, total: int, message: str) -> None:
        """Report progress if callback is set."""
        if self._progress_callback:
            self._progress_callback(current, total, message)
        logger.debug(f"Progress: {current}/{total} - {message}")

    # ─────────────────────────────────────────────────────────────────
    # Entry points
    # ─────────────────────────────────────────────────────────────────

    def sync(self, export_path: Path | str, force_full: bool = False) -> SyncResult:
        """
        Sync an export file into the store.

        Raises:
            ExportParseError: If the export cannot be read or validated.
                Raised before any transaction is opened.
            MigrationError: If the schema cannot be created or migrated
            DatabaseLockedError: If the write lock stayed busy through every retry
            SyncError: If applying the changes failed and was rolled back
        """
        self._state = SyncState.IDLE
        self._history = [SyncState.IDLE]

        export_path = Path(export_path)
        self._report_progress(0, 0, f"Parsing export {export_path.name}...")
        document = load_export(export_path)
        return self.sync_document(document, export_path.name, force_full=force_full)

    def sync_document(
        self,
        document: ExportDocument,
        export_name: str,
        force_full: bool = False,
    ) -> SyncResult:
        """Sync an already parsed export document."""
        start_time = time.time()
        self._state = SyncState.IDLE
        self._history = [SyncState.IDLE]

        graph = self._graph_builder.build(document)

        self._store.initialize()
        self._transition(SyncState.SCHEMA_READY)

        node_count = self._store.count_nodes()
        checksum_count = self._store.count_checksums()
        if force_full:
            full = True
            reason = "forced"
        elif node_count == 0:
            full = True
            reason = "empty store"
        elif checksum_count == 0:
            full = True
            reason = "no checksum baseline"
        else:
            full = False
            reason = ""

        checksums = compute_checksums(graph)
        if full:
            logger.info(f"Running full reindex ({reason})")
            self._transition(SyncState.FULL_REINDEX)
            result = self._run(lambda q: self._full_reindex(q, graph, checksums, export_name))
            changes = ChangeSet(added=set(graph.nodes))
        else:
            changes = detect_changes(graph, self._store.get_prior_checksums(), checksums)
            logger.info(
                f"Detected changes: {len(changes.added)} added, "
                f"{len(changes.modified)} modified, {len(changes.deleted)} deleted"
            )
            self._transition(SyncState.INCREMENTAL_SYNC)
            result = self._run(
                lambda q: self._incremental(q, graph, checksums, changes, export_name)
            )

        self._transition(SyncState.COMMITTED)
        self._last_changes = changes
        result.duration_ms = int((time.time() - start_time) * 1000)

        logger.info(
            "Sync completed",
            extra={
                "full_reindex": result.full_reindex,
                "nodes_indexed": result.nodes_indexed,
                "nodes_added": result.nodes_added,
                "nodes_modified": result.nodes_modified,
                "nodes_deleted": result.nodes_deleted,
                "field_values_indexed": result.field_values_indexed,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    # ─────────────────────────────────────────────────────────────────
    # Transaction handling
    # ─────────────────────────────────────────────────────────────────

    def _run(self, apply: Callable[[IndexQueryExecutor], SyncResult]) -> SyncResult:
        """Run apply inside one transaction, retrying the whole unit on lock contention."""

        def _attempt() -> SyncResult:
            with self._store.transaction(retry=False) as query:
                return apply(query)

        try:
            return with_db_retry(_attempt, self._config.retry, context="sync transaction")
        except DatabaseLockedError:
            self._transition(SyncState.ROLLED_BACK)
            raise
        except sqlite3.Error as e:
            self._transition(SyncState.ROLLED_BACK)
            logger.error(f"Sync failed and was rolled back: {e}")
            raise SyncError(f"Sync failed and was rolled back: {e}") from e
        except BaseException:
            self._transition(SyncState.ROLLED_BACK)
            raise

    # ─────────────────────────────────────────────────────────────────
    # Full reindex
    # ─────────────────────────────────────────────────────────────────

    def _full_reindex(
        self,
        query: IndexQueryExecutor,
        graph: NodeGraph,
        checksums: dict[str, str],
        export_name: str,
    ) -> SyncResult:
        result = SyncResult(full_reindex=True)
        now = _now_ms()

        for table in DERIVED_TABLES:
            query.clear_table(table)

        node_ids = list(graph.nodes)
        self._report_progress(0, len(node_ids), "Inserting nodes...")
        query.insert_nodes([_node_row(node_id, graph) for node_id in node_ids])
        query.upsert_checksums([(node_id, checksums[node_id], now) for node_id in node_ids])
        self._report_progress(len(node_ids), len(node_ids), "Inserted nodes")

        result.supertags_indexed = self._insert_supertags(query, graph, None)
        result.fields_indexed = self._insert_fields(query, graph, None)
        result.references_indexed = self._insert_references(query, graph, None)
        result.tag_applications_indexed = self._insert_tag_applications(query, graph, None)

        if self._store.capabilities.has_embeddings_table:
            result.embeddings_cleared = query.delete_orphaned_embeddings()

        self._rebuild_derived(query, graph, result)

        query.write_sync_metadata(export_name, now, graph.node_count)

        result.nodes_indexed = len(node_ids)
        result.nodes_added = len(node_ids)
        return result

    # ─────────────────────────────────────────────────────────────────
    # Incremental sync
    # ─────────────────────────────────────────────────────────────────

    def _incremental(
        self,
        query: IndexQueryExecutor,
        graph: NodeGraph,
        checksums: dict[str, str],
        changes: ChangeSet,
        export_name: str,
    ) -> SyncResult:
        result = SyncResult(full_reindex=False)
        now = _now_ms()
        changed = changes.changed

        # A node can change parents without its own checksum changing.
        stored_children = query.get_children_of(changes.deleted | changes.modified)
        reparent = {
            child_id
            for node_id in changed
            for child_id in graph.nodes[node_id].child_ids
            if child_id in graph.nodes
        }
        reparent.update(child_id for child_id in stored_children if child_id in graph.nodes)
        reparent -= changed
        previous_parents = query.get_parent_ids(changed | reparent | changes.deleted)

        # Deleted ids leave every node-keyed table.
        if self._store.capabilities.has_embeddings_table:
            stale = changes.deleted | changes.modified
            result.embeddings_cleared = query.count_where_in(EMBEDDINGS_TABLE, "node_id", stale)
            query.delete_where_in(EMBEDDINGS_TABLE, "node_id", stale)
        for table, column in NODE_KEYED_TABLES:
            query.delete_where_in(table, column, changes.deleted)

        query.insert_nodes([_node_row(node_id, graph) for node_id in sorted(changes.added)])
        query.update_nodes([_node_update_row(node_id, graph) for node_id in sorted(changes.modified)])

        query.update_parent_ids(
            [(graph.parent_map.get(node_id), node_id) for node_id in sorted(reparent)]
        )

        query.upsert_checksums(
            [(node_id, checksum, now) for node_id, checksum in checksums.items()]
        )

        if not changes.is_empty:
            tuple_scope = self._tuple_scope(graph, changed | reparent, changes.deleted)
            query.delete_where_in("supertags", "node_id", tuple_scope)
            query.delete_where_in("supertags", "tag_id", tuple_scope)
            query.delete_where_in("fields", "node_id", tuple_scope)
            query.delete_where_in("fields", "field_id", tuple_scope)
            query.delete_where_in("tag_applications", "tuple_node_id", tuple_scope)
            query.delete_where_in("tag_applications", "data_node_id", tuple_scope)
            query.delete_where_in("tag_applications", "tag_id", tuple_scope)

            reference_scope = self._reference_scope(graph, changed | reparent, previous_parents)
            query.delete_where_in('"references"', "from_node", reference_scope)

            result.supertags_indexed = self._insert_supertags(query, graph, tuple_scope)
            result.fields_indexed = self._insert_fields(query, graph, tuple_scope)
            result.references_indexed = self._insert_references(query, graph, reference_scope)
            result.tag_applications_indexed = self._insert_tag_applications(query, graph, tuple_scope)

        self._rebuild_derived(query, graph, result)

        query.write_sync_metadata(export_name, now, graph.node_count)

        result.nodes_indexed = graph.node_count
        result.nodes_added = len(changes.added)
        result.nodes_modified = len(changes.modified)
        result.nodes_deleted = len(changes.deleted)
        return result

    @staticmethod
    def _tuple_scope(graph: NodeGraph, moved: set[str], deleted: set[str]) -> set[str]:
        """
        Changed or reparented ids plus the tuples owned by any of them or by
        a deleted node.

        Definition and tag tuples resolve through their owner, so a tuple
        whose own checksum is unchanged still has to be re-derived when its
        owner changed or went away.
        """
        touched = moved | deleted
        scope = set(moved)
        scope.update(
            node_id
            for node_id, node in graph.nodes.items()
            if node.props.owner_id and node.props.owner_id in touched
        )
        return scope

    @staticmethod
    def _reference_scope(
        graph: NodeGraph,
        moved: set[str],
        previous_parents: dict[str, Optional[str]],
    ) -> set[str]:
        """
        Nodes whose reference rows must be rebuilt.

        Indirect references hang off a wrapper's parent, so the current parent
        of every changed or reparented node is included, and so is the stored
        parent of every changed, reparented or deleted node.
        """
        scope = set(moved)
        scope.update(graph.parent_map[node_id] for node_id in moved if node_id in graph.parent_map)
        scope.update(parent_id for parent_id in previous_parents.values() if parent_id)
        return scope

    # ─────────────────────────────────────────────────────────────────
    # Row builders shared by both paths
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _insert_supertags(query: IndexQueryExecutor, graph: NodeGraph, scope: Optional[set[str]]) -> int:
        rows = [
            (tuple_.node_id, tuple_.tag_name, tuple_.tag_id, tuple_.color)
            for tuple_ in graph.supertags.values()
            if scope is None or tuple_.node_id in scope or tuple_.tag_id in scope
        ]
        query.insert_supertags(rows)
        return len(rows)

    @staticmethod
    def _insert_fields(query: IndexQueryExecutor, graph: NodeGraph, scope: Optional[set[str]]) -> int:
        rows = [
            (tuple_.node_id, tuple_.field_name, tuple_.field_id)
            for tuple_ in graph.fields.values()
            if scope is None or tuple_.node_id in scope or tuple_.field_id in scope
        ]
        query.insert_fields(rows)
        return len(rows)

    @staticmethod
    def _insert_references(query: IndexQueryExecutor, graph: NodeGraph, scope: Optional[set[str]]) -> int:
        rows = [
            (ref.source_node_id, target_id, ref.type)
            for ref in graph.inline_refs
            if scope is None or ref.source_node_id in scope
            for target_id in ref.target_node_ids
        ]
        query.insert_references(rows)
        return len(rows)

    @staticmethod
    def _insert_tag_applications(
        query: IndexQueryExecutor, graph: NodeGraph, scope: Optional[set[str]]
    ) -> int:
        rows = [
            (app.tuple_node_id, app.data_node_id, app.tag_id, app.tag_name)
            for app in graph.tag_applications
            if scope is None
            or app.tuple_node_id in scope
            or app.data_node_id in scope
            or app.tag_id in scope
        ]
        query.insert_tag_applications(rows)
        return len(rows)

    def _rebuild_derived(self, query: IndexQueryExecutor, graph: NodeGraph, result: SyncResult) -> None:
        """Tables recomputed from the whole graph on every sync."""
        conn = self._store.connection
        indexing = self._config.indexing

        query.clear_table("field_names")
        field_names = extract_field_names(graph)
        query.insert_field_names(
            [
                (field_id, mapping.field_name, json.dumps(mapping.supertags))
                for field_id, mapping in field_names.items()
            ]
        )
        result.field_names_indexed = len(field_names)

        self._report_progress(0, 0, "Extracting field values...")
        query.clear_table("field_values")
        values = extract_field_values(
            graph,
            excluded_names=query.get_excluded_field_names(),
            max_children=indexing.max_tuple_children,
            include_nested=indexing.include_nested_values,
            nested_depth=indexing.nested_value_depth,
        )
        query.insert_field_values([row.as_tuple() for row in values])
        result.field_values_indexed = len(values)

        self._report_progress(0, 0, "Extracting supertag metadata...")
        metadata = extract_supertag_metadata(conn, graph)
        result.supertag_fields_extracted = metadata.fields_extracted
        result.supertag_parents_extracted = metadata.parents_extracted

        explicit_updated, explicit_ids = apply_explicit_types(conn, graph.nodes)
        inferred_updated = apply_value_inference(conn, graph.nodes, explicit_ids)
        logger.debug(
            f"Field types: {explicit_updated} explicit, {inferred_updated} inferred from values"
        )
