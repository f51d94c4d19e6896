"""Tests for the library TreeStore."""

import itertools
import json
import random
import sqlite3
from pathlib import Path

import pytest

from backend.src.models.query_tree import (
    DEFAULT_QUERY_TEXT,
    MAX_TREE_DEPTH,
    ChartConfig,
    FolderNode,
    QueryNode,
)
from backend.src.services.database import DatabaseService
from backend.src.services.library_errors import (
    CyclicMoveError,
    InvalidChartConfigError,
    MalformedSnapshotError,
    NodeNotFoundError,
    NotAFolderError,
    NotAQueryError,
    SnapshotPersistError,
    TreeTooDeepError,
)
from backend.src.services.move_resolver import MoveOutcome
from backend.src.services.snapshot_codec import SnapshotCodec
from backend.src.services.snapshot_storage import SnapshotStorage
from backend.src.services.tree_paths import collect_ids, contains, iter_nodes
from backend.src.services.tree_store import TreeStore


class MemoryStorage:
    """Stand-in for SnapshotStorage that keeps writes in a list."""

    key = "memory"

    def __init__(self, payload=None):
        self.payload = payload
        self.writes = []
        self.backups = []

    def read(self):
        return self.payload

    def write(self, payload):
        self.writes.append(payload)
        self.payload = payload

    def backup(self, payload):
        self.backups.append(payload)
        return f"{self.key}.malformed"


class BrokenStorage(MemoryStorage):
    def write(self, payload):
        raise sqlite3.OperationalError("database or disk is full")


class UnreadableStorage(MemoryStorage):
    def read(self):
        raise sqlite3.DatabaseError("file is not a database")


class FailingCodec(SnapshotCodec):
    def serialize(self, forest):
        raise ValueError("Circular reference detected (depth exceeded)")


def counter_ids():
    counter = itertools.count(1)
    return lambda: f"n{next(counter)}"


@pytest.fixture
def store() -> TreeStore:
    return TreeStore(
        (FolderNode(id="queries", name="Queries"),),
        id_factory=counter_ids(),
    )


def test_add_query_into_folder(store: TreeStore) -> None:
    result = store.add_query("Q1", parent_id="queries")

    assert result.changed and result.ok
    children = store.forest[0].children
    assert len(children) == 1
    assert children[0] == QueryNode(id=result.node_id, name="Q1", text=DEFAULT_QUERY_TEXT)


def test_add_without_parent_appends_to_root(store: TreeStore) -> None:
    store.add_folder("Reports")
    store.add_query("Loose", text="SELECT 1")

    assert [node.name for node in store.forest] == ["Queries", "Reports", "Loose"]
    assert store.forest[2].text == "SELECT 1"


def test_add_with_unknown_parent_falls_back_to_root(store: TreeStore) -> None:
    result = store.add_folder("Orphan", parent_id="missing")

    assert result.changed and result.ok
    assert store.forest[-1].name == "Orphan"


def test_add_under_query_is_rejected(store: TreeStore) -> None:
    query_id = store.add_query("Q1").node_id
    before = store.forest

    result = store.add_folder("Child", parent_id=query_id)

    assert not result.changed
    assert isinstance(result.error, NotAFolderError)
    assert store.forest is before
    with pytest.raises(NotAFolderError):
        result.raise_for_error()


def test_rename_nested_node_copies_only_its_ancestors(store: TreeStore) -> None:
    store.add_folder("Other")
    inner_id = store.add_query("Old", parent_id="queries").node_id
    other = store.forest[1]

    result = store.rename(inner_id, "New")

    assert result.changed
    assert store.forest[0].children[0].name == "New"
    assert store.forest[1] is other


def test_rename_unknown_id_reports_not_found(store: TreeStore) -> None:
    before = store.forest

    result = store.rename("ghost", "Name")

    assert not result.changed
    assert isinstance(result.error, NodeNotFoundError)
    assert store.forest is before


def test_delete_folder_removes_subtree(store: TreeStore) -> None:
    sub_id = store.add_folder("Sub", parent_id="queries").node_id
    store.add_query("Deep", parent_id=sub_id)
    keep_id = store.add_query("Keep", parent_id="queries").node_id

    store.delete_node(sub_id)

    assert collect_ids(store.forest) == ["queries", keep_id]


def test_delete_twice_is_a_silent_no_op(store: TreeStore) -> None:
    query_id = store.add_query("Q").node_id

    first = store.delete_node(query_id)
    second = store.delete_node(query_id)

    assert first.changed
    assert not second.changed
    assert second.error is None


def test_delete_clears_selection_inside_subtree(store: TreeStore) -> None:
    query_id = store.add_query("Q", parent_id="queries").node_id
    store.select_node(query_id)
    assert store.selected_query.id == query_id

    store.delete_node("queries")

    assert store.selected_query is None


def test_select_ignores_folders_and_unknown_ids(store: TreeStore) -> None:
    query_id = store.add_query("Q").node_id
    store.select_node(query_id)

    assert store.select_node("queries").id == query_id
    assert store.select_node("ghost").id == query_id


def test_selected_query_reflects_saved_text(store: TreeStore) -> None:
    query_id = store.add_query("Q").node_id
    store.select_node(query_id)

    store.save_query_text(query_id, "SELECT 2")

    assert store.selected_query.text == "SELECT 2"
    assert store.get_query_text(query_id) == "SELECT 2"


def test_save_chart_config_and_clear(store: TreeStore) -> None:
    query_id = store.add_query("Q").node_id

    store.save_chart_config(query_id, {"type": "line", "xColumn": 0, "yColumns": [1]})
    assert store.find(query_id).chart_config == ChartConfig(x_column=0, y_columns=[1])

    store.save_chart_config(query_id, None)
    assert store.find(query_id).chart_config is None


def test_query_fields_cannot_be_saved_on_folder(store: TreeStore) -> None:
    result = store.save_query_text("queries", "SELECT 1")

    assert isinstance(result.error, NotAQueryError)
    assert store.get_query_text("queries") is None


def test_move_reports_outcome(store: TreeStore) -> None:
    first = store.add_query("A").node_id
    second = store.add_query("B").node_id

    result = store.move(first, second)

    assert result.outcome == MoveOutcome.REORDER
    assert [node.name for node in store.forest] == ["Queries", "B", "A"]


def test_move_into_own_subtree_is_rejected(store: TreeStore) -> None:
    child_id = store.add_folder("G", parent_id="queries").node_id
    before = store.forest

    result = store.move("queries", child_id)

    assert result.outcome == MoveOutcome.REJECTED_CYCLE
    assert isinstance(result.error, CyclicMoveError)
    assert store.forest is before


def test_drag_end_with_target_applies_move(store: TreeStore) -> None:
    query_id = store.add_query("Q").node_id

    assert store.drag_start(query_id).id == query_id
    result = store.drag_end("queries")

    assert result.outcome == MoveOutcome.REORDER
    assert store.active_drag_node is None


def test_drag_end_outside_only_clears(store: TreeStore) -> None:
    first = store.add_folder("F1").node_id
    query_id = store.add_query("Q", parent_id=first).node_id
    store.drag_start(query_id)
    before = store.forest

    result = store.drag_end()

    assert not result.changed
    assert store.active_drag_node is None
    assert store.forest is before


def test_listeners_receive_each_new_forest(store: TreeStore) -> None:
    seen = []
    unsubscribe = store.subscribe(seen.append)

    store.add_folder("One")
    store.rename("ghost", "ignored")
    unsubscribe()
    store.add_folder("Two")

    assert len(seen) == 1
    assert seen[0][-1].name == "One"


def test_every_change_is_persisted() -> None:
    storage = MemoryStorage()
    store = TreeStore(storage=storage, id_factory=counter_ids())

    store.add_folder("F")
    store.rename("ghost", "x")
    store.add_query("Q", parent_id="n1")

    assert len(storage.writes) == 2
    assert json.loads(storage.writes[-1])[0]["children"][0]["name"] == "Q"


def test_persist_failure_keeps_in_memory_change() -> None:
    errors = []
    store = TreeStore(storage=BrokenStorage(), id_factory=counter_ids())
    store.on_persist_error(errors.append)

    result = store.add_folder("F")

    assert result.changed and result.ok
    assert isinstance(result.persist_error, SnapshotPersistError)
    assert store.forest[0].name == "F"
    assert store.last_persist_error is errors[0]


def test_open_seeds_default_library_when_nothing_stored() -> None:
    storage = MemoryStorage()
    store = TreeStore.open(storage)

    assert len(store.forest) == 1
    assert store.forest[0].name == "Queries"
    assert store.forest[0].children == ()
    assert json.loads(storage.writes[0])[0]["id"] == store.forest[0].id


def test_open_falls_back_when_stored_snapshot_is_malformed() -> None:
    storage = MemoryStorage(payload="{broken")
    store = TreeStore.open(storage)
    store.close()

    assert [node.name for node in store.forest] == ["Queries"]
    assert storage.writes == []
    assert storage.backups == ["{broken"]


def test_open_and_close_round_trip_through_sqlite(tmp_path: Path) -> None:
    storage = SnapshotStorage(DatabaseService(tmp_path / "library.db"))
    store = TreeStore.open(storage)
    folder_id = store.forest[0].id
    store.add_query("Saved", parent_id=folder_id)
    store.close()

    reopened = TreeStore.open(SnapshotStorage(DatabaseService(tmp_path / "library.db")))

    assert reopened.forest == store.forest


def test_load_malformed_snapshot_keeps_tree(store: TreeStore) -> None:
    before = store.forest

    result = store.load_snapshot('[{"id": "q", "name": "x", "type": "QUERY"}]')

    assert isinstance(result.error, MalformedSnapshotError)
    assert store.forest is before


def test_export_and_import_library_file(store: TreeStore, tmp_path: Path) -> None:
    store.add_query("Q1", parent_id="queries", text="SELECT 1")
    target = store.export_library(tmp_path)
    assert target.name == "query_library.json"

    other = TreeStore()
    result = other.import_library(target)

    assert result.ok
    assert other.forest == store.forest


def test_random_edits_keep_ids_unique_and_tree_acyclic() -> None:
    rng = random.Random(7)
    store = TreeStore(id_factory=counter_ids())
    for step in range(300):
        all_ids = collect_ids(store.forest)
        action = rng.choice(["folder", "query", "move", "move", "delete"])
        parent = rng.choice(all_ids + [None]) if all_ids else None
        if action == "folder":
            store.add_folder(f"F{step}", parent_id=parent)
        elif action == "query":
            store.add_query(f"Q{step}", parent_id=parent)
        elif action == "move" and len(all_ids) > 1:
            store.move(rng.choice(all_ids), rng.choice(all_ids))
        elif action == "delete" and all_ids and rng.random() < 0.3:
            store.delete_node(rng.choice(all_ids))

        ids = collect_ids(store.forest)
        assert len(ids) == len(set(ids))
        for location in iter_nodes(store.forest):
            node = location.node
            if isinstance(node, FolderNode):
                assert not any(contains(child, node.id) for child in node.children)


def test_invalid_chart_config_is_reported(store: TreeStore) -> None:
    query_id = store.add_query("Q").node_id
    before = store.forest

    result = store.save_chart_config(query_id, {"type": "pie", "xColumn": 0, "yColumns": [0]})

    assert not result.changed
    assert isinstance(result.error, InvalidChartConfigError)
    assert result.error.details["errors"]
    assert store.forest is before


def test_add_past_depth_limit_is_rejected_and_saved_tree_reloads() -> None:
    storage = MemoryStorage()
    store = TreeStore(storage=storage, id_factory=counter_ids())
    parent_id = store.add_folder("L1").node_id
    for level in range(2, MAX_TREE_DEPTH + 1):
        result = store.add_folder(f"L{level}", parent_id=parent_id)
        assert result.ok
        parent_id = result.node_id
    before = store.forest

    result = store.add_query("Too deep", parent_id=parent_id)

    assert isinstance(result.error, TreeTooDeepError)
    assert store.forest is before
    assert SnapshotCodec().deserialize(storage.writes[-1]) == store.forest


def test_failing_listener_does_not_block_persistence() -> None:
    storage = MemoryStorage()
    store = TreeStore(storage=storage, id_factory=counter_ids())
    seen = []

    def explode(forest):
        raise RuntimeError("render failed")

    store.subscribe(explode)
    store.subscribe(seen.append)

    result = store.add_folder("F")

    assert result.changed and result.ok
    assert len(storage.writes) == 1
    assert len(seen) == 1


def test_serialization_failure_is_reported_as_persist_error() -> None:
    store = TreeStore(storage=MemoryStorage(), codec=FailingCodec(), id_factory=counter_ids())

    result = store.add_folder("F")

    assert result.changed and result.ok
    assert isinstance(result.persist_error, SnapshotPersistError)
    assert store.forest[0].name == "F"


def test_open_falls_back_when_storage_cannot_be_read() -> None:
    storage = UnreadableStorage()

    store = TreeStore.open(storage)
    store.close()

    assert [node.name for node in store.forest] == ["Queries"]
    assert storage.writes == []

    store.add_folder("F")
    assert len(storage.writes) == 1


def test_initial_forest_with_duplicate_ids_is_rejected() -> None:
    with pytest.raises(MalformedSnapshotError):
        TreeStore((QueryNode(id="a", name="A", text=""), FolderNode(id="a", name="B")))


def test_load_deeply_nested_json_keeps_tree(store: TreeStore) -> None:
    before = store.forest

    result = store.load_snapshot("[" * 100000 + "]" * 100000)

    assert isinstance(result.error, MalformedSnapshotError)
    assert store.forest is before


def test_import_non_utf8_file_keeps_tree(store: TreeStore, tmp_path: Path) -> None:
    path = tmp_path / "library.json"
    path.write_bytes(b"\xff\xfe[]")
    before = store.forest

    result = store.import_library(path)

    assert isinstance(result.error, MalformedSnapshotError)
    assert store.forest is before
