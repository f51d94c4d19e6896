import itertools
import json

import pytest
from fastapi.testclient import TestClient

from backend.src.api.main import app
from backend.src.models.query_tree import FolderNode, QueryNode
from backend.src.services.tree_store import TreeStore, get_tree_store

client = TestClient(app)


@pytest.fixture
def store():
    counter = itertools.count(1)
    store = TreeStore(
        (
            FolderNode(
                id="f1",
                name="Diagnostics",
                children=(QueryNode(id="q1", name="Active", text="SELECT 1"),),
            ),
            FolderNode(id="f2", name="Reports"),
        ),
        id_factory=lambda: f"new{next(counter)}",
    )
    app.dependency_overrides[get_tree_store] = lambda: store
    yield store
    app.dependency_overrides = {}


def test_get_library_returns_tree_with_wire_names(store):
    response = client.get("/api/library")

    assert response.status_code == 200
    data = response.json()
    assert [node["id"] for node in data["nodes"]] == ["f1", "f2"]
    assert data["nodes"][0]["children"][0]["query"] == "SELECT 1"
    assert data["selected_query_id"] is None


def test_add_folder_and_query(store):
    folder = client.post("/api/library/folders", json={"name": "Nested", "parent_id": "f2"})
    assert folder.status_code == 201
    assert folder.json()["node_id"] == "new1"

    query = client.post(
        "/api/library/queries",
        json={"name": "Count", "parent_id": "new1", "query": "SELECT count(*) FROM t"},
    )
    assert query.status_code == 201
    assert store.get_query_text("new2") == "SELECT count(*) FROM t"


def test_add_with_empty_name_is_rejected(store):
    response = client.post("/api/library/folders", json={"name": ""})

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_add_under_query_conflicts(store):
    response = client.post("/api/library/folders", json={"name": "X", "parent_id": "q1"})

    assert response.status_code == 409
    assert response.json()["error"] == "not_a_folder"


def test_rename_unknown_node_returns_404(store):
    response = client.patch("/api/library/nodes/ghost", json={"name": "X"})

    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "not_found"
    assert body["detail"] == {"node_id": "ghost"}


def test_delete_unknown_node_is_a_no_op(store):
    response = client.delete("/api/library/nodes/ghost")

    assert response.status_code == 200
    assert response.json()["changed"] is False


def test_move_into_other_folder(store):
    response = client.post("/api/library/move", json={"active_id": "q1", "over_id": "f2"})

    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "reparent"
    assert data["nodes"][1]["children"][0]["id"] == "q1"


def test_move_folder_into_descendant_conflicts(store):
    client.post("/api/library/folders", json={"name": "Inner", "parent_id": "f1"})

    response = client.post("/api/library/move", json={"active_id": "f1", "over_id": "new1"})

    assert response.status_code == 409
    assert response.json()["error"] == "cyclic_move"
    assert [node.id for node in store.forest] == ["f1", "f2"]


def test_save_sql_and_read_it_back(store):
    saved = client.put("/api/library/queries/q1/sql", json={"query": "SELECT 2"})
    assert saved.status_code == 200

    response = client.get("/api/queries/q1/sql")

    assert response.json() == {"id": "q1", "name": "Active", "sql": "SELECT 2"}


def test_read_sql_of_folder_conflicts(store):
    response = client.get("/api/queries/f1/sql")

    assert response.status_code == 409
    assert response.json()["error"] == "not_a_query"


def test_save_chart_uses_camel_case_fields(store):
    response = client.put(
        "/api/library/queries/q1/chart",
        json={"chartConfig": {"type": "bar", "xColumn": 0, "yColumns": [1, 2]}},
    )

    assert response.status_code == 200
    chart = response.json()["nodes"][0]["children"][0]["chartConfig"]
    assert chart["yColumns"] == [1, 2]
    assert store.find("q1").chart_config.y_columns == [1, 2]


def test_invalid_chart_is_rejected(store):
    response = client.put(
        "/api/library/queries/q1/chart",
        json={"chartConfig": {"type": "pie", "xColumn": 0, "yColumns": [1, 2]}},
    )

    assert response.status_code == 400
    assert store.find("q1").chart_config is None


def test_selection_and_drag_flow(store):
    assert client.post("/api/library/selection", json={"node_id": "q1"}).json()["id"] == "q1"
    assert client.get("/api/library").json()["selected_query_id"] == "q1"

    started = client.post("/api/library/drag/start", json={"node_id": "q1"})
    assert started.json()["active_drag_id"] == "q1"

    ended = client.post("/api/library/drag/end", json={"over_id": "f2"})
    assert ended.json()["outcome"] == "reparent"
    assert store.active_drag_node is None

    assert client.delete("/api/library/selection").status_code == 204
    assert store.selected_query is None


def test_export_sends_library_file(store):
    response = client.get("/api/library/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/json")
    assert "query_library.json" in response.headers["content-disposition"]
    assert json.loads(response.text)[0]["id"] == "f1"


def test_import_replaces_library(store):
    payload = [{"id": "x", "name": "Imported", "type": "QUERY", "query": "SELECT 9"}]

    response = client.post("/api/library/import", content=json.dumps(payload))

    assert response.status_code == 200
    assert [node.id for node in store.forest] == ["x"]


def test_malformed_import_keeps_library(store):
    before = store.forest

    response = client.post("/api/library/import", content='{"not": "a list"}')

    assert response.status_code == 400
    assert response.json()["error"] == "malformed_snapshot"
    assert store.forest is before


def test_list_queries(store):
    response = client.get("/api/queries")

    assert response.status_code == 200
    assert response.json()[0]["name"] == "Diagnostics"


def test_non_utf8_import_is_rejected(store):
    before = store.forest

    response = client.post("/api/library/import", content=b"\xff\xfe[]")

    assert response.status_code == 400
    assert response.json()["error"] == "malformed_snapshot"
    assert store.forest is before


def test_deeply_nested_import_is_rejected(store):
    response = client.post("/api/library/import", content="[" * 100000 + "]" * 100000)

    assert response.status_code == 400
    assert response.json()["error"] == "malformed_snapshot"
