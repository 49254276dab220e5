"""Canvas state store tests."""

import json

from metric_canvas.models import CanvasState, Position
from metric_canvas.storage import JsonFileStorage, MemoryStorage
from metric_canvas.store import CanvasStore


def _populated_store(storage=None):
    store = CanvasStore("test-canvas", storage or MemoryStorage())
    store.update_positions({"a": Position(x=10, y=0), "b": Position(x=20, y=280)})
    ab = store.add_connection("a", "b")
    store.add_connection("b", "c", label="feeds")
    store.set_selected_nodes(["a"])
    store.select_edge(ab.id, additive=True)
    return store


class TestPositions:

    def test_update_positions_merges(self):
        store = _populated_store()
        store.update_positions({"b": Position(x=99, y=560), "c": Position(x=5, y=560)})

        assert store.positions == {
            "a": Position(x=10, y=0),
            "b": Position(x=99, y=560),
            "c": Position(x=5, y=560),
        }
        assert json.loads(store.storage.get_item("test-canvas"))["positions"]["c"] == {"x": 5, "y": 560}


class TestConnections:

    def test_self_loop_is_noop(self):
        store = CanvasStore("k")
        assert store.add_connection("a", "a") is None
        assert store.connections == []

    def test_add_connection(self):
        store = CanvasStore("k")
        conn = store.add_connection("a", "b")

        assert conn.id.startswith("connection-a-b-")
        assert conn.created_at is not None
        assert store.connections == [conn]
        assert store.is_connected("b", "a")

    def test_duplicate_is_rejected(self):
        store = CanvasStore("k")
        store.add_connection("a", "b")
        assert store.add_connection("a", "b") is None
        assert len(store.connections) == 1
        # The reverse direction is a different connection
        assert store.add_connection("b", "a") is not None

    def test_remove_connections_is_idempotent(self):
        once = _populated_store()
        twice = _populated_store()
        ids = [c.id for c in once.connections if c.source_id == "a"]
        twice_ids = [c.id for c in twice.connections if c.source_id == "a"]

        once.remove_connections(ids)
        twice.remove_connections(twice_ids)
        twice.remove_connections(twice_ids)

        assert len(once.connections) == len(twice.connections) == 1
        assert once.selected_edge_ids == twice.selected_edge_ids == []
        assert once.positions == twice.positions

    def test_remove_unknown_connection(self):
        store = _populated_store()
        before = store.state
        store.remove_connection("connection-nope")
        assert store.state == before


class TestSelection:

    def test_select_node_replaces_selection(self):
        store = _populated_store()
        store.select_node("b")
        assert store.selected_node_ids == ["b"]
        assert store.selected_edge_ids == []

    def test_additive_select_node_toggles(self):
        store = CanvasStore("k")
        store.select_node("a")
        store.select_node("b", additive=True)
        assert store.selected_node_ids == ["a", "b"]
        store.select_node("a", additive=True)
        assert store.selected_node_ids == ["b"]

    def test_select_edge(self):
        store = CanvasStore("k")
        first = store.add_connection("a", "b")
        second = store.add_connection("b", "c")
        store.select_node("a")

        store.select_edge(first.id)
        assert store.selected_node_ids == []
        assert store.selected_edge_ids == [first.id]

        store.select_edge(second.id, additive=True)
        store.select_edge(second.id, additive=True)
        assert store.selected_edge_ids == [first.id, second.id]

    def test_select_edge_ignores_non_connections(self):
        store = CanvasStore("k")
        store.select_edge("data-edge-a-b")
        assert store.selected_edge_ids == []

    def test_clear_selection(self):
        store = _populated_store()
        assert store.has_selection()
        store.clear_selection()
        assert not store.has_selection()


class TestDeletion:

    def test_delete_selected_nodes_cascades(self):
        store = _populated_store()
        deleted = []
        store.set_selected_nodes(["b"])

        assert store.delete_selected_nodes(deleted.append) == ["b"]
        assert deleted == ["b"]
        assert store.connections == []
        assert "b" not in store.positions
        assert store.selected_node_ids == []
        assert store.selected_edge_ids == []

    def test_delete_with_nothing_selected(self):
        store = CanvasStore("k")
        store.add_connection("a", "b")
        calls = []

        assert store.delete_selected_nodes(calls.append) == []
        assert store.delete_selected_edges() == []
        assert calls == []
        assert len(store.connections) == 1

    def test_delete_selected_edges(self):
        store = _populated_store()
        selected = store.selected_edge_ids

        assert store.delete_selected_edges() == selected
        assert [c.source_id for c in store.connections] == ["b"]
        assert store.selected_node_ids == ["a"]


class TestImportExport:

    def test_round_trip(self):
        store = _populated_store()
        other = CanvasStore("other-canvas")

        assert other.import_state(store.export_state())
        assert other.state == store.state

    def test_export_uses_camel_case_keys(self):
        data = json.loads(_populated_store().export_state())
        assert set(data) == {"positions", "connections", "selectedNodeIds", "selectedEdgeIds"}
        assert data["positions"]["a"] == {"x": 10, "y": 0}
        assert "sourceId" in data["connections"][0]

    def test_import_missing_connections_is_rejected(self):
        store = _populated_store()
        before = store.state
        payload = json.dumps({"positions": {}, "selectedNodeIds": [], "selectedEdgeIds": []})

        assert store.import_state(payload) is False
        assert store.state == before
        assert len(store.connections) == 2

    def test_import_rejects_garbage(self):
        store = _populated_store()
        before = store.state

        assert store.import_state("not json") is False
        assert store.import_state("[1, 2, 3]") is False
        assert store.import_state(json.dumps({
            "positions": {"a": {"x": "left"}},
            "connections": [],
            "selectedNodeIds": [],
            "selectedEdgeIds": [],
        })) is False
        assert store.state == before

    def test_import_accepts_position_list(self):
        store = CanvasStore("k")
        payload = json.dumps({
            "positions": [{"id": "a", "x": 1, "y": 2}],
            "connections": [],
            "selectedNodeIds": [],
            "selectedEdgeIds": [],
        })
        assert store.import_state(payload)
        assert store.get_position("a") == Position(x=1, y=2)

    def test_import_drops_stale_entries(self):
        store = CanvasStore("k", node_ids=["a", "b"])
        payload = _populated_store().export_state()

        assert store.import_state(payload)
        assert set(store.positions) == {"a", "b"}
        assert [(c.source_id, c.target_id) for c in store.connections] == [("a", "b")]

    def test_import_rejects_repeated_connection_ids(self):
        store = _populated_store()
        before = store.state
        payload = json.dumps({
            "positions": {},
            "connections": [
                {"id": "x", "sourceId": "a", "targetId": "a"},
                {"id": "x", "sourceId": "a", "targetId": "b"},
            ],
            "selectedNodeIds": [],
            "selectedEdgeIds": ["x"],
        })

        assert store.import_state(payload) is False
        assert store.state == before

    def test_import_drops_self_loops_and_repeated_pairs(self):
        store = CanvasStore("k")
        payload = json.dumps({
            "positions": {},
            "connections": [
                {"id": "loop", "sourceId": "a", "targetId": "a"},
                {"id": "ab", "sourceId": "a", "targetId": "b"},
                {"id": "ab-again", "sourceId": "a", "targetId": "b"},
            ],
            "selectedNodeIds": [],
            "selectedEdgeIds": ["loop", "ab-again"],
        })

        assert store.import_state(payload)
        assert [c.id for c in store.connections] == ["ab"]
        assert store.selected_edge_ids == []
        assert store.add_connection("a", "b") is None

    def test_import_filters_unknown_selected_edges(self):
        # No known metric ids, so only the payload itself is checked
        store = CanvasStore("k")
        payload = json.dumps({
            "positions": {},
            "connections": [{"id": "ab", "sourceId": "a", "targetId": "b"}],
            "selectedNodeIds": ["a"],
            "selectedEdgeIds": ["ab", "ghost", "ab"],
        })

        assert store.import_state(payload)
        assert store.selected_edge_ids == ["ab"]
        assert store.selected_node_ids == ["a"]

    def test_reset_state(self):
        store = _populated_store()
        store.reset_state()
        assert store.state == CanvasState.empty()


class TestPersistence:

    def test_state_survives_reload_without_selection(self):
        storage = MemoryStorage()
        store = _populated_store(storage)

        reloaded = CanvasStore("test-canvas", storage)
        assert reloaded.positions == store.positions
        assert reloaded.connections == store.connections
        assert reloaded.selected_node_ids == []
        assert reloaded.selected_edge_ids == []

    def test_storage_keys_are_isolated(self):
        storage = MemoryStorage()
        _populated_store(storage)

        other = CanvasStore("another-canvas", storage)
        assert other.state == CanvasState.empty()

    def test_stale_entries_dropped_on_load(self):
        storage = MemoryStorage()
        _populated_store(storage)

        reloaded = CanvasStore("test-canvas", storage, node_ids=["a"])
        assert set(reloaded.positions) == {"a"}
        assert reloaded.connections == []

    def test_unreadable_blob_loads_empty(self):
        storage = MemoryStorage()
        storage.set_item("broken", "{not json")
        store = CanvasStore("broken", storage)
        assert store.state == CanvasState.empty()

    def test_reconcile(self):
        store = _populated_store()
        store.reconcile(["a", "c"])
        assert set(store.positions) == {"a"}
        assert store.connections == []
        assert store.selected_node_ids == ["a"]

    def test_json_file_storage(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "state")
        store = _populated_store(storage)

        path = tmp_path / "state" / "test-canvas.json"
        assert path.exists()
        assert json.loads(path.read_text())["positions"]["b"] == {"x": 20, "y": 280}

        reloaded = CanvasStore("test-canvas", JsonFileStorage(tmp_path / "state"))
        assert reloaded.connections == store.connections

    def test_json_file_storage_sanitises_keys(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        storage.set_item("../escape/key", "{}")
        assert storage.get_item("../escape/key") == "{}"
        assert [p.parent for p in tmp_path.iterdir()] == [tmp_path]
        storage.remove_item("../escape/key")
        storage.remove_item("../escape/key")
        assert storage.get_item("../escape/key") is None
