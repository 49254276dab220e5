"""Interaction controller tests: drag, connect, select, delete, keys."""

import pytest

from metric_canvas.controller import (
    ADD_NODE,
    CONNECT,
    HAND,
    POINTER,
    InteractionController,
    KeyBindings,
)
from metric_canvas.models import Position
from metric_canvas.tiers import DRIVER, NORTH_STAR, SUB_DRIVER


def _pairs(store):
    return [(c.source_id, c.target_id) for c in store.connections]


def _drag(controller, node_id, x, y):
    assert controller.on_drag_start(node_id)
    controller.on_drag(node_id, Position(x=x, y=y))
    return controller.on_drag_stop(node_id)


class TestDrag:

    def test_drag_leaf_up_into_driver_tier(self, chain_canvas):
        controller = InteractionController(chain_canvas)

        metric = _drag(controller, "C", 0, 140)

        assert metric.level == 1
        assert metric.category == "Driver"
        assert chain_canvas.tier_of("C") == DRIVER
        assert chain_canvas.resolve_position("C") == Position(x=0, y=280)
        assert ("A", "C") in _pairs(chain_canvas.store)

    def test_driver_without_target_links_to_north_star(self, chain_canvas):
        controller = InteractionController(chain_canvas)

        controller.on_drag_start("C")
        controller.on_drag("C", Position(x=900, y=140))
        assert controller.drag_target_id is None
        controller.on_drag_stop("C")

        assert chain_canvas.resolve_position("C") == Position(x=900, y=280)
        assert _pairs(chain_canvas.store) == [("A", "C")]

    def test_no_duplicate_north_star_link(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        chain_canvas.store.add_connection("C", "A")

        _drag(controller, "C", 900, 140)

        assert _pairs(chain_canvas.store) == [("C", "A")]

    def test_live_tier_and_target(self, fan_canvas):
        controller = InteractionController(fan_canvas)
        controller.on_drag_start("D")

        assert controller.on_drag("D", Position(x=330, y=560)) == SUB_DRIVER
        assert controller.drag_target_id == "C"
        assert controller.active_tier == SUB_DRIVER

        # Drivers look for the North Star row
        assert controller.on_drag("D", Position(x=150, y=250)) == DRIVER
        assert controller.drag_target_id == "A"

        # Too far from anything in the tier above
        controller.on_drag("D", Position(x=2000, y=560))
        assert controller.drag_target_id is None

    def test_drop_on_target_reparents(self, fan_canvas):
        controller = InteractionController(fan_canvas)
        store = fan_canvas.store
        store.add_connection("B", "D")
        store.add_connection("A", "B")

        _drag(controller, "D", 330, 560)

        assert sorted(_pairs(store)) == [("A", "B"), ("C", "D")]
        # x aligns with the target, y snaps to the tier row
        assert fan_canvas.resolve_position("D") == Position(x=340, y=560)

    def test_drag_stop_commits_every_visible_position(self, fan_canvas):
        controller = InteractionController(fan_canvas)

        _drag(controller, "D", 330, 560)

        assert set(fan_canvas.store.positions) == {"A", "B", "C", "D"}
        assert fan_canvas.store.get_position("A") == Position(x=170, y=0)

    def test_drag_into_north_star_tier_demotes_previous(self, chain_canvas):
        controller = InteractionController(chain_canvas)

        metric = _drag(controller, "B", 0, 10)

        assert metric.is_north_star
        assert chain_canvas.resolve_position("B") == Position(x=0, y=0)
        assert [m.id for m in chain_canvas.metrics if m.is_north_star] == ["B"]
        assert chain_canvas.get_metric("A").level == 1

    def test_positions_not_committed_mid_drag(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        controller.on_drag_start("C")
        controller.on_drag("C", Position(x=500, y=100))

        assert chain_canvas.store.positions == {}
        assert controller.live_position("C") == Position(x=500, y=100)

    def test_escape_aborts_drag(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        chain_canvas.store.select_node("B")
        before = chain_canvas.store.state

        controller.on_drag_start("C")
        controller.on_drag("C", Position(x=500, y=100))
        controller.key_down("Escape")

        assert not controller.is_dragging
        assert chain_canvas.store.state == before
        assert chain_canvas.tier_of("C") == SUB_DRIVER
        assert controller.on_drag_stop("C") is None

    def test_deleting_dragged_node_ends_drag(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        store = chain_canvas.store
        controller.click_node("C")

        controller.on_drag_start("C")
        controller.on_drag("C", Position(x=0, y=560))
        assert controller.drag_target_id == "B"
        controller.key_down("Delete")

        assert not controller.is_dragging
        assert controller.on_drag_stop("C") is None
        assert chain_canvas.get_metric("C") is None
        assert "C" not in store.positions
        assert not any(c.touches("C") for c in store.connections)

    def test_drag_stop_after_metric_removed_elsewhere(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        controller.on_drag_start("C")
        controller.on_drag("C", Position(x=0, y=560))

        chain_canvas.forget_metric("C")

        assert controller.on_drag_stop("C") is None
        assert chain_canvas.store.positions == {}
        assert chain_canvas.store.connections == []

    def test_tier_anchor(self, chain_canvas):
        # A top edge at y=100 sits in the north-star band; its centre does not
        centre = InteractionController(chain_canvas)
        centre.on_drag_start("C")
        top_edge = InteractionController(chain_canvas, tier_anchor=0)
        top_edge.on_drag_start("C")

        assert centre.on_drag("C", Position(x=900, y=100)) == DRIVER
        assert top_edge.on_drag("C", Position(x=900, y=100)) == NORTH_STAR

    def test_hand_tool_does_not_drag(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        controller.set_tool(HAND)
        assert controller.on_drag_start("C") is False
        assert controller.on_drag("C", Position(x=0, y=0)) is None

    def test_drag_unknown_node(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        assert controller.on_drag_start("nope") is False


class TestConnect:

    def test_connect_tool_two_clicks(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        controller.set_tool(CONNECT)

        controller.click_node("A")
        assert controller.pending_source_id == "A"
        controller.click_node("C")

        assert controller.pending_source_id is None
        assert _pairs(chain_canvas.store) == [("A", "C")]
        assert chain_canvas.store.selected_node_ids == []

    def test_self_connection_rejected(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        controller.set_tool(CONNECT)
        controller.click_node("A")
        controller.click_node("A")
        assert chain_canvas.store.connections == []

    def test_handle_drag_connects_with_any_tool(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        assert controller.connect("B", "A") is not None
        assert controller.connect("B", "nope") is None
        assert _pairs(chain_canvas.store) == [("B", "A")]

    def test_escape_abandons_pending_connection(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        controller.set_tool(CONNECT)
        controller.click_node("A")
        controller.cancel()

        assert controller.pending_source_id is None
        assert controller.tool == POINTER
        controller.click_node("C")
        assert chain_canvas.store.connections == []


class TestSelection:

    def test_click_selects_and_notifies(self, chain_canvas):
        seen = []
        chain_canvas.on_metric_select = seen.append
        controller = InteractionController(chain_canvas)

        controller.click_node("B")
        controller.click_node("C")

        assert chain_canvas.store.selected_node_ids == ["C"]
        assert [m.id for m in seen] == ["B", "C"]

    def test_additive_click(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        controller.click_node("A")
        controller.click_node("B", additive=True)
        assert chain_canvas.store.selected_node_ids == ["A", "B"]

    def test_pane_click_clears_and_notifies_none(self, chain_canvas):
        seen = []
        chain_canvas.on_metric_select = seen.append
        controller = InteractionController(chain_canvas)
        controller.click_node("B")

        assert controller.click_pane() is None

        assert not chain_canvas.store.has_selection()
        assert seen[-1] is None

    def test_data_edges_are_not_selectable(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        controller.click_edge("data-edge-A-B")
        assert chain_canvas.store.selected_edge_ids == []

    def test_click_user_edge(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        first = chain_canvas.store.add_connection("A", "C")
        second = chain_canvas.store.add_connection("C", "B")

        controller.click_edge(first.id)
        controller.click_edge(second.id, additive=True)

        assert chain_canvas.store.selected_edge_ids == [first.id, second.id]

    def test_box_select(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        assert controller.box_select(300, 300, -10, -10) == ["A", "B"]
        assert chain_canvas.store.selected_node_ids == ["A", "B"]

    def test_box_select_only_with_pointer(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        controller.set_tool(HAND)
        assert controller.box_select(-10, -10, 300, 300) == []

    def test_escape_clears_selection(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        controller.click_node("B")
        controller.set_tool(CONNECT)

        assert controller.key_down("Escape") == "cancel"

        assert not chain_canvas.store.has_selection()
        assert controller.tool == POINTER


class TestDelete:

    def test_delete_edges_then_nodes(self, chain_canvas):
        deleted = []
        chain_canvas.on_metric_delete = deleted.append
        controller = InteractionController(chain_canvas)
        store = chain_canvas.store
        ab = store.add_connection("A", "B")
        store.add_connection("B", "C")
        store.select_edge(ab.id)
        store.set_selected_nodes(["C"])

        assert controller.key_down("Delete") == "delete"

        assert deleted == ["C"]
        assert chain_canvas.get_metric("C") is None
        assert store.connections == []
        assert not store.has_selection()

    def test_delete_nothing_selected(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        assert controller.delete_selected() is False
        assert len(chain_canvas.metrics) == 3

    def test_backspace_in_text_field_is_ignored(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        controller.click_node("B")
        assert controller.key_down("Backspace", in_text_field=True) is None
        assert chain_canvas.get_metric("B") is not None


class TestToolsAndKeys:

    def test_shortcuts(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        controller.key_down("c")
        assert controller.tool == CONNECT
        controller.key_down("N")
        assert controller.tool == ADD_NODE
        controller.key_down("h")
        assert controller.tool == HAND
        controller.key_down("v")
        assert controller.tool == POINTER
        assert controller.key_down("q") is None

    def test_custom_bindings(self, chain_canvas):
        controller = InteractionController(chain_canvas, KeyBindings(connect=["k"]))
        assert controller.key_down("k") == "connect"
        assert controller.tool == CONNECT
        assert controller.key_down("c") is None

    def test_unknown_tool(self, chain_canvas):
        controller = InteractionController(chain_canvas)
        with pytest.raises(ValueError):
            controller.set_tool("lasso")

    def test_add_node_tool(self, chain_canvas):
        added = []
        chain_canvas.on_metric_add = added.append
        controller = InteractionController(chain_canvas)
        controller.set_tool(ADD_NODE)

        metric = controller.click_pane(Position(x=700, y=300), {"name": "Activation"})

        assert added == [metric]
        assert metric.name == "Activation"
        assert chain_canvas.resolve_position(metric.id) == Position(x=700, y=300)
        assert controller.tool == POINTER

    def test_tier_reclassification_keeps_north_star_unique(self, fan_canvas):
        controller = InteractionController(fan_canvas)
        for node_id, y in [("D", 0), ("B", 0), ("A", 280), ("C", 0)]:
            _drag(controller, node_id, 0, y)
            assert len([m for m in fan_canvas.metrics if m.is_north_star]) == 1
        assert fan_canvas.north_star().id == "C"
        assert fan_canvas.tier_of("A") == DRIVER
        assert fan_canvas.tier_of("D") == DRIVER
