"""
Interaction controller — turns pointer and keyboard input into canvas edits.

The controller is a small state machine over four tools:

    pointer   select, box-select and drag nodes (the default)
    hand      pan only; nodes are not draggable
    connect   click a node, then another, to draw a connection
    add-node  click empty canvas to place a new metric

Escape always returns to ``pointer``.

Everything it changes goes through ``DriverTreeCanvas`` / ``CanvasStore``;
the only state held here is the active tool, the drag in progress (with its
live drag-target hint) and a pending connection source.  A drag writes
nothing until ``on_drag_stop``, so an aborted drag leaves the store as it
was.

Drag protocol
-------------
``on_drag_start``  marks the drag and clears any previous target hint.
``on_drag``        reclassifies the node's tier from its live position and,
                   for drivers and sub-drivers, picks the horizontally
                   closest visible node in the tier above (within
                   ``DRAG_TARGET_THRESHOLD``) as the drag target.
``on_drag_stop``   commits: tier/level/category, snapped position, and the
                   structural connection (re-parent to the drag target, or
                   a default Driver -> North Star link).

Tier decisions are made at a point ``tier_anchor`` below the node's top
edge, by default its vertical centre.  This differs from classifying the
raw top-left y with ``tier_from_y``: a card dropped with its top edge at
y=140 lands in the driver band it mostly covers.  Snapped rows (0 / 280 /
560) keep their centres inside their own bands.  Pass ``tier_anchor=0`` to
classify by the top edge instead.

Deleting the dragged node ends the drag; a later ``on_drag_stop`` for it
commits nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, Field

from .canvas import DriverTreeCanvas
from .layout import NODE_HEIGHT, NODE_WIDTH
from .models import Connection, MetricNode, Position
from .tiers import DRIVER, Tier, snap_y, tier_above, tier_from_y


logger = logging.getLogger(__name__)


# --- Tools ---

POINTER = "pointer"
HAND = "hand"
CONNECT = "connect"
ADD_NODE = "add-node"

TOOLS = (POINTER, HAND, CONNECT, ADD_NODE)

# Max horizontal distance (canvas px) to a node in the tier above for it to
# become the drag target.
DRAG_TARGET_THRESHOLD = 150

# Offset from a node's top edge to the point used for tier classification.
TIER_ANCHOR_OFFSET = NODE_HEIGHT / 2

# Data edges come from the layout and can never be selected.
DATA_EDGE_PREFIX = "data-edge-"


class KeyBindings(BaseModel):
    """Keyboard shortcuts.  Single characters match case-insensitively."""
    pointer: list[str] = Field(default_factory=lambda: ["v"])
    hand: list[str] = Field(default_factory=lambda: ["h"])
    connect: list[str] = Field(default_factory=lambda: ["c"])
    add_node: list[str] = Field(default_factory=lambda: ["n"])
    delete: list[str] = Field(default_factory=lambda: ["Delete", "Backspace"])
    cancel: list[str] = Field(default_factory=lambda: ["Escape"])

    def action_for(self, key: str) -> Optional[str]:
        """Name of the bound action (a field name), or None."""
        for action in ("cancel", "delete", "pointer", "hand", "connect", "add_node"):
            for bound in getattr(self, action):
                if key == bound or (len(key) == 1 and key.lower() == bound.lower()):
                    return action
        return None


@dataclass
class DragSession:
    """A drag in progress."""
    node_id: str
    origin: Position
    current: Position
    tier: Tier
    target_id: Optional[str] = None


def classify(position: Position, anchor: float = TIER_ANCHOR_OFFSET) -> Tier:
    """Tier for a node whose top-left corner is at ``position``."""
    return tier_from_y(position.y + anchor)


class InteractionController:
    """Pointer/keyboard state machine for a ``DriverTreeCanvas``."""

    def __init__(
        self,
        canvas: DriverTreeCanvas,
        bindings: Optional[KeyBindings] = None,
        tier_anchor: float = TIER_ANCHOR_OFFSET,
    ):
        self.canvas = canvas
        self.bindings = bindings or KeyBindings()
        self.tier_anchor = tier_anchor
        self._tool = POINTER
        self._drag: Optional[DragSession] = None
        self._pending_source: Optional[str] = None

    @property
    def store(self):
        return self.canvas.store

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    @property
    def tool(self) -> str:
        return self._tool

    def set_tool(self, tool: str) -> None:
        if tool not in TOOLS:
            valid = ", ".join(TOOLS)
            raise ValueError(f"Unknown tool '{tool}'. Valid tools: {valid}")
        if tool != CONNECT:
            self._pending_source = None
        self._tool = tool

    # ------------------------------------------------------------------
    # Drag
    # ------------------------------------------------------------------

    @property
    def is_dragging(self) -> bool:
        return self._drag is not None

    @property
    def drag_target_id(self) -> Optional[str]:
        return self._drag.target_id if self._drag else None

    @property
    def active_tier(self) -> Optional[Tier]:
        return self._drag.tier if self._drag else None

    def _classify(self, position: Position) -> Tier:
        return classify(position, self.tier_anchor)

    def live_position(self, node_id: str) -> Optional[Position]:
        """Where a node is being dragged right now, if it is."""
        if self._drag and self._drag.node_id == node_id:
            return self._drag.current
        return None

    def _find_drag_target(
        self,
        node_id: str,
        position: Position,
        tier: Tier,
        positions: Mapping[str, Position],
    ) -> Optional[str]:
        above = tier_above(tier)
        if above is None:
            return None

        closest_id = None
        closest_distance = float("inf")
        for other_id, other_pos in positions.items():
            if other_id == node_id or other_pos is None:
                continue
            if self._classify(other_pos) != above:
                continue
            distance = abs(other_pos.x - position.x)
            if distance < DRAG_TARGET_THRESHOLD and distance < closest_distance:
                closest_distance = distance
                closest_id = other_id
        return closest_id

    def on_drag_start(self, node_id: str, position: Optional[Position] = None) -> bool:
        """Begin dragging ``node_id``.  Only the pointer tool drags nodes."""
        if self._tool != POINTER or self.canvas.get_metric(node_id) is None:
            return False

        origin = self.canvas.resolve_position(node_id)
        if origin is None:
            return False
        start = position or origin
        self._drag = DragSession(
            node_id=node_id,
            origin=origin,
            current=start,
            tier=self._classify(start),
        )
        return True

    def on_drag(self, node_id: str, position: Position) -> Optional[Tier]:
        """Track the live position.  Returns the tier under the node."""
        if not self._drag or self._drag.node_id != node_id:
            return None

        tier = self._classify(position)
        self._drag.current = position
        self._drag.tier = tier
        self._drag.target_id = self._find_drag_target(
            node_id, position, tier, self.canvas.visible_positions()
        )
        return tier

    def on_drag_stop(self, node_id: str, position: Optional[Position] = None) -> Optional[MetricNode]:
        """Commit the drag: tier, snapped position, structural connection."""
        if not self._drag or self._drag.node_id != node_id:
            return None

        if self.canvas.get_metric(node_id) is None:
            self._drag = None
            return None

        final = position or self._drag.current
        self.on_drag(node_id, final)
        target_id = self._drag.target_id
        self._drag = None

        # (i) Tier / level / category, demoting any other North Star
        tier = self._classify(final)
        metric = self.canvas.reassign_tier(node_id, tier)

        # (ii) + (iii) Snap and commit every on-screen position once
        positions = self.canvas.visible_positions()
        x = final.x
        if target_id and positions.get(target_id) is not None:
            x = positions[target_id].x
        positions[node_id] = Position(x=x, y=snap_y(tier))
        self.store.update_positions({k: v for k, v in positions.items() if v is not None})

        # (iv) Re-parent under the drag target
        if target_id and target_id != node_id:
            incoming = [c.id for c in self.store.connections_touching(node_id) if c.target_id == node_id]
            self.store.remove_connections(incoming)
            self.store.add_connection(target_id, node_id)
            logger.info(f"Connected '{node_id}' under '{target_id}'")
            return metric

        # (v) Default structure: drivers hang off the North Star
        north_star = self.canvas.north_star()
        if tier == DRIVER and north_star and north_star.id != node_id:
            if not self.store.is_connected(north_star.id, node_id):
                self.store.add_connection(north_star.id, node_id)
                logger.debug(f"Auto-connected '{node_id}' to North Star '{north_star.id}'")
        return metric

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def connect(self, source_id: str, target_id: str) -> Optional[Connection]:
        """A completed handle-to-handle drag.  Works with any tool."""
        if self.canvas.get_metric(source_id) is None or self.canvas.get_metric(target_id) is None:
            return None
        return self.store.add_connection(source_id, target_id)

    def begin_connection(self, source_id: str) -> None:
        self._pending_source = source_id

    def complete_connection(self, target_id: str) -> Optional[Connection]:
        source_id = self._pending_source
        self._pending_source = None
        if source_id is None:
            return None
        return self.connect(source_id, target_id)

    @property
    def pending_source_id(self) -> Optional[str]:
        return self._pending_source

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def click_node(self, node_id: str, additive: bool = False) -> None:
        if self.canvas.get_metric(node_id) is None:
            return

        if self._tool == CONNECT:
            if self._pending_source is None:
                self.begin_connection(node_id)
            else:
                self.complete_connection(node_id)
            return

        self.store.select_node(node_id, additive=additive)
        selected = self.store.selected_node_ids
        if len(selected) == 1:
            self.canvas.notify_select(selected[0])

    def click_edge(self, edge_id: str, additive: bool = False) -> None:
        if edge_id.startswith(DATA_EDGE_PREFIX):
            return
        self.store.select_edge(edge_id, additive=additive)

    def click_pane(
        self,
        position: Optional[Position] = None,
        metric: Union[MetricNode, Mapping[str, Any], None] = None,
    ) -> Optional[MetricNode]:
        """Background click: clears selection; places a metric in add mode."""
        self.store.clear_selection()
        self.canvas.notify_select(None)

        if self._tool != ADD_NODE:
            return None
        added = self.canvas.add_metric(metric, position or Position(x=0, y=0))
        self.set_tool(POINTER)
        return added

    def box_select(self, x1: float, y1: float, x2: float, y2: float) -> list[str]:
        """Select every visible node whose card intersects the box."""
        if self._tool != POINTER:
            return []

        left, right = min(x1, x2), max(x1, x2)
        top, bottom = min(y1, y2), max(y1, y2)
        hits = []
        for node_id, pos in self.canvas.visible_positions().items():
            if pos is None:
                continue
            if pos.x <= right and pos.x + NODE_WIDTH >= left and pos.y <= bottom and pos.y + NODE_HEIGHT >= top:
                hits.append(node_id)

        self.store.clear_selection()
        self.store.set_selected_nodes(hits)
        if len(hits) == 1:
            self.canvas.notify_select(hits[0])
        return hits

    # ------------------------------------------------------------------
    # Delete / cancel / keys
    # ------------------------------------------------------------------

    def delete_selected(self) -> bool:
        """Delete selected edges, then selected nodes.  No confirmation."""
        deleted_edges = self.store.delete_selected_edges()
        deleted_nodes = self.store.delete_selected_nodes(self.canvas.forget_metric)
        if deleted_nodes:
            self.store.clear_selection()
            if self._drag and self._drag.node_id in deleted_nodes:
                self._drag = None
            if self._pending_source in deleted_nodes:
                self._pending_source = None
        deleted = bool(deleted_edges or deleted_nodes)
        if deleted:
            logger.info(f"Deleted {len(deleted_nodes)} node(s) and {len(deleted_edges)} edge(s)")
        return deleted

    def cancel(self) -> None:
        """Escape: abort the gesture in progress, or clear the selection.

        An aborted drag or connection commits nothing.  With no gesture in
        progress the selection is cleared.  Either way the tool returns to
        ``pointer``.
        """
        in_gesture = self._drag is not None or self._pending_source is not None
        self._drag = None
        self._pending_source = None
        if not in_gesture:
            self.store.clear_selection()
        self._tool = POINTER

    def key_down(self, key: str, in_text_field: bool = False) -> Optional[str]:
        """Handle a key press.  Returns the action taken, if any."""
        if in_text_field:
            return None

        action = self.bindings.action_for(key)
        if action is None:
            return None
        if action == "cancel":
            self.cancel()
        elif action == "delete":
            self.delete_selected()
        elif not self.is_dragging:
            self.set_tool(action.replace("_", "-"))
        return action
