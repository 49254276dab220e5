"""
Render adapter — what the host surface should draw, derived on demand.

``build_scene`` combines the computed layout, the store's overrides and
selection, and the controller's transient drag state into plain drawable
records.  Nothing is owned here; call it after every change.

Passing the previous ``Scene`` keeps unchanged ``RenderNode`` /
``RenderEdge`` objects identical (``is``) across passes, so a host can skip
redrawing them.

Edges come in two kinds:

    data  dashed, never selectable, rebuilt from the layout every pass
    user  solid, selectable, animated for a few seconds after creation
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from .layout import NODE_HEIGHT, NODE_WIDTH
from .tiers import Tier, tier_from_level

if TYPE_CHECKING:
    from .canvas import DriverTreeCanvas
    from .controller import InteractionController


# User edges drawn within this many seconds are animated.
RECENT_EDGE_SECONDS = 5.0


@dataclass(frozen=True)
class RenderNode:
    id: str
    label: str
    category: str
    x: float
    y: float
    tier: Tier
    is_north_star: bool
    has_children: bool
    collapsed: bool
    selected: bool
    is_drag_target: bool
    draggable: bool
    connect_mode: bool
    show_handles: bool
    width: float = NODE_WIDTH
    height: float = NODE_HEIGHT


@dataclass(frozen=True)
class RenderEdge:
    id: str
    source_id: str
    target_id: str
    kind: str  # 'data' or 'user'
    dashed: bool
    selectable: bool
    animated: bool
    selected: bool
    label: Optional[str] = None


@dataclass
class Scene:
    """Everything to draw for one frame."""
    title: str = ""
    nodes: list[RenderNode] = field(default_factory=list)
    edges: list[RenderEdge] = field(default_factory=list)
    active_tier: Optional[Tier] = None
    is_dragging: bool = False

    def get_node(self, node_id: str) -> Optional[RenderNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_edge(self, edge_id: str) -> Optional[RenderEdge]:
        for edge in self.edges:
            if edge.id == edge_id:
                return edge
        return None


def _stable(item, previous: dict):
    """Reuse the previous pass's object when nothing about it changed."""
    old = previous.get(item.id)
    return old if old == item else item


def build_scene(
    canvas: DriverTreeCanvas,
    controller: Optional[InteractionController] = None,
    previous: Optional[Scene] = None,
    now: Optional[float] = None,
) -> Scene:
    """Derive the drawable scene for the canvas' current state."""
    now = time.time() if now is None else now
    layout = canvas.compute_layout()
    store = canvas.store

    selected_nodes = set(store.selected_node_ids)
    selected_edges = set(store.selected_edge_ids)
    tool = controller.tool if controller else "pointer"
    drag_target = controller.drag_target_id if controller else None

    prev_nodes = {n.id: n for n in previous.nodes} if previous else {}
    prev_edges = {e.id: e for e in previous.edges} if previous else {}

    scene = Scene(
        title=canvas.title,
        active_tier=controller.active_tier if controller else None,
        is_dragging=controller.is_dragging if controller else False,
    )

    metrics_by_id = {m.id: m for m in canvas.metrics}

    # --- Nodes ---
    for metric_id in layout.positions:
        metric = metrics_by_id.get(metric_id)
        if metric is None:
            continue
        pos = (controller.live_position(metric_id) if controller else None) \
            or canvas.resolve_position(metric_id, layout)
        selected = metric_id in selected_nodes
        node = RenderNode(
            id=metric_id,
            label=metric.get_label(),
            category=metric.category,
            x=pos.x,
            y=pos.y,
            tier=tier_from_level(metric.level),
            is_north_star=metric.is_north_star,
            has_children=layout.has_children(metric_id),
            collapsed=metric_id in canvas.collapsed,
            selected=selected,
            is_drag_target=metric_id == drag_target,
            draggable=tool == "pointer",
            connect_mode=tool == "connect",
            show_handles=selected or tool == "connect",
        )
        scene.nodes.append(_stable(node, prev_nodes))

    visible = set(layout.positions)

    # --- Data edges ---
    for parent_id, child_id in layout.edges:
        edge = RenderEdge(
            id=f"data-edge-{parent_id}-{child_id}",
            source_id=parent_id,
            target_id=child_id,
            kind="data",
            dashed=True,
            selectable=False,
            animated=False,
            selected=False,
        )
        scene.edges.append(_stable(edge, prev_edges))

    # --- User edges ---
    for conn in store.connections:
        if conn.source_id not in visible or conn.target_id not in visible:
            continue
        recent = conn.created_at is not None and now - conn.created_at < RECENT_EDGE_SECONDS
        edge = RenderEdge(
            id=conn.id,
            source_id=conn.source_id,
            target_id=conn.target_id,
            kind="user",
            dashed=False,
            selectable=True,
            animated=recent,
            selected=conn.id in selected_edges,
            label=conn.label,
        )
        scene.edges.append(_stable(edge, prev_edges))

    return scene
