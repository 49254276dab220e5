"""
Tree layout for the driver tree canvas.

Computes a deterministic, non-overlapping position for every metric from
the parent/child structure alone.  User drag overrides are applied later by
the canvas; this module never sees them.

Algorithm:

  1. Build a parent -> children adjacency from the declared relationships
     and from each metric's ``parent_id`` (union, duplicates collapsed,
     first-seen order kept).
  2. Pick the roots: the North Star if there is one, else every metric
     without a parent, else the first metric.
  3. Build each root's tree with a visited set, so cyclic parent
     references simply stop the descent.  Children of collapsed nodes are
     not descended into.
  4. Measure subtree widths bottom-up: a leaf is ``NODE_WIDTH`` wide, an
     internal node is the sum of its children plus gaps, floored at
     ``NODE_WIDTH``.
  5. Place nodes top-down: each node is centred over its children's span,
     each level one ``ROW_HEIGHT`` below its parent.  Sibling roots sit
     side by side separated by a double gap.
  6. Metrics that no root reaches (and that are not hidden under a
     collapsed node) are placed in one extra row below the deepest row,
     left to right, centred on x = 0.

Positions are top-left corners.  Given the same metrics, relationships and
collapsed set the output is identical, and the work is linear in metrics
plus relationships.

Spacing constants:
  - Nodes: 260px wide, 120px tall
  - 80px horizontal gap between siblings, 160px vertical gap between rows
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .models import MetricNode, MetricRelationship


# --- Spacing constants ---

NODE_WIDTH = 260
NODE_HEIGHT = 120
HORIZONTAL_GAP = 80
VERTICAL_GAP = 160
ROW_HEIGHT = NODE_HEIGHT + VERTICAL_GAP

# Space between the trees of sibling roots
ROOT_GAP = HORIZONTAL_GAP * 2


@dataclass
class TreeNode:
    """A metric inside a built tree, with its measured width and centre."""
    metric: MetricNode
    children: list[TreeNode] = field(default_factory=list)
    width: float = NODE_WIDTH
    center_x: float = 0.0
    y: float = 0.0


@dataclass(frozen=True)
class LayoutPosition:
    """Computed top-left position for a node."""
    x: float
    y: float


@dataclass
class TreeLayout:
    """Result of a layout pass.

    Attributes:
        positions:  Computed top-left corner per visible node id.
        edges:      (parent, child) pairs of the drawn tree, in draw order.
        children:   Full adjacency (ignores collapse), for the collapse
                    affordance.
        roots:      Root ids in placement order.
        orphans:    Ids placed in the fallback row.
        hidden:     Ids hidden below a collapsed node.
    """
    positions: dict[str, LayoutPosition] = field(default_factory=dict)
    edges: list[tuple[str, str]] = field(default_factory=list)
    children: dict[str, list[str]] = field(default_factory=dict)
    roots: list[str] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)
    hidden: set[str] = field(default_factory=set)

    def has_children(self, node_id: str) -> bool:
        return bool(self.children.get(node_id))


# ---------------------------------------------------------------------------
# Adjacency and roots
# ---------------------------------------------------------------------------

def build_adjacency(
    metrics: list[MetricNode],
    relationships: Iterable[MetricRelationship],
) -> tuple[dict[str, list[str]], dict[str, str]]:
    """Build (children_map, parent_map) from relationships and parent ids.

    Relationships or parent ids that reference unknown metrics are ignored.
    Self references are ignored.  When a node has several parents the last
    one declared wins in ``parent_map``; ``children_map`` keeps every edge.
    """
    known = {m.id for m in metrics}
    children_map: dict[str, list[str]] = {}
    seen: set[tuple[str, str]] = set()
    parent_map: dict[str, str] = {}

    def _add(parent_id: str, child_id: str) -> None:
        if parent_id not in known or child_id not in known or parent_id == child_id:
            return
        parent_map[child_id] = parent_id
        if (parent_id, child_id) in seen:
            return
        seen.add((parent_id, child_id))
        children_map.setdefault(parent_id, []).append(child_id)

    for rel in relationships:
        _add(rel.source_id, rel.target_id)

    for metric in metrics:
        if metric.parent_id:
            _add(metric.parent_id, metric.id)

    return children_map, parent_map


def find_roots(
    metrics: list[MetricNode],
    parent_map: dict[str, str],
    north_star_id: Optional[str] = None,
) -> list[MetricNode]:
    """Pick the layout roots.  Never empty unless ``metrics`` is."""
    if not metrics:
        return []

    by_id = {m.id: m for m in metrics}
    if north_star_id and north_star_id in by_id:
        return [by_id[north_star_id]]

    for metric in metrics:
        if metric.is_north_star:
            return [metric]

    roots = [m for m in metrics if m.id not in parent_map]
    if not roots:
        roots = [metrics[0]]
    return roots


# ---------------------------------------------------------------------------
# Core layout algorithm
# ---------------------------------------------------------------------------

def _build_tree(
    root_id: str,
    by_id: dict[str, MetricNode],
    children_map: dict[str, list[str]],
    collapsed: set[str],
    visited: set[str],
) -> Optional[TreeNode]:
    """Build the tree under ``root_id`` iteratively.

    ``visited`` is shared across roots so a metric is placed at most once,
    and a cyclic reference just ends the descent.
    """
    if root_id in visited or root_id not in by_id:
        return None

    visited.add(root_id)
    root = TreeNode(metric=by_id[root_id])
    stack = [root]

    while stack:
        node = stack.pop()
        if node.metric.id in collapsed:
            continue
        for child_id in children_map.get(node.metric.id, []):
            if child_id in visited or child_id not in by_id:
                continue
            visited.add(child_id)
            child = TreeNode(metric=by_id[child_id])
            node.children.append(child)
        # Claim every direct child before descending into any of them.
        stack.extend(reversed(node.children))

    return root


def _iter_postorder(root: TreeNode) -> list[TreeNode]:
    order: list[TreeNode] = []
    stack = [(root, False)]
    while stack:
        node, expanded = stack.pop()
        if expanded:
            order.append(node)
            continue
        stack.append((node, True))
        for child in reversed(node.children):
            stack.append((child, False))
    return order


def measure_widths(root: TreeNode) -> float:
    """Set ``width`` on every node of the tree, bottom-up."""
    for node in _iter_postorder(root):
        if not node.children:
            node.width = NODE_WIDTH
            continue
        children_width = sum(c.width for c in node.children)
        children_width += HORIZONTAL_GAP * (len(node.children) - 1)
        node.width = max(NODE_WIDTH, children_width)
    return root.width


def position_tree(root: TreeNode, center_x: float, y: float) -> None:
    """Place every node: centred over its children, one row per level."""
    root.center_x = center_x
    root.y = y
    stack = [root]

    while stack:
        node = stack.pop()
        if not node.children:
            continue

        total = sum(c.width for c in node.children)
        total += HORIZONTAL_GAP * (len(node.children) - 1)

        cursor = node.center_x - total / 2
        for child in node.children:
            child.center_x = cursor + child.width / 2
            child.y = node.y + ROW_HEIGHT
            cursor += child.width + HORIZONTAL_GAP
            stack.append(child)


def _collect_hidden(
    collapsed: set[str],
    children_map: dict[str, list[str]],
    placed: set[str],
) -> set[str]:
    """Everything below a placed, collapsed node that was not placed elsewhere."""
    hidden: set[str] = set()
    stack = [c for node_id in sorted(collapsed) if node_id in placed
             for c in children_map.get(node_id, [])]
    while stack:
        node_id = stack.pop()
        if node_id in placed or node_id in hidden:
            continue
        hidden.add(node_id)
        stack.extend(children_map.get(node_id, []))
    return hidden


def compute_tree_layout(
    metrics: list[MetricNode],
    relationships: Iterable[MetricRelationship] = (),
    collapsed: Optional[Iterable[str]] = None,
    north_star_id: Optional[str] = None,
) -> TreeLayout:
    """
    Core layout algorithm: subtree-width accumulation.

    Steps:
    1. Build adjacency from relationships and parent ids
    2. Pick roots
    3. Build trees (visited set guards against cycles)
    4. Measure widths bottom-up
    5. Position top-down, roots side by side
    6. Orphan row for anything unreachable
    """
    result = TreeLayout()
    if not metrics:
        return result

    collapsed_set = set(collapsed or ())
    by_id: dict[str, MetricNode] = {}
    for metric in metrics:
        by_id.setdefault(metric.id, metric)
    unique_metrics = list(by_id.values())

    # --- Step 1: Adjacency ---
    children_map, parent_map = build_adjacency(unique_metrics, relationships)
    result.children = children_map

    # --- Step 2: Roots ---
    roots = find_roots(unique_metrics, parent_map, north_star_id)

    # --- Steps 3-5: Build, measure and position each root's tree ---
    visited: set[str] = set()
    offset_x = 0.0

    for root_metric in roots:
        tree = _build_tree(root_metric.id, by_id, children_map, collapsed_set, visited)
        if tree is None:
            continue

        width = measure_widths(tree)
        position_tree(tree, offset_x + width / 2, 0.0)
        offset_x += width + ROOT_GAP
        result.roots.append(tree.metric.id)

        stack = [tree]
        while stack:
            node = stack.pop()
            result.positions[node.metric.id] = LayoutPosition(
                x=node.center_x - NODE_WIDTH / 2,
                y=node.y,
            )
            for child in node.children:
                result.edges.append((node.metric.id, child.metric.id))
            stack.extend(reversed(node.children))

    placed = set(result.positions)
    result.hidden = _collect_hidden(collapsed_set, children_map, placed)

    # --- Step 6: Orphan row ---
    orphans = [m for m in unique_metrics if m.id not in placed and m.id not in result.hidden]
    if orphans:
        max_y = max((p.y for p in result.positions.values()), default=0.0)
        max_y = max(max_y, 0.0)
        orphan_y = max_y + ROW_HEIGHT
        total_width = len(orphans) * NODE_WIDTH + (len(orphans) - 1) * HORIZONTAL_GAP
        orphan_x = -total_width / 2

        for metric in orphans:
            result.positions[metric.id] = LayoutPosition(x=orphan_x, y=orphan_y)
            result.orphans.append(metric.id)
            orphan_x += NODE_WIDTH + HORIZONTAL_GAP

    return result
