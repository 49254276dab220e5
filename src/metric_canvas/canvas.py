"""
The editable driver tree canvas.

``DriverTreeCanvas`` ties the pieces together:

    FrameworkData ──> metric list + relationships
                          │
                          ├─> compute_tree_layout()   computed positions
                          │
    CanvasStore ──────────┴─> resolve_position()      override-if-present

It owns the metric list (the canvas edits tiers in place), the collapsed
set, and one ``CanvasStore`` per storage key.  The three outward callbacks
fire from here:

    on_metric_select(metric | None)   single-selection changed / cleared
    on_metric_add(metric)             a node was placed with the add tool
    on_metric_delete(metric_id)       once per deleted metric
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from .layout import TreeLayout, compute_tree_layout
from .models import FrameworkData, MetricNode, MetricRelationship, Position
from .storage import CanvasStorage
from .store import DEFAULT_STORAGE_KEY, CanvasStore
from .tiers import (
    DRIVER,
    NORTH_STAR,
    Tier,
    category_for_tier,
    level_from_tier,
    tier_from_level,
)


logger = logging.getLogger(__name__)

SelectCallback = Callable[[Optional[MetricNode]], None]
AddCallback = Callable[[MetricNode], None]
DeleteCallback = Callable[[str], None]


class DriverTreeCanvas:
    """Metric data, collapse state and persisted canvas state for one tree."""

    def __init__(
        self,
        data: Union[FrameworkData, Mapping[str, Any], None] = None,
        storage_key: str = DEFAULT_STORAGE_KEY,
        storage: Optional[CanvasStorage] = None,
        on_metric_select: Optional[SelectCallback] = None,
        on_metric_add: Optional[AddCallback] = None,
        on_metric_delete: Optional[DeleteCallback] = None,
    ):
        self.title = "Driver Tree"
        self._metrics: list[MetricNode] = []
        self.relationships: list[MetricRelationship] = []
        self.collapsed: set[str] = set()
        self.on_metric_select = on_metric_select
        self.on_metric_add = on_metric_add
        self.on_metric_delete = on_metric_delete
        self.store = CanvasStore(storage_key, storage)
        if data is not None:
            self.set_data(data)

    # ------------------------------------------------------------------
    # Input contract
    # ------------------------------------------------------------------

    def set_data(self, data: Union[FrameworkData, Mapping[str, Any]]) -> None:
        """Load metrics and relationships from a collaborator.

        Raw mappings are validated here; nothing past this point sees
        unvalidated metric payloads.  If several metrics claim to be the
        North Star, only the named (or first) one keeps the flag.
        """
        if not isinstance(data, FrameworkData):
            data = FrameworkData.model_validate(data)

        self.title = data.title
        metrics: list[MetricNode] = []
        seen: set[str] = set()
        for metric in data.metrics:
            if metric.id in seen:
                logger.warning(f"Skipping duplicate metric id '{metric.id}'")
                continue
            seen.add(metric.id)
            metrics.append(metric.model_copy(deep=True))

        north_star_id = data.north_star_id if data.north_star_id in seen else None
        if north_star_id is None:
            north_star_id = next((m.id for m in metrics if m.is_north_star), None)
        for i, metric in enumerate(metrics):
            should_be = metric.id == north_star_id
            if metric.is_north_star != should_be:
                update = {"is_north_star": should_be}
                if should_be:
                    update.update(level=0, category=category_for_tier(NORTH_STAR))
                metrics[i] = metric.model_copy(update=update)

        self._metrics = metrics
        self.relationships = list(data.relationships)
        self.collapsed &= seen
        self.store.reconcile(seen)

    def to_framework(self) -> FrameworkData:
        north_star = self.north_star()
        return FrameworkData(
            title=self.title,
            metrics=self.metrics,
            relationships=self.relationships,
            north_star_id=north_star.id if north_star else None,
        )

    # ------------------------------------------------------------------
    # Metric access
    # ------------------------------------------------------------------

    @property
    def metrics(self) -> list[MetricNode]:
        return list(self._metrics)

    def get_metric(self, metric_id: str) -> Optional[MetricNode]:
        for metric in self._metrics:
            if metric.id == metric_id:
                return metric
        return None

    def north_star(self) -> Optional[MetricNode]:
        for metric in self._metrics:
            if metric.is_north_star:
                return metric
        return None

    def _replace(self, metric: MetricNode) -> None:
        for i, existing in enumerate(self._metrics):
            if existing.id == metric.id:
                self._metrics[i] = metric
                return

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def toggle_collapse(self, metric_id: str) -> bool:
        """Collapse or expand a node's subtree.  Returns the new state."""
        if metric_id in self.collapsed:
            self.collapsed.discard(metric_id)
            return False
        if self.get_metric(metric_id) is None:
            return False
        self.collapsed.add(metric_id)
        return True

    def compute_layout(self) -> TreeLayout:
        return compute_tree_layout(self._metrics, self.relationships, self.collapsed)

    def resolve_position(
        self,
        metric_id: str,
        layout: Optional[TreeLayout] = None,
    ) -> Optional[Position]:
        """Saved override if present, else the computed position."""
        override = self.store.get_position(metric_id)
        if override is not None:
            return override
        layout = layout or self.compute_layout()
        computed = layout.positions.get(metric_id)
        if computed is None:
            return None
        return Position(x=computed.x, y=computed.y)

    def visible_positions(self, layout: Optional[TreeLayout] = None) -> dict[str, Position]:
        """Resolved positions of every node currently drawn."""
        layout = layout or self.compute_layout()
        return {
            metric_id: self.resolve_position(metric_id, layout)
            for metric_id in layout.positions
        }

    def visible_node_ids(self, layout: Optional[TreeLayout] = None) -> list[str]:
        layout = layout or self.compute_layout()
        return list(layout.positions)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def reassign_tier(self, metric_id: str, tier: Tier) -> Optional[MetricNode]:
        """Move a metric into ``tier``, rewriting level, category and flag.

        Promoting a metric to North Star demotes the previous holder to a
        Driver in the same update.
        """
        metric = self.get_metric(metric_id)
        if metric is None:
            return None

        is_north_star = tier == NORTH_STAR
        if is_north_star:
            for i, other in enumerate(self._metrics):
                if other.id != metric_id and other.is_north_star:
                    self._metrics[i] = other.model_copy(update={
                        "is_north_star": False,
                        "level": level_from_tier(DRIVER),
                        "category": category_for_tier(DRIVER),
                    })
                    logger.info(f"Demoted '{other.id}' from North Star")

        updated = metric.model_copy(update={
            "is_north_star": is_north_star,
            "level": level_from_tier(tier),
            "category": category_for_tier(tier),
        })
        self._replace(updated)
        if is_north_star and not metric.is_north_star:
            logger.info(f"'{updated.get_label()}' is now the North Star metric")
        return updated

    def add_metric(
        self,
        partial: Union[MetricNode, Mapping[str, Any], None] = None,
        position: Optional[Position] = None,
    ) -> MetricNode:
        """Add a metric from partial data and pin it at ``position``."""
        if isinstance(partial, MetricNode):
            fields = partial.model_dump(exclude_unset=True)
        else:
            fields = dict(partial or {})

        is_north_star = bool(fields.get("is_north_star", fields.get("isNorthStar", False)))
        fields.setdefault("id", f"metric-{uuid.uuid4().hex[:12]}")
        fields.setdefault("name", "New Metric")
        fields.setdefault("category", "North Star" if is_north_star else "Driver")
        fields["level"] = 0 if is_north_star else 1
        metric = MetricNode.model_validate(fields)

        if self.get_metric(metric.id) is not None:
            metric = metric.model_copy(update={"id": f"{metric.id}-{uuid.uuid4().hex[:6]}"})

        self._metrics.append(metric.model_copy(update={"is_north_star": False}))
        self.store.reconcile(m.id for m in self._metrics)
        if is_north_star:
            metric = self.reassign_tier(metric.id, NORTH_STAR)

        if position is not None:
            self.store.update_node_position(metric.id, position.x, position.y)

        logger.info(f"Metric '{metric.get_label()}' added to canvas")
        if self.on_metric_add:
            self.on_metric_add(metric)
        return metric

    def forget_metric(self, metric_id: str) -> None:
        """Drop a metric whose canvas state the store has already removed.

        Used as the store's external-delete callback; fires
        ``on_metric_delete``.
        """
        if self.get_metric(metric_id) is None:
            return
        self._metrics = [m for m in self._metrics if m.id != metric_id]
        self.relationships = [
            r for r in self.relationships
            if r.source_id != metric_id and r.target_id != metric_id
        ]
        self.collapsed.discard(metric_id)
        self.store.reconcile(m.id for m in self._metrics)
        if self.on_metric_delete:
            self.on_metric_delete(metric_id)

    def delete_metrics(self, metric_ids: Iterable[str]) -> list[str]:
        """Remove metrics and everything on the canvas that references them."""
        doomed = [i for i in dict.fromkeys(metric_ids) if self.get_metric(i) is not None]
        if not doomed:
            return []

        self.store.delete_nodes(doomed)
        for metric_id in doomed:
            self.forget_metric(metric_id)
        logger.info(f"Deleted {len(doomed)} metric(s)")
        return doomed

    def delete_metric(self, metric_id: str) -> bool:
        return bool(self.delete_metrics([metric_id]))

    def notify_select(self, metric_id: Optional[str]) -> None:
        if not self.on_metric_select:
            return
        self.on_metric_select(self.get_metric(metric_id) if metric_id else None)

    def tier_of(self, metric_id: str) -> Optional[Tier]:
        metric = self.get_metric(metric_id)
        return tier_from_level(metric.level) if metric else None
