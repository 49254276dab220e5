"""Derive a driver tree hierarchy from a flat metric selection.

Collaborators usually hand over a plain list of chosen metrics.  This module
turns that into ``FrameworkData``:

  - the North Star is the explicitly named metric, else the first one
  - the first metric of each category becomes a Driver under the North Star
  - every other metric becomes a Sub-Driver under its category's Driver

Data relationships are then read straight off ``parent_id``.
"""

from __future__ import annotations

from typing import Iterable, Optional

from .models import FrameworkData, MetricNode, MetricRelationship
from .tiers import DRIVER, NORTH_STAR, SUB_DRIVER, level_from_tier


def relationships_from_parents(metrics: Iterable[MetricNode]) -> list[MetricRelationship]:
    """One relationship per metric with a parent."""
    rels = []
    for metric in metrics:
        if not metric.parent_id:
            continue
        rels.append(MetricRelationship(
            source_id=metric.parent_id,
            target_id=metric.id,
            influence_strength="strong" if metric.level == 1 else "medium",
            description=f"Drives {metric.get_label()}",
        ))
    return rels


def build_framework(
    metrics: list[MetricNode],
    north_star_id: Optional[str] = None,
    title: str = "Driver Tree",
) -> FrameworkData:
    """Assign tiers and parents by category grouping.

    The input metrics are not modified; updated copies are returned.
    """
    if not metrics:
        return FrameworkData(title=title)

    if not north_star_id or not any(m.id == north_star_id for m in metrics):
        north_star_id = metrics[0].id
    north_star = next(m for m in metrics if m.id == north_star_id)

    # First metric seen in each category drives that category
    category_driver: dict[str, str] = {}
    for metric in metrics:
        if metric.id == north_star_id:
            continue
        category_driver.setdefault(metric.category, metric.id)
    driver_ids = set(category_driver.values())

    nodes: list[MetricNode] = []
    for metric in metrics:
        if metric.id == north_star_id:
            update = {
                "is_north_star": True,
                "level": level_from_tier(NORTH_STAR),
                "parent_id": None,
            }
        elif metric.id in driver_ids:
            update = {
                "is_north_star": False,
                "level": level_from_tier(DRIVER),
                "parent_id": north_star_id,
                "influence_description": metric.influence_description
                or f"Core driver for {north_star.get_label()}",
            }
        else:
            update = {
                "is_north_star": False,
                "level": level_from_tier(SUB_DRIVER),
                "parent_id": category_driver.get(metric.category, north_star_id),
                "influence_description": metric.influence_description
                or f"Sub-driver contributing to {metric.category} metrics",
            }
        nodes.append(metric.model_copy(update=update))

    return FrameworkData(
        title=title,
        metrics=nodes,
        relationships=relationships_from_parents(nodes),
        north_star_id=north_star_id,
    )
