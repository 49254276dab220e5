"""YAML recipe parser for metric-canvas.

Supports two formats:
1. Full driver tree YAML (``driver_tree`` with metrics and relationships)
2. Simplified recipe format (flat metric list, hierarchy derived by category)
"""

from __future__ import annotations
from pathlib import Path

import yaml

from .framework import build_framework
from .models import FrameworkData, MetricNode


def parse_yaml(yaml_str: str) -> FrameworkData:
    """Parse a YAML string into a FrameworkData model."""
    data = yaml.safe_load(yaml_str)
    if not data:
        raise ValueError("Empty YAML input")
    if not isinstance(data, dict):
        raise ValueError("YAML recipe must be a mapping")

    # Check if it's a full-format driver tree
    if "driver_tree" in data:
        return _parse_full_format(data["driver_tree"] or {})

    # Otherwise, treat as simplified format
    return _parse_simple_format(data)


def parse_file(path: str) -> FrameworkData:
    """Parse a YAML file into a FrameworkData model."""
    content = Path(path).read_text()
    return parse_yaml(content)


def _parse_full_format(data: dict) -> FrameworkData:
    """Parse the full format: metrics and relationships are taken as written.

    Relationships are optional; metrics with a ``parent_id`` still hang off
    their parent in the layout.
    """
    return FrameworkData.model_validate({
        "title": data.get("title", "Driver Tree"),
        "metrics": data.get("metrics") or [],
        "relationships": data.get("relationships") or [],
        "north_star_id": data.get("north_star_id", data.get("northStarId")),
    })


def _parse_simple_format(data: dict) -> FrameworkData:
    """Parse simplified recipe format.

    Example:
        title: Subscription Growth
        north_star: mrr
        metrics:
          - id: mrr
            name: Monthly Recurring Revenue
          - id: signups
            name: Trial Signups
            category: Acquisition
          - id: visits
            name: Landing Page Visits
            category: Acquisition
          - id: churn
            name: Churn Rate
            category: Retention
    """
    metrics = [_parse_metric(m) for m in data.get("metrics") or []]
    return build_framework(
        metrics,
        north_star_id=data.get("north_star"),
        title=data.get("title", "Driver Tree"),
    )


def _parse_metric(data) -> MetricNode:
    """Parse a single metric; a bare string is used as both id and name."""
    if isinstance(data, str):
        return MetricNode(id=data, name=data)
    return MetricNode.model_validate(data)


def framework_to_yaml(framework: FrameworkData) -> str:
    """Serialize a FrameworkData model back to full-format YAML."""
    data = {
        "driver_tree": {
            "title": framework.title,
            "metrics": [],
            "relationships": [],
        }
    }
    if framework.north_star_id:
        data["driver_tree"]["north_star_id"] = framework.north_star_id

    for metric in framework.metrics:
        metric_data = {"id": metric.id, "name": metric.name}
        if metric.category:
            metric_data["category"] = metric.category
        if metric.description:
            metric_data["description"] = metric.description
        if metric.calculation:
            metric_data["calculation"] = metric.calculation
        if metric.is_north_star:
            metric_data["is_north_star"] = True
        metric_data["level"] = metric.level
        if metric.parent_id:
            metric_data["parent_id"] = metric.parent_id
        if metric.influence_description:
            metric_data["influence_description"] = metric.influence_description
        if metric.business_questions:
            metric_data["business_questions"] = list(metric.business_questions)
        if metric.example_events:
            metric_data["example_events"] = list(metric.example_events)
        data["driver_tree"]["metrics"].append(metric_data)

    for rel in framework.relationships:
        rel_data = {
            "source_id": rel.source_id,
            "target_id": rel.target_id,
            "influence_strength": rel.influence_strength,
        }
        if rel.description:
            rel_data["description"] = rel.description
        data["driver_tree"]["relationships"].append(rel_data)

    return yaml.dump(data, default_flow_style=False, sort_keys=False)
