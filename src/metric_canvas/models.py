"""
Data models for metric-canvas — the driver tree ontology.

A driver tree organises product metrics into three semantic tiers:

    North Star   — the single top-level success metric (level 0)
    └── Driver       — metrics that directly move the North Star (level 1)
        └── Sub-Driver   — metrics that move a Driver (level 2)

Two kinds of edge connect metrics:

    data relationship — derived from ``parent_id`` / category grouping,
                        recomputed from input data every pass, never persisted
    connection        — drawn by the user on the canvas, persisted per
                        storage key

The persisted aggregate is ``CanvasState``.  Its JSON form uses camelCase
keys (``selectedNodeIds``, ``sourceId`` ...) through field aliases so saved
files stay readable by other canvas clients; Python code always uses the
snake_case attribute names.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Metrics (the input contract)
# ---------------------------------------------------------------------------

class MetricNode(_CamelModel):
    """A single metric on the driver tree.

    ``parent_id`` is a hierarchy hint, not ownership: the layout engine
    treats it exactly like a declared relationship from the parent.

    ``level`` and ``category`` follow the tier the node sits in; the
    canvas rewrites both (and ``is_north_star``) whenever a node is dropped
    into a different tier.
    """
    id: str
    name: str = "New Metric"
    description: str = ""
    category: str = "Driver"
    calculation: Optional[str] = None
    is_north_star: bool = Field(default=False, alias="isNorthStar")
    level: int = 1
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    influence_description: Optional[str] = Field(default=None, alias="influenceDescription")
    business_questions: list[str] = Field(default_factory=list, alias="businessQuestions")
    example_events: list[str] = Field(default_factory=list)

    @field_validator("level")
    @classmethod
    def _clamp_level(cls, value: int) -> int:
        return min(max(value, 0), 2)

    def get_label(self) -> str:
        """Return ``name`` if set, otherwise the id."""
        return self.name if self.name else self.id


class MetricRelationship(_CamelModel):
    """A data relationship: ``source_id`` influences ``target_id``."""
    source_id: str = Field(alias="sourceId")
    target_id: str = Field(alias="targetId")
    influence_strength: Literal["strong", "medium", "weak"] = Field(
        default="medium", alias="influenceStrength"
    )
    description: str = ""


class FrameworkData(_CamelModel):
    """Everything the canvas consumes from its collaborators.

    ``north_star_id`` optionally names the North Star explicitly; otherwise
    the metric flagged ``is_north_star`` is used.
    """
    title: str = "Driver Tree"
    metrics: list[MetricNode] = Field(default_factory=list)
    relationships: list[MetricRelationship] = Field(default_factory=list)
    north_star_id: Optional[str] = Field(default=None, alias="northStarId")

    def get_metric(self, metric_id: str) -> Optional[MetricNode]:
        for metric in self.metrics:
            if metric.id == metric_id:
                return metric
        return None


# ---------------------------------------------------------------------------
# Canvas state (the persisted aggregate)
# ---------------------------------------------------------------------------

class Position(BaseModel):
    """Top-left corner of a node in canvas coordinates."""
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class Connection(_CamelModel):
    """A user-drawn edge, independent of the computed hierarchy."""
    id: str
    source_id: str = Field(alias="sourceId")
    target_id: str = Field(alias="targetId")
    label: Optional[str] = None
    created_at: Optional[float] = Field(default=None, alias="createdAt")

    def touches(self, node_id: str) -> bool:
        return self.source_id == node_id or self.target_id == node_id


class CanvasState(_CamelModel):
    """Node position overrides, user connections and the current selection.

    Every key is required when validating serialized input, so a payload
    missing any of them is rejected as a whole.  Repeated connection ids are
    rejected too; self-loops, repeated source/target pairs and selected edge
    ids without a connection are dropped.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    positions: dict[str, Position]
    connections: list[Connection]
    selected_node_ids: list[str] = Field(alias="selectedNodeIds")
    selected_edge_ids: list[str] = Field(alias="selectedEdgeIds")

    @field_validator("positions", mode="before")
    @classmethod
    def _positions_from_list(cls, value):
        # Older exports store positions as [{"id", "x", "y"}, ...]
        if isinstance(value, list):
            converted = {}
            for entry in value:
                if not isinstance(entry, dict) or "id" not in entry:
                    raise ValueError("position entries need an 'id'")
                converted[entry["id"]] = {"x": entry.get("x"), "y": entry.get("y")}
            return converted
        return value

    @model_validator(mode="after")
    def _consistent_connections(self) -> "CanvasState":
        ids = [c.id for c in self.connections]
        if len(ids) != len(set(ids)):
            raise ValueError("connection ids must be unique")
        # Self-loops and repeated source/target pairs are dropped, as
        # add_connection refuses them
        seen: set[tuple[str, str]] = set()
        kept = []
        for conn in self.connections:
            pair = (conn.source_id, conn.target_id)
            if conn.source_id == conn.target_id or pair in seen:
                continue
            seen.add(pair)
            kept.append(conn)
        self.connections = kept
        known = {c.id for c in self.connections}
        self.selected_edge_ids = [i for i in dict.fromkeys(self.selected_edge_ids) if i in known]
        return self

    @classmethod
    def empty(cls) -> "CanvasState":
        return cls(positions={}, connections=[], selected_node_ids=[], selected_edge_ids=[])

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)
