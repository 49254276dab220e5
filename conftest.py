"""Shared fixtures for the metric-canvas tests."""

import pytest

from metric_canvas.canvas import DriverTreeCanvas
from metric_canvas.models import FrameworkData, MetricNode, MetricRelationship
from metric_canvas.storage import MemoryStorage


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def chain_data():
    """A (North Star) -> B -> C, one metric per row."""
    return FrameworkData(
        title="Chain",
        metrics=[
            MetricNode(id="A", name="Revenue", is_north_star=True, level=0, category="North Star"),
            MetricNode(id="B", name="Active Users", level=1),
            MetricNode(id="C", name="Signups", level=2, category="Sub-Driver"),
        ],
        relationships=[
            MetricRelationship(source_id="A", target_id="B"),
            MetricRelationship(source_id="B", target_id="C"),
        ],
    )


@pytest.fixture
def fan_data():
    """A (North Star) with drivers B and C; D is a sub-driver under B."""
    return FrameworkData(
        title="Fan",
        metrics=[
            MetricNode(id="A", name="Revenue", is_north_star=True, level=0, category="North Star"),
            MetricNode(id="B", name="Acquisition", level=1, parent_id="A"),
            MetricNode(id="C", name="Retention", level=1, parent_id="A"),
            MetricNode(id="D", name="Trial Starts", level=2, parent_id="B", category="Sub-Driver"),
        ],
    )


@pytest.fixture
def chain_canvas(chain_data, storage):
    return DriverTreeCanvas(chain_data, storage=storage)


@pytest.fixture
def fan_canvas(fan_data, storage):
    return DriverTreeCanvas(fan_data, storage=storage)
