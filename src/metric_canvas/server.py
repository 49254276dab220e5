"""metric-canvas server — MCP tools for building and editing driver trees."""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .canvas import DriverTreeCanvas
from .controller import InteractionController
from .framework import build_framework
from .models import FrameworkData, MetricNode, Position
from .parser import framework_to_yaml, parse_yaml
from .renderer import TreeRenderer
from .scene import build_scene
from .storage import JsonFileStorage, MemoryStorage
from .store import CanvasStore


logger = logging.getLogger(__name__)

# --- Constants ---
OUTPUT_DIR = Path(
    os.environ.get("METRIC_CANVAS_OUTPUT_DIR", Path.home() / ".metric-canvas" / "output")
)

server = Server("metric-canvas")


def _ensure_output_dir():
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)


_YAML_RECIPE_HELP = (
    "YAML string defining the driver tree. Simplified format example:\n"
    "title: Subscription Growth\n"
    "north_star: mrr\n"
    "metrics:\n"
    "  - id: mrr\n"
    "    name: Monthly Recurring Revenue\n"
    "  - id: signups\n"
    "    name: Trial Signups\n"
    "    category: Acquisition\n"
    "\n"
    "The first metric of each category becomes a Driver; the rest become "
    "Sub-Drivers under it. The full format nests title, metrics and "
    "relationships under a 'driver_tree' key."
)

_STORAGE_KEY_HELP = (
    "Storage key of the persisted canvas (positions and user connections). "
    "Different keys are fully independent canvases."
)


# --- Tool definitions ---

@server.list_tools()
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="render_driver_tree",
            description=(
                "Render a driver tree from a YAML recipe string. "
                "Saved positions and user connections are applied when a "
                "storage_key is given. Returns the path to the rendered PNG file."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "yaml_recipe": {"type": "string", "description": _YAML_RECIPE_HELP},
                    "storage_key": {"type": "string", "description": _STORAGE_KEY_HELP},
                    "scale": {
                        "type": "number",
                        "description": "Render scale factor (default 2.0 for crisp, legible output)",
                        "default": 2.0,
                    },
                    "theme": {
                        "type": "string",
                        "enum": ["dark", "light"],
                        "default": "dark",
                    },
                    "filename": {
                        "type": "string",
                        "description": "Output filename (without extension). Default: auto-generated UUID.",
                    },
                },
                "required": ["yaml_recipe"],
            },
        ),
        Tool(
            name="create_driver_tree",
            description=(
                "Create a driver tree from a flat list of metrics. The hierarchy is "
                "derived by category. Returns the path to the rendered PNG and the "
                "generated YAML recipe."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Title for the driver tree."},
                    "north_star": {
                        "type": "string",
                        "description": "Id of the North Star metric (defaults to the first metric).",
                    },
                    "metrics": {
                        "type": "array",
                        "description": "Metrics to place on the tree.",
                        "items": {
                            "type": "object",
                            "properties": {
                                "id": {"type": "string", "description": "Unique metric identifier"},
                                "name": {"type": "string", "description": "Display name"},
                                "category": {"type": "string", "description": "Grouping category"},
                                "description": {"type": "string"},
                            },
                            "required": ["id", "name"],
                        },
                    },
                    "scale": {
                        "type": "number",
                        "description": "Render scale factor (default 2.0)",
                        "default": 2.0,
                    },
                    "theme": {"type": "string", "enum": ["dark", "light"], "default": "dark"},
                },
                "required": ["title", "metrics"],
            },
        ),
        Tool(
            name="move_metric",
            description=(
                "Drag a metric to a new canvas position as a user would. The metric "
                "takes the tier it is dropped into, snaps to that tier's row and is "
                "connected under the nearest metric in the tier above. Returns the "
                "updated YAML recipe and canvas state."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "yaml_recipe": {"type": "string", "description": _YAML_RECIPE_HELP},
                    "storage_key": {"type": "string", "description": _STORAGE_KEY_HELP},
                    "metric_id": {"type": "string"},
                    "x": {"type": "number", "description": "Drop x (card top-left)."},
                    "y": {"type": "number", "description": "Drop y (card top-left)."},
                },
                "required": ["yaml_recipe", "storage_key", "metric_id", "x", "y"],
            },
        ),
        Tool(
            name="connect_metrics",
            description="Draw a user connection between two metrics on a persisted canvas.",
            inputSchema={
                "type": "object",
                "properties": {
                    "yaml_recipe": {"type": "string", "description": _YAML_RECIPE_HELP},
                    "storage_key": {"type": "string", "description": _STORAGE_KEY_HELP},
                    "source_id": {"type": "string"},
                    "target_id": {"type": "string"},
                    "label": {"type": "string"},
                },
                "required": ["yaml_recipe", "storage_key", "source_id", "target_id"],
            },
        ),
        Tool(
            name="export_canvas_state",
            description="Return the persisted canvas state (positions and connections) as JSON.",
            inputSchema={
                "type": "object",
                "properties": {
                    "storage_key": {"type": "string", "description": _STORAGE_KEY_HELP},
                },
                "required": ["storage_key"],
            },
        ),
        Tool(
            name="import_canvas_state",
            description=(
                "Replace the persisted canvas state with a JSON export. Malformed "
                "input is rejected and the existing state is kept."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "storage_key": {"type": "string", "description": _STORAGE_KEY_HELP},
                    "state_json": {"type": "string"},
                },
                "required": ["storage_key", "state_json"],
            },
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    handlers = {
        "render_driver_tree": _render_driver_tree,
        "create_driver_tree": _create_driver_tree,
        "move_metric": _move_metric,
        "connect_metrics": _connect_metrics,
        "export_canvas_state": _export_canvas_state,
        "import_canvas_state": _import_canvas_state,
    }
    handler = handlers.get(name)
    if handler is None:
        return [TextContent(type="text", text=f"Unknown tool: {name}")]
    try:
        return await handler(arguments)
    except Exception as e:
        logger.exception(f"Tool '{name}' failed")
        return [TextContent(type="text", text=f"{name} failed: {e}")]


def _open_canvas(framework: FrameworkData, storage_key: Optional[str]) -> DriverTreeCanvas:
    """A canvas over ``framework``, persisted on disk when a key is given."""
    if storage_key:
        return DriverTreeCanvas(framework, storage_key=storage_key, storage=JsonFileStorage())
    return DriverTreeCanvas(framework, storage=MemoryStorage())


def _render(canvas: DriverTreeCanvas, filename: str, scale: float, theme: str) -> str:
    _ensure_output_dir()
    output_path = str(OUTPUT_DIR / f"{filename}.png")
    renderer = TreeRenderer(scale=scale, theme=theme)
    renderer.render(build_scene(canvas), output_path=output_path)
    return output_path


def _json_result(payload: dict) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload))]


async def _render_driver_tree(args: dict) -> list[TextContent]:
    """Render a YAML recipe to PNG."""
    try:
        framework = parse_yaml(args["yaml_recipe"])
    except Exception as e:
        return [TextContent(type="text", text=f"Failed to parse YAML recipe: {e}")]

    canvas = _open_canvas(framework, args.get("storage_key"))
    filename = args.get("filename", str(uuid.uuid4())[:8])
    output_path = _render(canvas, filename, args.get("scale", 2.0), args.get("theme", "dark"))

    return _json_result({
        "status": "success",
        "path": output_path,
        "title": canvas.title,
        "metrics": len(canvas.metrics),
        "relationships": len(canvas.relationships),
        "connections": len(canvas.store.connections),
    })


async def _create_driver_tree(args: dict) -> list[TextContent]:
    """Create a driver tree from a flat metric list and render it."""
    title = args["title"]
    metrics = [MetricNode.model_validate(m) for m in args["metrics"]]
    framework = build_framework(metrics, north_star_id=args.get("north_star"), title=title)

    canvas = _open_canvas(framework, None)
    filename = title.lower().replace(" ", "-")[:30] + "-" + str(uuid.uuid4())[:4]
    output_path = _render(canvas, filename, args.get("scale", 2.0), args.get("theme", "dark"))

    # Also save the YAML recipe
    yaml_path = str(OUTPUT_DIR / f"{filename}.yaml")
    Path(yaml_path).write_text(framework_to_yaml(framework))

    return _json_result({
        "status": "success",
        "png_path": output_path,
        "yaml_path": yaml_path,
        "title": title,
        "north_star": framework.north_star_id,
        "metrics": len(framework.metrics),
        "relationships": len(framework.relationships),
    })


async def _move_metric(args: dict) -> list[TextContent]:
    """Replay a drag gesture against a persisted canvas."""
    canvas = _open_canvas(parse_yaml(args["yaml_recipe"]), args["storage_key"])
    controller = InteractionController(canvas)
    metric_id = args["metric_id"]
    drop = Position(x=float(args["x"]), y=float(args["y"]))

    if not controller.on_drag_start(metric_id):
        return [TextContent(type="text", text=f"Metric not found: {metric_id}")]
    controller.on_drag(metric_id, drop)
    metric = controller.on_drag_stop(metric_id, drop)

    return _json_result({
        "status": "success",
        "metric_id": metric_id,
        "tier": canvas.tier_of(metric_id),
        "category": metric.category if metric else None,
        "position": canvas.resolve_position(metric_id).model_dump(),
        "yaml_recipe": framework_to_yaml(canvas.to_framework()),
        "canvas_state": json.loads(canvas.store.export_state()),
    })


async def _connect_metrics(args: dict) -> list[TextContent]:
    canvas = _open_canvas(parse_yaml(args["yaml_recipe"]), args["storage_key"])
    source_id = args["source_id"]
    target_id = args["target_id"]
    for metric_id in (source_id, target_id):
        if canvas.get_metric(metric_id) is None:
            return [TextContent(type="text", text=f"Metric not found: {metric_id}")]

    connection = canvas.store.add_connection(source_id, target_id, label=args.get("label"))
    return _json_result({
        "status": "success" if connection else "unchanged",
        "connection_id": connection.id if connection else None,
        "connections": len(canvas.store.connections),
    })


async def _export_canvas_state(args: dict) -> list[TextContent]:
    storage = JsonFileStorage()
    raw = storage.get_item(args["storage_key"])
    if raw is None:
        return [TextContent(type="text", text=f"No saved canvas for key: {args['storage_key']}")]
    return [TextContent(type="text", text=raw)]


async def _import_canvas_state(args: dict) -> list[TextContent]:
    store = CanvasStore(args["storage_key"], JsonFileStorage())
    imported = store.import_state(args["state_json"])
    return _json_result({
        "status": "success" if imported else "rejected",
        "storage_key": args["storage_key"],
    })


def main():
    """Entry point for the MCP server."""
    import asyncio
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    asyncio.run(_run())


async def _run():
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


if __name__ == "__main__":
    main()
