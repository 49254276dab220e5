"""Scene renderer using Pillow — produces driver tree PNG snapshots."""

from __future__ import annotations

import math
from io import BytesIO
from pathlib import Path
from typing import Optional

from PIL import Image, ImageDraw, ImageFont

from .scene import RenderEdge, RenderNode, Scene
from .themes import ThemePalette, get_theme
from .tiers import TIER_ZONES


# --- Font handling ---

def _load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load a font, falling back to default if none available."""
    font_paths = [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
        "/usr/share/fonts/TTF/DejaVuSans.ttf",
    ]
    for fp in font_paths:
        if Path(fp).exists():
            return ImageFont.truetype(fp, size)
    return ImageFont.load_default()


def _load_bold_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load a bold font, falling back to regular."""
    font_paths = [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSansBold.ttf",
        "/usr/share/fonts/TTF/DejaVuSans-Bold.ttf",
    ]
    for fp in font_paths:
        if Path(fp).exists():
            return ImageFont.truetype(fp, size)
    return _load_font(size)


# --- Color helpers ---

def _hex_to_rgb(hex_color: str) -> tuple[int, int, int]:
    """Convert hex color to RGB tuple. Supports both 3-char and 6-char hex."""
    hex_color = hex_color.lstrip("#")
    if len(hex_color) == 3:
        hex_color = hex_color[0]*2 + hex_color[1]*2 + hex_color[2]*2
    return tuple(int(hex_color[i:i+2], 16) for i in (0, 2, 4))


def _hex_to_rgba(hex_color: str, alpha: int = 255) -> tuple[int, int, int, int]:
    r, g, b = _hex_to_rgb(hex_color)
    return (r, g, b, alpha)


def _darken(hex_color: str, factor: float = 0.6) -> str:
    r, g, b = _hex_to_rgb(hex_color)
    return f"#{int(r * factor):02x}{int(g * factor):02x}{int(b * factor):02x}"


# --- Drawing primitives ---

def _draw_arrow(
    draw: ImageDraw.ImageDraw,
    start: tuple[float, float],
    end: tuple[float, float],
    color: str,
    arrow_size: int = 10,
):
    """Draw a filled arrowhead at ``end`` pointing away from ``start``."""
    dx = end[0] - start[0]
    dy = end[1] - start[1]
    length = math.sqrt(dx * dx + dy * dy)
    if length == 0:
        return

    udx = dx / length
    udy = dy / length

    ax = end[0] - arrow_size * udx + (arrow_size / 2) * udy
    ay = end[1] - arrow_size * udy - (arrow_size / 2) * udx
    bx = end[0] - arrow_size * udx - (arrow_size / 2) * udy
    by = end[1] - arrow_size * udy + (arrow_size / 2) * udx

    draw.polygon([(end[0], end[1]), (ax, ay), (bx, by)], fill=color)


def _bezier_points(
    start: tuple[float, float],
    end: tuple[float, float],
    min_offset: float,
    steps: int = 30,
) -> list[tuple[float, float]]:
    """Sample a vertical S-curve from ``start`` (bottom port) to ``end`` (top port)."""
    sx, sy = start
    ex, ey = end
    cp_offset = max(abs(ey - sy) * 0.4, min_offset)
    cp1x, cp1y = sx, sy + (cp_offset if ey > sy else -cp_offset)
    cp2x, cp2y = ex, ey - (cp_offset if ey > sy else -cp_offset)

    points = []
    for i in range(steps + 1):
        t = i / steps
        x = (1-t)**3 * sx + 3*(1-t)**2*t * cp1x + 3*(1-t)*t**2 * cp2x + t**3 * ex
        y = (1-t)**3 * sy + 3*(1-t)**2*t * cp1y + 3*(1-t)*t**2 * cp2y + t**3 * ey
        points.append((x, y))
    return points


def _truncate(text: str, font, max_width: float) -> str:
    """Shorten ``text`` with an ellipsis until it fits ``max_width`` pixels."""
    def width(s: str) -> float:
        bbox = font.getbbox(s)
        return bbox[2] - bbox[0]

    if width(text) <= max_width:
        return text
    while text and width(text + "...") > max_width:
        text = text[:-1]
    return text + "..."


# --- Main renderer ---

class TreeRenderer:
    """Renders a ``Scene`` to a PNG image."""

    # Layout constants
    PADDING = 60
    TITLE_SPACE = 50
    NODE_PADDING = 18
    NODE_TOP_BAR = 6
    NODE_LABEL_GAP = 14
    NODE_RADIUS = 12
    DASH_LENGTH = 8

    def __init__(self, scale: float = 1.0, theme: str = "dark"):
        self.scale = scale
        self.font_label = _load_bold_font(int(18 * scale))
        self.font_body = _load_font(int(14 * scale))
        self.font_title = _load_bold_font(int(26 * scale))
        self.font_small = _load_font(int(12 * scale))
        self.theme: ThemePalette = get_theme(theme)

    def render(self, scene: Scene, output_path: Optional[str] = None) -> bytes:
        """Render the scene to PNG bytes. Optionally save to file."""
        bounds = self._calculate_bounds(scene)
        img_width = int(bounds["width"] * self.scale)
        img_height = int(bounds["height"] * self.scale)

        img = Image.new("RGBA", (img_width, img_height), _hex_to_rgba(self.theme.background))
        draw = ImageDraw.Draw(img, "RGBA")

        ox = -bounds["min_x"]
        oy = -bounds["min_y"]

        self._draw_title(draw, scene.title, img_width)
        self._draw_tier_zones(draw, scene, bounds, oy, img_width)

        # Edges behind nodes, data edges behind user edges
        nodes_by_id = {n.id: n for n in scene.nodes}
        for edge in sorted(scene.edges, key=lambda e: (e.kind != "data", e.selected)):
            source = nodes_by_id.get(edge.source_id)
            target = nodes_by_id.get(edge.target_id)
            if source and target:
                self._draw_edge(draw, edge, source, target, ox, oy)

        for node in scene.nodes:
            self._draw_node(draw, node, ox, oy)

        buf = BytesIO()
        img.save(buf, format="PNG", optimize=True)
        png_bytes = buf.getvalue()

        if output_path:
            Path(output_path).write_bytes(png_bytes)

        return png_bytes

    def _calculate_bounds(self, scene: Scene) -> dict:
        """Bounding box of all nodes plus padding and title space."""
        if not scene.nodes:
            return {"min_x": -200, "min_y": -150, "width": 400, "height": 300}

        min_x = min(n.x for n in scene.nodes) - self.PADDING
        min_y = min(n.y for n in scene.nodes) - self.PADDING - self.TITLE_SPACE
        max_x = max(n.x + n.width for n in scene.nodes) + self.PADDING
        max_y = max(n.y + n.height for n in scene.nodes) + self.PADDING

        return {
            "min_x": min_x,
            "min_y": min_y,
            "width": max_x - min_x,
            "height": max_y - min_y,
        }

    def _draw_title(self, draw: ImageDraw.ImageDraw, title: str, img_width: int):
        """Draw the scene title centered at the top."""
        if not title:
            return
        bbox = self.font_title.getbbox(title)
        tw = bbox[2] - bbox[0]
        x = (img_width - tw) / 2
        draw.text((x, 15 * self.scale), title, fill=self.theme.title_color, font=self.font_title)

    def _draw_tier_zones(
        self,
        draw: ImageDraw.ImageDraw,
        scene: Scene,
        bounds: dict,
        oy: float,
        img_width: int,
    ):
        """Draw the tier bands; the active band is filled while dragging."""
        top = bounds["min_y"] + self.TITLE_SPACE
        bottom = bounds["min_y"] + bounds["height"]

        for zone in TIER_ZONES:
            y1 = max(zone.y_start, top)
            y2 = min(zone.y_end, bottom)
            if y1 >= y2:
                continue
            py1 = (y1 + oy) * self.scale
            py2 = (y2 + oy) * self.scale

            if scene.is_dragging and scene.active_tier == zone.tier:
                draw.rectangle(
                    [0, py1, img_width, py2],
                    fill=_hex_to_rgba(self.theme.accent_for(zone.tier), 40),
                )
            elif scene.is_dragging:
                draw.rectangle(
                    [0, py1, img_width, py2],
                    fill=_hex_to_rgba(self.theme.zone_fill, self.theme.zone_fill_alpha),
                )

            if math.isfinite(zone.y_end) and zone.y_end <= bottom:
                self._draw_dashed_polyline(
                    draw, [(0, py2), (img_width, py2)], self.theme.zone_border, width=1,
                )

            draw.text(
                (14 * self.scale, py1 + 8 * self.scale),
                zone.label,
                fill=self.theme.zone_label,
                font=self.font_small,
            )

    def _draw_dashed_polyline(
        self,
        draw: ImageDraw.ImageDraw,
        points: list[tuple[float, float]],
        color: str,
        width: int = 2,
    ):
        """Draw a polyline as alternating dashes and gaps."""
        dash = self.DASH_LENGTH * self.scale
        drawing = True
        remaining = dash

        for (x1, y1), (x2, y2) in zip(points, points[1:]):
            seg_len = math.hypot(x2 - x1, y2 - y1)
            pos = 0.0
            while pos < seg_len:
                step = min(remaining, seg_len - pos)
                t1 = pos / seg_len
                t2 = (pos + step) / seg_len
                if drawing:
                    draw.line(
                        [(x1 + (x2 - x1) * t1, y1 + (y2 - y1) * t1),
                         (x1 + (x2 - x1) * t2, y1 + (y2 - y1) * t2)],
                        fill=color,
                        width=width,
                    )
                pos += step
                remaining -= step
                if remaining <= 0:
                    drawing = not drawing
                    remaining = dash

    def _draw_edge(
        self,
        draw: ImageDraw.ImageDraw,
        edge: RenderEdge,
        source: RenderNode,
        target: RenderNode,
        ox: float,
        oy: float,
    ):
        """Bottom port of the source to the top port of the target."""
        s = self.scale
        start = ((source.x + source.width / 2 + ox) * s, (source.y + source.height + oy) * s)
        end = ((target.x + target.width / 2 + ox) * s, (target.y + oy) * s)
        points = _bezier_points(start, end, min_offset=40 * s)

        if edge.kind == "data":
            color = self.theme.data_edge
            width = max(1, int(1.5 * s))
            self._draw_dashed_polyline(draw, points, color, width=width)
            arrow = int(12 * s)
        else:
            color = self.theme.selection_ring if edge.selected else self.theme.user_edge
            width = max(1, int((4 if edge.selected else 2) * s))
            for i in range(len(points) - 1):
                draw.line([points[i], points[i + 1]], fill=color, width=width)
            arrow = int(16 * s)

        _draw_arrow(draw, points[-2], points[-1], color=color, arrow_size=arrow)

        if edge.label:
            mx, my = points[len(points) // 2]
            draw.text((mx + 6 * s, my), edge.label, fill=color, font=self.font_small)

    def _draw_node(self, draw: ImageDraw.ImageDraw, node: RenderNode, ox: float, oy: float):
        """Draw a single metric card."""
        s = self.scale
        accent = self.theme.accent_for(node.tier)

        x = (node.x + ox) * s
        y = (node.y + oy) * s
        w = node.width * s
        h = node.height * s
        radius = int(self.NODE_RADIUS * s)

        # Highlight rings sit just outside the card
        ring = None
        if node.is_drag_target:
            ring = self.theme.drag_target
        elif node.selected:
            ring = self.theme.selection_ring
        if ring:
            gap = int(5 * s)
            draw.rounded_rectangle(
                [x - gap, y - gap, x + w + gap, y + h + gap],
                radius=radius + gap,
                outline=ring,
                width=max(1, int(3 * s)),
            )

        draw.rounded_rectangle(
            [x, y, x + w, y + h],
            radius=radius,
            fill=self.theme.node_fill,
            outline=accent,
            width=max(1, int(2 * s)),
        )

        # Tier indicator bar at top
        bar_height = int(self.NODE_TOP_BAR * s)
        draw.rounded_rectangle(
            [x + 2, y + 2, x + w - 2, y + bar_height + 2],
            radius=radius,
            fill=accent,
        )

        pad = int(self.NODE_PADDING * s)
        text_width = w - 2 * pad
        label_y = y + bar_height + int(self.NODE_LABEL_GAP * s)
        draw.text(
            (x + pad, label_y),
            _truncate(node.label, self.font_label, text_width),
            fill=self.theme.node_label,
            font=self.font_label,
        )
        draw.text(
            (x + pad, label_y + int(28 * s)),
            _truncate(node.category, self.font_body, text_width),
            fill=self.theme.body_text_color,
            font=self.font_body,
        )

        # Tier badge in bottom-right
        badge_text = "North Star" if node.is_north_star else node.tier
        if node.collapsed:
            badge_text += " (+)"
        bbox = self.font_small.getbbox(badge_text)
        badge_w = bbox[2] - bbox[0] + 12
        badge_h = bbox[3] - bbox[1] + 6
        badge_x = x + w - badge_w - int(10 * s)
        badge_y = y + h - badge_h - int(10 * s)
        draw.rounded_rectangle(
            [badge_x, badge_y, badge_x + badge_w, badge_y + badge_h],
            radius=4,
            fill=_darken(accent, 0.3),
        )
        draw.text((badge_x + 6, badge_y + 2), badge_text, fill=accent, font=self.font_small)
