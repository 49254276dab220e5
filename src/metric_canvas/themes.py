"""
Colour palettes for driver tree pictures.

A palette is split in two: the neutral surface colours (background, text,
tier bands, cards, edges) and ``TierAccents``, the one colour per tier that
tints a card's stripe and its band.  Both palettes use the Tailwind slate
greys with amber / sky / emerald accents.
"""

from __future__ import annotations
from dataclasses import dataclass

from .tiers import DRIVER, NORTH_STAR, Tier


@dataclass(frozen=True)
class TierAccents:
    north_star: str
    driver: str
    sub_driver: str

    def for_tier(self, tier: Tier) -> str:
        if tier == NORTH_STAR:
            return self.north_star
        if tier == DRIVER:
            return self.driver
        return self.sub_driver


@dataclass(frozen=True)
class ThemePalette:
    """Surface colours plus per-tier accents."""

    background: str
    title_color: str
    body_text_color: str

    # Tier bands behind the cards
    zone_fill: str
    zone_fill_alpha: int
    zone_border: str
    zone_label: str

    node_fill: str
    node_label: str

    data_edge: str
    user_edge: str
    selection_ring: str
    drag_target: str

    accents: TierAccents

    def accent_for(self, tier: Tier) -> str:
        return self.accents.for_tier(tier)


SLATE_DARK = ThemePalette(
    background="#0f172a",
    title_color="#f1f5f9",
    body_text_color="#94a3b8",
    zone_fill="#1e293b",
    zone_fill_alpha=110,
    zone_border="#334155",
    zone_label="#64748b",
    node_fill="#1e293b",
    node_label="#e2e8f0",
    data_edge="#475569",
    user_edge="#38bdf8",
    selection_ring="#e879f9",
    drag_target="#4ade80",
    accents=TierAccents(north_star="#fbbf24", driver="#38bdf8", sub_driver="#34d399"),
)

SLATE_LIGHT = ThemePalette(
    background="#f8fafc",
    title_color="#0f172a",
    body_text_color="#475569",
    zone_fill="#e2e8f0",
    zone_fill_alpha=160,
    zone_border="#cbd5e1",
    zone_label="#64748b",
    node_fill="#ffffff",
    node_label="#0f172a",
    data_edge="#94a3b8",
    user_edge="#0284c7",
    selection_ring="#c026d3",
    drag_target="#16a34a",
    accents=TierAccents(north_star="#d97706", driver="#0284c7", sub_driver="#059669"),
)

THEMES: dict[str, ThemePalette] = {
    "dark": SLATE_DARK,
    "light": SLATE_LIGHT,
}


def get_theme(name: str) -> ThemePalette:
    """Palette registered under ``name``; raises ValueError for unknown names."""
    try:
        return THEMES[name.lower()]
    except KeyError:
        valid = ", ".join(THEMES)
        raise ValueError(f"Unknown theme '{name}'. Valid themes: {valid}") from None
