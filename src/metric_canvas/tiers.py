"""
Tier geometry for the driver tree canvas.

The canvas is split into three horizontal bands.  Every vertical coordinate
belongs to exactly one of them:

    north-star   y < 150
    driver       150 <= y < 400
    sub-driver   y >= 400

When a node is dropped it snaps to a fixed representative y for its tier
(0 / 280 / 560) rather than the band midpoint, so rows keep the same rhythm
as the computed layout (one row = node height + vertical gap = 280).

These functions are the single source of truth for tier decisions: the
controller consults them while dragging (live highlight) and on drop
(committing the tier change).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal, Optional

Tier = Literal["north-star", "driver", "sub-driver"]

NORTH_STAR: Tier = "north-star"
DRIVER: Tier = "driver"
SUB_DRIVER: Tier = "sub-driver"

TIERS: tuple[Tier, ...] = (NORTH_STAR, DRIVER, SUB_DRIVER)

# Band boundaries (canvas y)
NORTH_STAR_MAX_Y = 150
DRIVER_MAX_Y = 400


@dataclass(frozen=True)
class TierZone:
    """A horizontal band of the canvas."""
    tier: Tier
    label: str
    category: str
    y_start: float
    y_end: float
    snap_y: float


TIER_ZONES: tuple[TierZone, ...] = (
    TierZone(NORTH_STAR, "North Star", "North Star", -math.inf, NORTH_STAR_MAX_Y, 0),
    TierZone(DRIVER, "Core Drivers", "Driver", NORTH_STAR_MAX_Y, DRIVER_MAX_Y, 280),
    TierZone(SUB_DRIVER, "Sub-Drivers", "Sub-Driver", DRIVER_MAX_Y, math.inf, 560),
)

_ZONES_BY_TIER: dict[str, TierZone] = {zone.tier: zone for zone in TIER_ZONES}


def tier_from_y(y: float) -> Tier:
    """Classify a vertical coordinate.

    Total over floats: anything that is not below a boundary (including
    NaN) falls through to the bottom tier.
    """
    if y < NORTH_STAR_MAX_Y:
        return NORTH_STAR
    if y < DRIVER_MAX_Y:
        return DRIVER
    return SUB_DRIVER


def snap_y(tier: Tier) -> float:
    """The fixed y a node is snapped to when dropped into ``tier``."""
    return _ZONES_BY_TIER[tier].snap_y


def level_from_tier(tier: Tier) -> int:
    return TIERS.index(tier)


def tier_from_level(level: Optional[int]) -> Tier:
    """Map a metric level to its tier.  Unknown levels sit at the bottom."""
    if level == 0:
        return NORTH_STAR
    if level == 1:
        return DRIVER
    return SUB_DRIVER


def category_for_tier(tier: Tier) -> str:
    return _ZONES_BY_TIER[tier].category


def tier_above(tier: Tier) -> Optional[Tier]:
    """The tier a node in ``tier`` can be wired up to, or None at the top."""
    index = TIERS.index(tier)
    return TIERS[index - 1] if index > 0 else None
