"""Population choropleth classes for mesh cells.

Thresholds are strict lower bounds checked from the highest down, so a cell
with exactly 500 people lands in the bucket below the one for 501.
"""

from __future__ import annotations

import math
from enum import IntEnum
from typing import Final

from branca.colormap import StepColormap


class ColorBucket(IntEnum):
    """Darkness rank of a mesh cell; higher means more people."""

    BUCKET_1 = 1
    BUCKET_2 = 2
    BUCKET_3 = 3
    BUCKET_4 = 4
    BUCKET_5 = 5
    BUCKET_6 = 6
    BUCKET_7 = 7
    BUCKET_8 = 8


# (population strictly greater than, bucket), highest first
POPULATION_THRESHOLDS: Final[tuple[tuple[int, ColorBucket], ...]] = (
    (500, ColorBucket.BUCKET_8),
    (200, ColorBucket.BUCKET_7),
    (100, ColorBucket.BUCKET_6),
    (50, ColorBucket.BUCKET_5),
    (20, ColorBucket.BUCKET_4),
    (10, ColorBucket.BUCKET_3),
    (0, ColorBucket.BUCKET_2),
)

BUCKET_COLORS: Final[dict[ColorBucket, str]] = {
    ColorBucket.BUCKET_1: "#FFEDA0",
    ColorBucket.BUCKET_2: "#FED976",
    ColorBucket.BUCKET_3: "#FEB24C",
    ColorBucket.BUCKET_4: "#FD8D3C",
    ColorBucket.BUCKET_5: "#FC4E2A",
    ColorBucket.BUCKET_6: "#E31A1C",
    ColorBucket.BUCKET_7: "#BD0026",
    ColorBucket.BUCKET_8: "#800026",
}

CELL_OUTLINE_COLOR = "#666666"
CELL_OUTLINE_WEIGHT = 0.5
CELL_FILL_OPACITY = 0.6

LEGEND_CAPTION = "人口 (人/メッシュ)"
LEGEND_MAX = 1000


def _as_population(value: float | int | None) -> float:
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or number < 0:
        return 0.0
    return number


def classify(population: float | int | None) -> ColorBucket:
    """Map a population count to its color bucket.

    None, NaN, non-numeric and negative values count as 0.
    """
    value = _as_population(population)
    for bound, bucket in POPULATION_THRESHOLDS:
        if value > bound:
            return bucket
    return ColorBucket.BUCKET_1


def fill_color(population: float | int | None) -> str:
    return BUCKET_COLORS[classify(population)]


def mesh_style(population: float | int | None) -> dict[str, object]:
    """Leaflet path style for one mesh cell."""
    return {
        "fillColor": fill_color(population),
        "color": CELL_OUTLINE_COLOR,
        "weight": CELL_OUTLINE_WEIGHT,
        "fillOpacity": CELL_FILL_OPACITY,
    }


def build_legend(caption: str = LEGEND_CAPTION) -> StepColormap:
    """Step legend with one swatch per bucket, lightest first."""
    lower_bounds = [0] + [bound + 1 for bound, _ in reversed(POPULATION_THRESHOLDS)]
    return StepColormap(
        colors=[BUCKET_COLORS[bucket] for bucket in ColorBucket],
        index=lower_bounds + [LEGEND_MAX],
        vmin=0,
        vmax=LEGEND_MAX,
        caption=caption,
    )
