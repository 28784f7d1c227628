from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SAMPLE_DATA = REPO_ROOT / "sample_data"


def square(west: float, south: float, size: float = 0.01) -> dict[str, Any]:
    """GeoJSON polygon for a small lon/lat square."""
    return {
        "type": "Polygon",
        "coordinates": [
            [
                [west, south],
                [west + size, south],
                [west + size, south + size],
                [west, south + size],
                [west, south],
            ]
        ],
    }


def feature_collection(*cells: tuple[str, Any]) -> dict[str, Any]:
    """FeatureCollection of square cells from (mesh code, population) pairs."""
    features = []
    for i, (code, population) in enumerate(cells):
        properties: dict[str, Any] = {"meshCode": code}
        if population is not None:
            properties["population"] = population
        features.append(
            {
                "type": "Feature",
                "properties": properties,
                "geometry": square(137.0 + i * 0.01, 36.0),
            }
        )
    return {"type": "FeatureCollection", "features": features}


@pytest.fixture
def sample_data() -> Path:
    return SAMPLE_DATA
