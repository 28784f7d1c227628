"""Static catalog of selectable regions (prefectures)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

LOGGER = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parents[2] / "data" / "prefectures.json"


@dataclass(frozen=True)
class Region:
    """A selectable administrative area."""

    code: str
    display_name: str


def regions_from_records(records: Iterable[object]) -> tuple[Region, ...]:
    """Build regions from ``{"code": ..., "name": ...}`` mappings.

    Raises:
        ValueError: an entry lacks a code or name, or a code repeats.
    """
    regions: list[Region] = []
    seen: set[str] = set()
    for pos, record in enumerate(records):
        if not isinstance(record, dict):
            raise ValueError(f"Region entry {pos} is not an object: {record!r}")
        code = str(record.get("code", "")).strip()
        name = str(record.get("name", "")).strip()
        if not code or not name:
            raise ValueError(f"Region entry {pos} needs both 'code' and 'name': {record!r}")
        if code in seen:
            raise ValueError(f"Duplicate region code: {code}")
        seen.add(code)
        regions.append(Region(code=code, display_name=name))
    return tuple(regions)


def load_region_catalog(path: Path | str = DEFAULT_CATALOG_PATH) -> tuple[Region, ...]:
    """Read the region catalog JSON (a list of ``{code, name}`` objects)."""
    path = Path(path)
    with path.open(encoding="utf-8") as fh:
        records = json.load(fh)
    if not isinstance(records, list):
        raise ValueError(f"{path}: expected a JSON list of regions")
    regions = regions_from_records(records)
    LOGGER.info("Loaded %s regions from %s", len(regions), path)
    return regions


def find_region(regions: Sequence[Region], code: str) -> Region | None:
    for region in regions:
        if region.code == code:
            return region
    return None
