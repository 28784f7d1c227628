"""Load pre-built population mesh data for a region.

A region's mesh is a GeoJSON FeatureCollection of grid cells, each carrying a
mesh code and a population count. Data is addressed only by region code:

- ``LocalMeshSource``: ``<directory>/<region_code>.json``
- ``HttpMeshSource``: ``<base_url>/<region_code>.json``

The loader returns a fresh ``MeshCollection`` and never touches application
state; replacing the displayed mesh is up to the caller. Nothing is retried
and no request timeout is applied.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Protocol

import aiohttp
import geopandas as gpd
import pandas as pd
from shapely.errors import GEOSException
from shapely.geometry.base import BaseGeometry

from scripts.transit_desert_tools.errors import MeshDataUnavailable, MeshFetchFailed

# =============================================================================
# CONFIGURATION
# =============================================================================

WGS84 = "EPSG:4326"

MESH_CODE_FIELDS = ("meshCode", "MESH_CODE", "KEY_CODE")
POPULATION_FIELDS = ("population", "PopT", "POP")
POLYGON_TYPES = frozenset({"Polygon", "MultiPolygon"})

REGION_CODE_PATTERN = re.compile(r"^[0-9A-Za-z_-]+$")
NO_TIMEOUT = aiohttp.ClientTimeout(total=None)

LOGGER = logging.getLogger(__name__)

# =============================================================================
# RECORDS
# =============================================================================


@dataclass(frozen=True)
class MeshFeature:
    """One population grid cell."""

    mesh_code: str
    population: int
    geometry: BaseGeometry


@dataclass(frozen=True)
class MeshCollection:
    """All mesh cells of one region, replaced as a whole on each load."""

    region_code: str
    features: tuple[MeshFeature, ...]

    def __len__(self) -> int:
        return len(self.features)

    @property
    def total_population(self) -> int:
        return sum(feature.population for feature in self.features)

    @property
    def bounds(self) -> tuple[float, float, float, float] | None:
        """(minx, miny, maxx, maxy) in lon/lat, or None when empty."""
        if not self.features:
            return None
        minx, miny, maxx, maxy = self.to_geodataframe().total_bounds
        return float(minx), float(miny), float(maxx), float(maxy)

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        return gpd.GeoDataFrame(
            {
                "mesh_code": [feature.mesh_code for feature in self.features],
                "population": pd.Series(
                    [feature.population for feature in self.features], dtype="int64"
                ),
            },
            geometry=[feature.geometry for feature in self.features],
            crs=WGS84,
        )


# =============================================================================
# GEOJSON CONVERSION
# =============================================================================


def _first_present(columns: pd.Index, candidates: tuple[str, ...]) -> str | None:
    for name in candidates:
        if name in columns:
            return name
    return None


def _code_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value)


def mesh_from_geojson(payload: Any, region_code: str) -> MeshCollection:
    """Convert a GeoJSON FeatureCollection into a ``MeshCollection``.

    Absent, negative or non-numeric populations become 0. Cells without a
    polygonal geometry are skipped.

    Raises:
        MeshFetchFailed: the payload is not a usable FeatureCollection.
    """
    if not isinstance(payload, Mapping) or payload.get("type") != "FeatureCollection":
        raise MeshFetchFailed(
            f"Mesh data for region {region_code} is not a GeoJSON FeatureCollection.",
            region_code=region_code,
        )
    raw_features = payload.get("features")
    if not isinstance(raw_features, list):
        raise MeshFetchFailed(
            f"Mesh data for region {region_code} has no feature list.", region_code=region_code
        )
    if not raw_features:
        return MeshCollection(region_code=region_code, features=())

    try:
        gdf = gpd.GeoDataFrame.from_features(raw_features, crs=WGS84)
    except (AttributeError, KeyError, TypeError, ValueError, GEOSException) as exc:
        raise MeshFetchFailed(
            f"Mesh data for region {region_code} is malformed: {exc}", region_code=region_code
        ) from exc

    code_col = _first_present(gdf.columns, MESH_CODE_FIELDS)
    pop_col = _first_present(gdf.columns, POPULATION_FIELDS)

    if pop_col is None:
        LOGGER.warning("Region %s: no population field; all cells count as 0.", region_code)
        populations = pd.Series(0, index=gdf.index)
    else:
        populations = (
            pd.to_numeric(gdf[pop_col], errors="coerce")
            .replace([math.inf, -math.inf], 0)
            .fillna(0)
            .clip(lower=0)
        )

    features: list[MeshFeature] = []
    skipped = 0
    for idx, geom in gdf.geometry.items():
        if geom is None or geom.is_empty or geom.geom_type not in POLYGON_TYPES:
            skipped += 1
            continue
        features.append(
            MeshFeature(
                mesh_code=_code_text(gdf.at[idx, code_col]) if code_col else "",
                population=int(populations[idx]),
                geometry=geom,
            )
        )

    if skipped:
        LOGGER.warning("Region %s: skipped %s cells without polygon geometry.", region_code, skipped)
    return MeshCollection(region_code=region_code, features=tuple(features))


# =============================================================================
# SOURCES
# =============================================================================


def validate_region_code(region_code: str) -> str:
    """Return the code stripped, or raise ValueError if it cannot address a file."""
    code = str(region_code).strip()
    if not REGION_CODE_PATTERN.match(code):
        raise ValueError(f"Invalid region code: {region_code!r}")
    return code


class MeshSource(Protocol):
    """Delivers the raw GeoJSON mesh for a region code."""

    async def fetch(self, region_code: str) -> Any:
        ...


class LocalMeshSource:
    """Mesh files stored as ``<directory>/<region_code>.json``."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def path_for(self, region_code: str) -> Path:
        return self.directory / f"{region_code}.json"

    async def fetch(self, region_code: str) -> Any:
        path = self.path_for(region_code)

        def _read() -> Any:
            with path.open(encoding="utf-8") as fh:
                return json.load(fh)

        try:
            return await asyncio.to_thread(_read)
        except FileNotFoundError as exc:
            raise MeshDataUnavailable(
                f"No mesh data for region {region_code} at {path}", region_code=region_code
            ) from exc
        except (OSError, ValueError) as exc:
            raise MeshFetchFailed(
                f"Could not read mesh data {path}: {exc}", region_code=region_code
            ) from exc


class HttpMeshSource:
    """Mesh files served over HTTP as ``<base_url>/<region_code>.json``.

    Pass an existing ``aiohttp.ClientSession`` to reuse connections; without
    one a short-lived session is opened per request.
    """

    def __init__(self, base_url: str, session: aiohttp.ClientSession | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._session = session

    def url_for(self, region_code: str) -> str:
        return f"{self.base_url}/{region_code}.json"

    async def fetch(self, region_code: str) -> Any:
        if self._session is not None:
            return await self._get(self._session, region_code)
        async with aiohttp.ClientSession(timeout=NO_TIMEOUT) as session:
            return await self._get(session, region_code)

    async def _get(self, session: aiohttp.ClientSession, region_code: str) -> Any:
        url = self.url_for(region_code)
        LOGGER.debug("GET %s", url)
        try:
            async with session.get(url) as resp:
                if resp.status == 404:
                    raise MeshDataUnavailable(
                        f"No mesh data for region {region_code} at {url}", region_code=region_code
                    )
                if resp.status != 200:
                    raise MeshFetchFailed(
                        f"HTTP {resp.status} from {url}", region_code=region_code
                    )
                body = await resp.read()
        except MeshFetchFailed:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise MeshFetchFailed(
                f"Request to {url} failed: {exc}", region_code=region_code
            ) from exc

        try:
            return json.loads(body.decode("utf-8"))
        except ValueError as exc:
            raise MeshFetchFailed(
                f"Invalid JSON from {url}: {body[:200]!r}", region_code=region_code
            ) from exc


# =============================================================================
# LOADER
# =============================================================================


class MeshLoader:
    """Fetch and decode the mesh of one region at a time."""

    def __init__(self, source: MeshSource) -> None:
        self.source = source

    async def load(self, region_code: str) -> MeshCollection:
        """Return the mesh for ``region_code``.

        Raises:
            MeshDataUnavailable: the region has no mesh data.
            MeshFetchFailed: transport, decoding or structure failure.
        """
        try:
            code = validate_region_code(region_code)
        except ValueError as exc:
            raise MeshDataUnavailable(str(exc), region_code=str(region_code)) from exc

        payload = await self.source.fetch(code)
        mesh = mesh_from_geojson(payload, code)
        LOGGER.info(
            "Loaded mesh for region %s: %s cells, population %s.",
            code,
            len(mesh),
            mesh.total_population,
        )
        return mesh
