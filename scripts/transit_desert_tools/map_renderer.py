"""Compose stops and population mesh into folium map layers.

The renderer only reads state. Each call to ``MapRenderer.render`` receives the
current stop tuple and mesh and returns a ``MapScene``. A layer is rebuilt only
when its source object is not the same object (``is``) as on the previous
render, so replacing the mesh leaves the stop circles untouched and the other
way round.

The "clear all stops" control is described in the scene, not wired to state:
activating it calls back into whoever owns the stop collection.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Callable, Sequence

import folium
from branca.colormap import StepColormap

from scripts.transit_desert_tools.choropleth import build_legend, mesh_style
from scripts.transit_desert_tools.mesh_loader import MeshCollection
from scripts.transit_desert_tools.stop_parser import Stop

# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_CENTER = (36.698, 137.213)  # Toyama
DEFAULT_ZOOM = 13
DEFAULT_TILES = "OpenStreetMap"

STOP_RADIUS_M = 300
STOP_COLOR = "blue"
STOP_FILL_OPACITY = 0.2
STOP_LINE_WEIGHT = 1

STOPS_LAYER_NAME = "バス停"
MESH_LAYER_NAME = "人口メッシュ"
CLEAR_LABEL = "バス停をすべてクリア"

LOGGER = logging.getLogger(__name__)

_UNSET = object()


def format_population(population: int) -> str:
    """Population label with thousands grouping, e.g. ``1,234人``."""
    return f"{int(population):,}人"


@dataclass(frozen=True)
class ClearControl:
    """User control that asks the state owner to remove every stop."""

    label: str
    on_activate: Callable[[], None]

    def activate(self) -> None:
        self.on_activate()


@dataclass
class MapScene:
    """Everything needed to draw one frame of the map."""

    stops_layer: folium.FeatureGroup
    mesh_layer: folium.FeatureGroup | None
    legend: StepColormap | None
    clear_control: ClearControl | None
    stop_count: int
    center: tuple[float, float] = DEFAULT_CENTER
    zoom: int = DEFAULT_ZOOM
    tiles: str = DEFAULT_TILES
    fit_bounds: list[list[float]] | None = None

    def to_folium_map(self) -> folium.Map:
        """Assemble base tiles and layers; the mesh sits below the stops."""
        fmap = folium.Map(location=list(self.center), zoom_start=self.zoom, tiles=self.tiles)
        if self.mesh_layer is not None:
            self.mesh_layer.add_to(fmap)
        self.stops_layer.add_to(fmap)
        if self.legend is not None:
            self.legend.add_to(fmap)
        folium.LayerControl(collapsed=False).add_to(fmap)
        if self.fit_bounds:
            fmap.fit_bounds(self.fit_bounds)
        return fmap


class MapRenderer:
    """Builds map scenes, caching each layer per source object."""

    def __init__(
        self,
        center: tuple[float, float] = DEFAULT_CENTER,
        zoom: int = DEFAULT_ZOOM,
        tiles: str = DEFAULT_TILES,
        stop_radius_m: float = STOP_RADIUS_M,
    ) -> None:
        self.center = center
        self.zoom = zoom
        self.tiles = tiles
        self.stop_radius_m = stop_radius_m

        self._stops_source: object = _UNSET
        self._stops_layer: folium.FeatureGroup | None = None
        self._mesh_source: object = _UNSET
        self._mesh_layer: folium.FeatureGroup | None = None
        self._fit_bounds: list[list[float]] | None = None

        # how many times each layer was (re)built
        self.stops_builds = 0
        self.mesh_builds = 0

    def render(
        self,
        stops: Sequence[Stop],
        mesh: MeshCollection | None,
        on_clear: Callable[[], None],
    ) -> MapScene:
        if stops is not self._stops_source:
            self._stops_layer = self.build_stops_layer(stops)
            self._stops_source = stops
            self.stops_builds += 1

        if mesh is not self._mesh_source:
            self._mesh_layer = None if mesh is None else self.build_mesh_layer(mesh)
            self._fit_bounds = _leaflet_bounds(mesh)
            self._mesh_source = mesh
            self.mesh_builds += 1

        clear_control = ClearControl(CLEAR_LABEL, on_clear) if len(stops) else None
        return MapScene(
            stops_layer=self._stops_layer,  # type: ignore[arg-type]
            mesh_layer=self._mesh_layer,
            legend=build_legend() if mesh is not None else None,
            clear_control=clear_control,
            stop_count=len(stops),
            center=self.center,
            zoom=self.zoom,
            tiles=self.tiles,
            fit_bounds=self._fit_bounds,
        )

    def build_stops_layer(self, stops: Sequence[Stop]) -> folium.FeatureGroup:
        """One fixed-radius circle per stop, labelled with the stop name."""
        layer = folium.FeatureGroup(name=STOPS_LAYER_NAME, show=True)
        for stop in stops:
            folium.Circle(
                location=[stop.stop_lat, stop.stop_lon],
                radius=self.stop_radius_m,
                color=STOP_COLOR,
                weight=STOP_LINE_WEIGHT,
                fill=True,
                fill_color=STOP_COLOR,
                fill_opacity=STOP_FILL_OPACITY,
                tooltip=html.escape(stop.stop_name),
            ).add_to(layer)
        LOGGER.debug("Built stops layer with %s circles.", len(stops))
        return layer

    def build_mesh_layer(self, mesh: MeshCollection) -> folium.FeatureGroup:
        """One polygon per mesh cell, colored by population bucket."""
        layer = folium.FeatureGroup(name=MESH_LAYER_NAME, show=True)
        if not mesh.features:
            return layer

        gdf = mesh.to_geodataframe()
        gdf["population_label"] = gdf["population"].map(format_population)
        folium.GeoJson(
            gdf,
            name=MESH_LAYER_NAME,
            style_function=lambda feature: mesh_style(feature["properties"].get("population")),
            tooltip=folium.GeoJsonTooltip(
                fields=["mesh_code", "population_label"],
                aliases=["メッシュ", "人口"],
            ),
        ).add_to(layer)
        LOGGER.debug("Built mesh layer for region %s with %s cells.", mesh.region_code, len(mesh))
        return layer


def _leaflet_bounds(mesh: MeshCollection | None) -> list[list[float]] | None:
    if mesh is None:
        return None
    bounds = mesh.bounds
    if bounds is None:
        return None
    minx, miny, maxx, maxy = bounds
    return [[miny, minx], [maxy, maxx]]
