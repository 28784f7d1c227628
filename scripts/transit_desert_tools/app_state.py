"""Application state and user actions for the transit desert map.

``TransitDesertApp`` is the single writer of the two shared pieces of state:

- ``stops``: the accumulated ``StopCollection``
- ``mesh``: the currently displayed ``MeshCollection`` (or None)

User actions (uploading files, clearing stops, selecting a region, fetching
its mesh) are methods here. Failures never escape as exceptions for the
expected error kinds; they become ``Notification`` entries for the UI.

Asynchronous completions are guarded by generation counters. Each upload or
mesh fetch records the generation current when it was issued and applies its
result only if that generation is still current when it completes:

- ``clear_stops()`` advances the stop generation, so a batch still parsing when
  the user cleared is discarded.
- every ``fetch_mesh()`` advances the mesh generation, so only the most
  recently requested region can ever be displayed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from scripts.transit_desert_tools.errors import MeshFetchFailed, RegionNotSelected
from scripts.transit_desert_tools.map_renderer import MapRenderer, MapScene
from scripts.transit_desert_tools.mesh_loader import MeshCollection, MeshLoader
from scripts.transit_desert_tools.region_catalog import Region, find_region
from scripts.transit_desert_tools.stop_collection import StopCollection
from scripts.transit_desert_tools.stop_parser import BatchParseResult, StopFile, parse_stop_files

MSG_PARSE_FAILED = "ファイルの解析中にエラーが発生しました。"
MSG_UPLOAD_BUSY = "ファイルを処理中です。完了してから再度選択してください。"
MSG_REGION_NOT_SELECTED = "都道府県を選択してください。"
MSG_MESH_UNAVAILABLE = "選択された都道府県の人口メッシュデータは利用できません。"

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    """A message the UI should show to the user once."""

    level: str  # "error" | "warning" | "info"
    message: str


class TransitDesertApp:
    """Owns stop and mesh state and applies user actions to it."""

    def __init__(self, mesh_loader: MeshLoader, regions: Sequence[Region] = ()) -> None:
        self.mesh_loader = mesh_loader
        self.regions: tuple[Region, ...] = tuple(regions)

        self.stops = StopCollection()
        self.mesh: MeshCollection | None = None
        self.selected_region: str | None = None

        self.is_loading = False
        self.is_mesh_loading = False
        self.notifications: list[Notification] = []

        self._stops_generation = 0
        self._mesh_generation = 0

    # ------------------------------------------------------------------ helpers

    def notify(self, level: str, message: str) -> None:
        self.notifications.append(Notification(level, message))

    def drain_notifications(self) -> list[Notification]:
        """Return pending notifications and forget them."""
        pending, self.notifications = self.notifications, []
        return pending

    # ------------------------------------------------------------------ stops

    async def upload_files(self, files: Sequence[StopFile]) -> BatchParseResult | None:
        """Parse a batch of stop files and append the valid stops.

        Stops from files that parsed are committed in selection order even
        when a sibling file failed; the failure is reported once. Returns the
        batch result, or None when nothing was parsed (empty selection, busy,
        or discarded because the stops were cleared meanwhile).
        """
        if not files:
            return None
        if self.is_loading:
            LOGGER.warning("Upload of %s file(s) rejected; a batch is still loading.", len(files))
            self.notify("warning", MSG_UPLOAD_BUSY)
            return None

        generation = self._stops_generation
        self.is_loading = True
        try:
            result = await parse_stop_files(files)
        finally:
            self.is_loading = False

        if generation != self._stops_generation:
            LOGGER.warning("Discarding %s parsed stops; stops were cleared meanwhile.", len(result.stops))
            return None

        self.stops.append(result.stops)
        if not result.ok:
            failed = ", ".join(result.failed_files)
            LOGGER.error("File parsing failed for: %s", failed)
            self.notify("error", f"{MSG_PARSE_FAILED} ({failed})")
        return result

    def clear_stops(self) -> None:
        """Remove every stop and invalidate in-flight uploads."""
        self._stops_generation += 1
        self.stops.clear()

    # ------------------------------------------------------------------ mesh

    def select_region(self, region_code: str | None) -> None:
        """Choose the region for the next mesh fetch (None or "" unselects)."""
        if not region_code:
            self.selected_region = None
            return
        if self.regions and find_region(self.regions, region_code) is None:
            raise ValueError(f"Unknown region code: {region_code}")
        self.selected_region = region_code

    async def fetch_mesh(self, region_code: str | None = None) -> MeshCollection | None:
        """Load and display the population mesh of a region.

        Uses ``region_code`` or, when omitted, the selected region. The
        displayed mesh is cleared as soon as the request is issued. Only the
        latest request may change ``mesh``; superseded results and failures
        are dropped silently.
        """
        code = region_code or self.selected_region
        if not code:
            exc = RegionNotSelected(MSG_REGION_NOT_SELECTED)
            LOGGER.warning("Mesh fetch rejected: %s", exc)
            self.notify("warning", str(exc))
            return None

        self._mesh_generation += 1
        generation = self._mesh_generation
        self.mesh = None
        self.is_mesh_loading = True

        try:
            mesh = await self.mesh_loader.load(code)
        except MeshFetchFailed as exc:
            if generation != self._mesh_generation:
                LOGGER.info("Ignoring failure of superseded mesh request for %s: %s", code, exc)
                return None
            LOGGER.error("Failed to fetch mesh data for region %s: %s", code, exc)
            self.mesh = None
            self.notify("error", MSG_MESH_UNAVAILABLE)
            return None
        finally:
            if generation == self._mesh_generation:
                self.is_mesh_loading = False

        if generation != self._mesh_generation:
            LOGGER.warning("Discarding superseded mesh response for region %s.", code)
            return None

        self.mesh = mesh
        return mesh

    # ------------------------------------------------------------------ view

    def render(self, renderer: MapRenderer) -> MapScene:
        """Hand the current state to ``renderer``; it only reads it."""
        return renderer.render(self.stops.stops, self.mesh, on_clear=self.clear_stops)
