"""Build a standalone HTML transit-desert map.

Overlays one or more GTFS ``stops.txt`` files as 300 m circles on top of a
prefecture's population mesh, colored by population per cell. Cells with
people but no nearby circle are the transit deserts.

Typical inputs:
    - One or more stops files (delimited text with stop_name, stop_lat,
      stop_lon columns).
    - A prefecture code (see data/prefectures.json) whose mesh is read from
      a local folder of ``<code>.json`` files or from a base URL.

Outputs:
    - A single HTML file viewable in any browser.

Files that fail to parse are reported and skipped; the rest are still drawn.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Sequence

from scripts.transit_desert_tools.app_state import TransitDesertApp
from scripts.transit_desert_tools.map_renderer import MapRenderer
from scripts.transit_desert_tools.mesh_loader import HttpMeshSource, LocalMeshSource, MeshLoader
from scripts.transit_desert_tools.region_catalog import DEFAULT_CATALOG_PATH, load_region_catalog
from scripts.transit_desert_tools.stop_parser import PathStopFile
from scripts.utils.logging_helper import setup_logging

# =============================================================================
# CONFIGURATION
# =============================================================================

STOPS_FILES: list[Path] = [Path(r"sample_data/stops/stops_toyama_city.txt")]
REGION_CODE = "16"  # 富山県
MESH_DIR = Path(r"sample_data/mesh_data")
MESH_URL = ""  # e.g. "https://example.org/mesh_data"; overrides MESH_DIR when set
OUTPUT_HTML = Path(r"transit_desert_map.html")
LOG_LEVEL = "INFO"  # DEBUG | INFO | WARNING

LOGGER = logging.getLogger(__name__)

# =============================================================================
# FUNCTIONS
# =============================================================================


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments; defaults come from the CONFIGURATION block."""
    parser = argparse.ArgumentParser(description="Overlay bus stops on a population mesh.")
    parser.add_argument(
        "--stops", type=Path, nargs="+", default=STOPS_FILES, help="One or more stops files"
    )
    parser.add_argument("--region", default=REGION_CODE, help="Region (prefecture) code")
    parser.add_argument("--mesh-dir", type=Path, default=MESH_DIR, help="Folder of <code>.json")
    parser.add_argument("--mesh-url", default=MESH_URL, help="Base URL serving <code>.json")
    parser.add_argument("--catalog", type=Path, default=DEFAULT_CATALOG_PATH, help="Region list")
    parser.add_argument("--out", type=Path, default=OUTPUT_HTML, help="Output HTML path")
    parser.add_argument("--log-level", default=LOG_LEVEL, help="DEBUG, INFO or WARNING")
    return parser.parse_args(argv)


def build_app(mesh_dir: Path, mesh_url: str, catalog: Path) -> TransitDesertApp:
    source = HttpMeshSource(mesh_url) if mesh_url else LocalMeshSource(mesh_dir)
    return TransitDesertApp(MeshLoader(source), regions=load_region_catalog(catalog))


async def run(args: argparse.Namespace) -> int:
    """Load stops and mesh, write the map, and return the process exit code."""
    app = build_app(args.mesh_dir, args.mesh_url, args.catalog)

    await app.upload_files([PathStopFile(Path(p)) for p in args.stops])
    if args.region:
        app.select_region(args.region)
        await app.fetch_mesh()

    scene = app.render(MapRenderer())
    args.out.parent.mkdir(parents=True, exist_ok=True)
    scene.to_folium_map().save(str(args.out))

    had_error = False
    for note in app.drain_notifications():
        if note.level == "error":
            had_error = True
            LOGGER.error(note.message)
        else:
            LOGGER.warning(note.message)

    LOGGER.info("Stops drawn: %s", len(app.stops))
    LOGGER.info("Mesh cells drawn: %s", 0 if app.mesh is None else len(app.mesh))
    LOGGER.info("Wrote: %s", args.out)
    return 1 if had_error else 0


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point (notebook-safe: returns the exit code)."""
    args = parse_args(argv)
    setup_logging(args.log_level)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
