"""Interactive transit-desert map (Streamlit).

Run with (after ``pip install -e .``):

    streamlit run scripts/transit_desert_tools/streamlit_app.py

Step 1 uploads one or more GTFS stops.txt files; every import is added to the
stops already on the map. Step 2 overlays the population mesh of a
prefecture. Mesh files are read from TRANSIT_DESERT_MESH_DIR, or fetched from
TRANSIT_DESERT_MESH_URL when that is set.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import streamlit as st
from streamlit_folium import st_folium

from scripts.transit_desert_tools.app_state import TransitDesertApp
from scripts.transit_desert_tools.map_renderer import MapRenderer
from scripts.transit_desert_tools.mesh_loader import HttpMeshSource, LocalMeshSource, MeshLoader
from scripts.transit_desert_tools.region_catalog import DEFAULT_CATALOG_PATH, load_region_catalog
from scripts.transit_desert_tools.stop_parser import InMemoryStopFile
from scripts.utils.logging_helper import setup_logging

# =============================================================================
# CONFIGURATION
# =============================================================================

MESH_DIR = Path(os.environ.get("TRANSIT_DESERT_MESH_DIR", "sample_data/mesh_data"))
MESH_URL = os.environ.get("TRANSIT_DESERT_MESH_URL", "")
CATALOG_PATH = Path(os.environ.get("TRANSIT_DESERT_REGIONS", str(DEFAULT_CATALOG_PATH)))
LOG_LEVEL = os.environ.get("TRANSIT_DESERT_LOG_LEVEL", "INFO")

MAP_HEIGHT = 720
PLACEHOLDER = ""

# =============================================================================
# SESSION
# =============================================================================


def _session() -> tuple[TransitDesertApp, MapRenderer]:
    if "app" not in st.session_state:
        setup_logging(LOG_LEVEL)
        source = HttpMeshSource(MESH_URL) if MESH_URL else LocalMeshSource(MESH_DIR)
        st.session_state.app = TransitDesertApp(
            MeshLoader(source), regions=load_region_catalog(CATALOG_PATH)
        )
        st.session_state.renderer = MapRenderer()
        st.session_state.uploader_key = 0
    return st.session_state.app, st.session_state.renderer


def _show_notifications(app: TransitDesertApp) -> None:
    for note in app.drain_notifications():
        if note.level == "error":
            st.error(note.message)
        elif note.level == "warning":
            st.warning(note.message)
        else:
            st.info(note.message)


# =============================================================================
# PAGE
# =============================================================================


def main() -> None:
    st.set_page_config(page_title="交通空白地帯 可視化まっぷ", layout="wide")
    app, renderer = _session()

    with st.sidebar:
        st.title("交通空白地帯 可視化まっぷ")

        st.subheader("Step 1: バス停データを表示")
        st.caption("GTFSの`stops.txt`ファイルを1つまたは複数選択")
        uploaded = st.file_uploader(
            "stops.txt を選択 (複数可)",
            type=["txt", "csv"],
            accept_multiple_files=True,
            key=f"stops_upload_{st.session_state.uploader_key}",
            disabled=app.is_loading,
        )
        if st.button("読み込む", disabled=not uploaded or app.is_loading):
            files = [InMemoryStopFile(name=f.name, data=f.getvalue()) for f in uploaded]
            with st.spinner("処理中..."):
                asyncio.run(app.upload_files(files))
            st.session_state.uploader_key += 1  # resets the picker
            st.rerun()

        if not app.stops.is_empty:
            st.write(f"現在 {len(app.stops)} 件のバス停が表示されています")

        st.subheader("Step 2: 人口メッシュを重ねる")
        st.caption("都道府県を選択して人口データを表示")
        codes = [PLACEHOLDER] + [region.code for region in app.regions]
        names = {region.code: region.display_name for region in app.regions}
        selected = st.selectbox(
            "都道府県",
            codes,
            index=codes.index(app.selected_region) if app.selected_region in codes else 0,
            format_func=lambda code: names.get(code, "選択してください"),
        )
        app.select_region(selected or None)
        if st.button(
            "取得中..." if app.is_mesh_loading else "人口データを表示",
            disabled=app.is_mesh_loading or not app.selected_region,
        ):
            with st.spinner("取得中..."):
                asyncio.run(app.fetch_mesh())

        _show_notifications(app)

    scene = app.render(renderer)
    if scene.clear_control is not None:
        if st.button(scene.clear_control.label):
            scene.clear_control.activate()
            st.rerun()

    st_folium(scene.to_folium_map(), height=MAP_HEIGHT, use_container_width=True, returned_objects=[])


if __name__ == "__main__":
    main()
