from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import aiohttp
import pytest
from aiohttp import test_utils, web

from conftest import feature_collection, square
from scripts.transit_desert_tools.app_state import MSG_MESH_UNAVAILABLE, TransitDesertApp
from scripts.transit_desert_tools.errors import MeshDataUnavailable, MeshFetchFailed
from scripts.transit_desert_tools.mesh_loader import (
    NO_TIMEOUT,
    HttpMeshSource,
    LocalMeshSource,
    MeshCollection,
    MeshLoader,
    mesh_from_geojson,
)


def _write_json(path: Path, payload: Any) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")


# =============================================================================
# GeoJSON conversion
# =============================================================================


def test_mesh_from_geojson_reads_codes_and_populations() -> None:
    payload = feature_collection(("55370137", 800), ("55370138", 12))

    mesh = mesh_from_geojson(payload, "16")

    assert mesh.region_code == "16"
    assert [f.mesh_code for f in mesh.features] == ["55370137", "55370138"]
    assert [f.population for f in mesh.features] == [800, 12]
    assert mesh.total_population == 812
    assert mesh.features[0].geometry.geom_type == "Polygon"


def test_missing_or_negative_population_becomes_zero() -> None:
    payload = feature_collection(("a", None), ("b", -5), ("c", "many"), ("d", 7))

    mesh = mesh_from_geojson(payload, "16")

    assert [f.population for f in mesh.features] == [0, 0, 0, 7]


@pytest.mark.parametrize("population", ["1e999", float("inf"), float("-inf"), float("nan")])
def test_non_finite_population_becomes_zero(population: Any) -> None:
    mesh = mesh_from_geojson(feature_collection(("a", population), ("b", 3)), "16")

    assert [f.population for f in mesh.features] == [0, 3]


def test_numeric_mesh_codes_are_text() -> None:
    payload = feature_collection(("x", 1))
    payload["features"][0]["properties"]["meshCode"] = 55370137

    mesh = mesh_from_geojson(payload, "16")

    assert mesh.features[0].mesh_code == "55370137"


def test_non_polygon_cells_are_skipped() -> None:
    payload = feature_collection(("keep", 3))
    payload["features"].append(
        {
            "type": "Feature",
            "properties": {"meshCode": "point", "population": 9},
            "geometry": {"type": "Point", "coordinates": [137.0, 36.0]},
        }
    )

    mesh = mesh_from_geojson(payload, "16")

    assert [f.mesh_code for f in mesh.features] == ["keep"]


def test_multipolygon_cells_are_kept() -> None:
    poly = square(137.0, 36.0)["coordinates"]
    payload = {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {"KEY_CODE": "m1", "PopT": 4},
                "geometry": {"type": "MultiPolygon", "coordinates": [poly]},
            }
        ],
    }

    mesh = mesh_from_geojson(payload, "16")

    assert mesh.features[0].mesh_code == "m1"
    assert mesh.features[0].population == 4
    assert mesh.features[0].geometry.geom_type == "MultiPolygon"


def test_empty_feature_collection_is_an_empty_mesh() -> None:
    mesh = mesh_from_geojson({"type": "FeatureCollection", "features": []}, "16")

    assert len(mesh) == 0
    assert mesh.bounds is None


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"type": "Feature"},
        {"type": "FeatureCollection"},
        {"type": "FeatureCollection", "features": "nope"},
    ],
)
def test_non_feature_collection_fails(payload: Any) -> None:
    with pytest.raises(MeshFetchFailed):
        mesh_from_geojson(payload, "16")


def test_to_geodataframe_and_bounds() -> None:
    mesh = mesh_from_geojson(feature_collection(("a", 1), ("b", 2)), "16")

    gdf = mesh.to_geodataframe()

    assert list(gdf.columns) == ["mesh_code", "population", "geometry"]
    assert gdf.crs.to_epsg() == 4326
    assert gdf["population"].tolist() == [1, 2]
    minx, miny, maxx, maxy = mesh.bounds
    assert minx == pytest.approx(137.0)
    assert miny == pytest.approx(36.0)
    assert maxx == pytest.approx(137.02)
    assert maxy == pytest.approx(36.01)


# =============================================================================
# Local source
# =============================================================================


def test_local_source_loads_region_file(tmp_path: Path) -> None:
    _write_json(tmp_path / "16.json", feature_collection(("a", 30)))
    loader = MeshLoader(LocalMeshSource(tmp_path))

    mesh = asyncio.run(loader.load("16"))

    assert isinstance(mesh, MeshCollection)
    assert [f.population for f in mesh.features] == [30]


def test_each_load_returns_a_new_collection(tmp_path: Path) -> None:
    _write_json(tmp_path / "16.json", feature_collection(("a", 30)))
    loader = MeshLoader(LocalMeshSource(tmp_path))

    first = asyncio.run(loader.load("16"))
    second = asyncio.run(loader.load("16"))

    assert first == second
    assert first is not second


def test_local_source_missing_region_is_unavailable(tmp_path: Path) -> None:
    loader = MeshLoader(LocalMeshSource(tmp_path))

    with pytest.raises(MeshDataUnavailable) as excinfo:
        asyncio.run(loader.load("47"))

    assert excinfo.value.region_code == "47"


def test_local_source_invalid_json_fails(tmp_path: Path) -> None:
    (tmp_path / "16.json").write_text("{not json", encoding="utf-8")
    loader = MeshLoader(LocalMeshSource(tmp_path))

    with pytest.raises(MeshFetchFailed) as excinfo:
        asyncio.run(loader.load("16"))

    assert not isinstance(excinfo.value, MeshDataUnavailable)


@pytest.mark.parametrize("code", ["../16", "", "16/..", "a b"])
def test_region_codes_cannot_escape_the_data_folder(tmp_path: Path, code: str) -> None:
    loader = MeshLoader(LocalMeshSource(tmp_path))

    with pytest.raises(MeshDataUnavailable):
        asyncio.run(loader.load(code))


def test_sample_mesh_loads(sample_data: Path) -> None:
    mesh = asyncio.run(MeshLoader(LocalMeshSource(sample_data / "mesh_data")).load("16"))

    assert len(mesh) == 9
    assert max(f.population for f in mesh.features) == 800


# =============================================================================
# HTTP source
# =============================================================================


async def _mesh_handler(request: web.Request) -> web.Response:
    region = request.match_info["code"]
    if region == "16":
        return web.json_response(feature_collection(("a", 42)))
    if region == "99":
        return web.Response(status=500, text="boom")
    if region == "98":
        return web.Response(status=200, text="<html>not json</html>")
    if region == "97":
        return web.Response(status=200, body=b'{"type": "\xff\xfe"}')
    if region == "96":
        await asyncio.sleep(0.5)
        return web.json_response(feature_collection(("a", 1)))
    return web.Response(status=404)


def _mesh_server() -> test_utils.TestServer:
    app = web.Application()
    app.router.add_get("/mesh_data/{code}.json", _mesh_handler)
    return test_utils.TestServer(app)


async def _load_over_http(code: str, timeout: aiohttp.ClientTimeout | None = None) -> MeshCollection:
    async with _mesh_server() as server:
        base_url = str(server.make_url("/mesh_data"))
        if timeout is None:
            return await MeshLoader(HttpMeshSource(base_url)).load(code)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            return await MeshLoader(HttpMeshSource(base_url, session=session)).load(code)


async def _fetch_into_app(code: str) -> TransitDesertApp:
    async with _mesh_server() as server:
        app = TransitDesertApp(MeshLoader(HttpMeshSource(str(server.make_url("/mesh_data")))))
        await app.fetch_mesh(code)
        return app


def test_http_source_loads_region() -> None:
    mesh = asyncio.run(_load_over_http("16"))

    assert [f.population for f in mesh.features] == [42]


def test_http_source_404_is_unavailable() -> None:
    with pytest.raises(MeshDataUnavailable):
        asyncio.run(_load_over_http("47"))


@pytest.mark.parametrize("code", ["99", "98"])
def test_http_source_server_errors_fail(code: str) -> None:
    with pytest.raises(MeshFetchFailed) as excinfo:
        asyncio.run(_load_over_http(code))

    assert not isinstance(excinfo.value, MeshDataUnavailable)


def test_http_source_transport_error_fails() -> None:
    # nothing listens on port 9 (discard) on a test machine
    loader = MeshLoader(HttpMeshSource("http://127.0.0.1:9/mesh_data"))

    with pytest.raises(MeshFetchFailed):
        asyncio.run(loader.load("16"))


def test_http_source_undecodable_body_fails() -> None:
    with pytest.raises(MeshFetchFailed) as excinfo:
        asyncio.run(_load_over_http("97"))

    assert not isinstance(excinfo.value, MeshDataUnavailable)


def test_http_source_timeout_fails() -> None:
    """A session configured with a timeout reports expiry as a fetch failure."""
    with pytest.raises(MeshFetchFailed):
        asyncio.run(_load_over_http("96", timeout=aiohttp.ClientTimeout(total=0.05)))


def test_own_session_has_no_timeout() -> None:
    assert NO_TIMEOUT.total is None


@pytest.mark.parametrize("code", ["97", "98", "99"])
def test_bad_http_response_becomes_notification(code: str) -> None:
    app = asyncio.run(_fetch_into_app(code))

    assert app.mesh is None
    assert not app.is_mesh_loading
    assert [n.message for n in app.drain_notifications()] == [MSG_MESH_UNAVAILABLE]
