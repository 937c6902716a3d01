from __future__ import annotations

import asyncio
import xml.etree.ElementTree as ET
from datetime import datetime

import httpx
import pytest

from exporter.compose import ExportCompositor, plan_canvas
from exporter.document import page_placement
from exporter.errors import ExportAborted, NothingToExportError, TooLargeError
from exporter.gpx import GPX_NS, build_gpx, waypoint_name
from exporter.layout import choose_scale_bar, date_line
from exporter.naming import export_filename, safe_title
from exporter.tiles import fetch_tiles, tile_url
from geo.aoi import BBox
from osm.types import Element, Position
from session.cancel import CancelToken


REGION = BBox(south=49.5540, west=11.3460, north=49.5570, east=11.3520)

OVERPASS_PAYLOAD = {
    "elements": [
        {
            "type": "node",
            "id": 1,
            "lat": 49.5550,
            "lon": 11.3480,
            "tags": {"amenity": "fire_station", "name": "FF Musterstadt"},
        },
        {
            "type": "node",
            "id": 2,
            "lat": 49.5560,
            "lon": 11.3500,
            "tags": {"emergency": "fire_hydrant", "fire_hydrant:type": "underground"},
        },
        {
            "type": "way",
            "id": 3,
            "geometry": [{"lat": 49.5530, "lon": 11.3490}, {"lat": 49.5580, "lon": 11.3490}],
            "tags": {"boundary": "administrative", "admin_level": "8"},
        },
    ]
}


def node(id: int, lat: float, lon: float, **tags: str) -> Element:
    return Element(kind="node", id=id, position=Position(lat, lon), tags=dict(tags))


def _router(tile_png: bytes, calls: list[str], *, title: dict | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.host)
        if request.url.host == "overpass.test":
            return httpx.Response(200, json=OVERPASS_PAYLOAD)
        if request.url.host == "nominatim.test":
            return httpx.Response(200, json={"address": title or {"town": "Musterstadt", "suburb": "Nord"}})
        return httpx.Response(200, content=tile_png, headers={"Content-Type": "image/png"})

    return handler


def test_plan_canvas_rejects_oversized_regions(ofm_config):
    wide = BBox(south=49.40, west=11.00, north=49.60, east=11.50)
    with pytest.raises(TooLargeError) as ei:
        plan_canvas(wide, 18, ofm_config)
    assert ei.value.width > ofm_config.export.maxCanvasPx

    # Small enough in pixels at z12, but over the 30 km edge limit.
    with pytest.raises(TooLargeError):
        plan_canvas(wide, 12, ofm_config)

    plan = plan_canvas(REGION, 16, ofm_config)
    assert plan.width == plan.tiles_x * 256 + 2 * ofm_config.export.marginPx
    assert plan.height == plan.tiles_y * 256 + 2 * ofm_config.export.marginPx + ofm_config.export.footerPx
    assert len(plan.tiles()) == plan.tiles_x * plan.tiles_y


def test_compositor_walks_states_and_counts_failed_tiles(ofm_config, tile_png):
    plan = plan_canvas(REGION, 16, ofm_config)
    z, x, y = plan.tiles()[0]
    broken = f"/{z}/{x}/{y}.png"

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == broken:
            return httpx.Response(500)
        return httpx.Response(200, content=tile_png)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            comp = ExportCompositor(http, ofm_config)
            from osm.decode import decode_elements

            art = await comp.compose(
                REGION,
                16,
                decode_elements(OVERPASS_PAYLOAD),
                None,
                token=CancelToken(),
                title="Musterstadt",
                now=datetime(2024, 3, 5, 14, 7),
            )
            return comp, art

    comp, art = asyncio.run(run())
    assert comp.states == [
        "locating",
        "fetchingTiles",
        "renderingBoundaries",
        "renderingMarkers",
        "layoutFinalize",
        "done",
    ]
    assert (art.width, art.height) == (plan.width, plan.height)
    assert art.tiles_total == len(plan.tiles())
    assert art.tiles_failed == 1
    assert art.base_layer == "test"
    assert art.title == "Musterstadt"
    assert art.to_png().startswith(b"\x89PNG")
    assert art.to_jpeg().startswith(b"\xff\xd8")


def test_cancel_stops_tile_dispatch(ofm_config, tile_png):
    region = BBox(south=49.5400, west=11.3300, north=49.5520, east=11.3600)
    plan = plan_canvas(region, 17, ofm_config)
    assert len(plan.tiles()) > ofm_config.export.tileConcurrency
    requested: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url.path)
        await asyncio.sleep(2)
        return httpx.Response(200, content=tile_png)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            comp = ExportCompositor(http, ofm_config)
            token = CancelToken("export")
            asyncio.get_running_loop().call_later(0.05, token.cancel)
            with pytest.raises(ExportAborted):
                await comp.compose(region, 17, [], None, token=token)
            return comp

    comp = asyncio.run(run())
    assert comp.state == "aborted"
    assert "layoutFinalize" not in comp.states
    assert len(requested) == ofm_config.export.tileConcurrency


def test_session_png_export_uses_reverse_geocoded_title(make_session, tile_png):
    calls: list[str] = []
    session = make_session(_router(tile_png, calls))

    result = asyncio.run(session.export_png(REGION, 16))
    assert result.content.startswith(b"\x89PNG")
    assert result.filename.endswith("_Z16_Musterstadt_-_Nord.png")
    assert result.artifact.tiles_failed == 0
    assert calls.count("overpass.test") == 1
    assert calls.count("nominatim.test") == 1


def test_session_pdf_export_keeps_user_title_and_clamps_zoom(make_session, tile_png):
    calls: list[str] = []
    session = make_session(_router(tile_png, calls))

    result = asyncio.run(session.export_pdf(REGION, 18, base_layer="satellite", title="Übung 3"))
    assert result.content.startswith(b"%PDF")
    assert result.media_type == "application/pdf"
    assert result.artifact.zoom == 17
    assert result.filename.endswith("_Z17_Übung_3.pdf")
    assert "nominatim.test" not in calls


def test_session_too_large_export_makes_no_requests(make_session, tile_png):
    calls: list[str] = []
    session = make_session(_router(tile_png, calls))
    wide = BBox(south=49.40, west=11.00, north=49.60, east=11.50)

    with pytest.raises(TooLargeError):
        asyncio.run(session.export_png(wide, 18))
    assert calls == []


def test_session_cancel_export(make_session, tile_png):
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "overpass.test":
            return httpx.Response(200, json=OVERPASS_PAYLOAD)
        await asyncio.sleep(2)
        return httpx.Response(200, content=tile_png)

    session = make_session(handler)

    async def run():
        task = asyncio.create_task(session.export_png(REGION, 16, title="x"))
        await asyncio.sleep(0.05)
        assert session.cancel_export() is True
        with pytest.raises(ExportAborted):
            await task

    asyncio.run(run())
    assert session.cancel_export() is False


def test_gpx_waypoints():
    els = [
        node(1, 49.555, 11.348, amenity="fire_station", name="FF Musterstadt"),
        node(2, 49.556, 11.350, emergency="fire_hydrant", ref="12"),
        node(3, 49.556, 11.351, emergency="fire_hydrant", **{"fire_hydrant:type": "pillar"}),
        node(4, 49.556, 11.352, emergency="defibrillator"),
        node(5, 48.000, 11.000, emergency="fire_hydrant"),
        node(6, 49.556, 11.349, shop="bakery"),
    ]
    data = build_gpx(els, REGION, title="Test", now=datetime(2024, 3, 5, 14, 7))
    root = ET.fromstring(data)
    ns = {"g": GPX_NS}

    assert root.get("version") == "1.1"
    assert root.find("g:metadata/g:name", ns).text == "Test"
    names = [w.find("g:name", ns).text for w in root.findall("g:wpt", ns)]
    assert names == ["FF Musterstadt", "H 12", "H pillar", "Defibrillator"]
    syms = [w.find("g:sym", ns).text for w in root.findall("g:wpt", ns)]
    assert syms[0] == "Fire Station" and syms[1] == "Hydrant"

    assert waypoint_name({"amenity": "fire_station", "ref": "3"}) == "Station 3"


def test_gpx_with_nothing_to_export():
    with pytest.raises(NothingToExportError):
        build_gpx([node(1, 49.555, 11.348, shop="bakery")], REGION)


def test_session_gpx_export_uses_cached_elements(make_session, tile_png):
    session = make_session(_router(tile_png, []))
    with pytest.raises(NothingToExportError):
        asyncio.run(session.export_gpx(REGION, 16, title="Test"))

    session.cached_elements = [node(1, 49.555, 11.348, emergency="fire_hydrant")]
    result = asyncio.run(session.export_gpx(REGION, 16, title="Test"))
    assert result.filename.endswith("_Z16_Test.gpx")
    assert b"<wpt" in result.content


def test_filenames_and_layout_helpers():
    now = datetime(2024, 3, 5, 14, 7)
    assert export_filename("Erlangen - Tennenlohe", 16, now=now, ext="png") == (
        "2024-03-05_14-07_Z16_Erlangen_-_Tennenlohe.png"
    )
    assert safe_title("a.b:c/d e") == "a_b_c_d_e"
    assert safe_title("") == "OpenFireMap_Export"

    assert date_line(now, 16, 1.5) == "Date: March 2024 | Resolution: Zoom 16 (~1.50 m/px)"
    assert choose_scale_bar(2.0, 2000) == (1000, 500.0)
    assert choose_scale_bar(10.0, 200) == (500, 50.0)
    assert choose_scale_bar(1.0, 100) == (100, 100.0)

    assert tile_url("https://{s}.t/{z}/{x}/{y}{r}.png", 16, 3, 4, ["a", "b", "c"]) == "https://b.t/16/3/4.png"


def test_pdf_page_placement_is_centered():
    x, y, w, h = page_placement(2000, 1000, 842.0, 595.0)
    assert w == 842.0
    assert abs(h - 421.0) < 1e-9
    assert x == 0.0
    assert abs(y - (595.0 - 421.0) / 2.0) < 1e-9


def test_unexpected_tile_errors_leave_blank_cells(tile_png):
    tiles = [(16, x, 22000) for x in range(34800, 34804)]

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/16/34800/22000.png":
            raise RuntimeError("transport blew up")
        if request.url.path == "/16/34801/22000.png":
            return httpx.Response(200, content=b"not an image")
        return httpx.Response(200, content=tile_png)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            return await fetch_tiles(
                http, "https://tiles.test/{z}/{x}/{y}.png", tiles, token=CancelToken(), concurrency=2
            )

    batch = asyncio.run(run())
    assert batch.requested == 4
    assert batch.failed == 2
    assert sorted(x for x, _, _ in batch.images) == [34802, 34803]


def test_second_export_does_not_abort_the_first(make_session, tile_png):
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "overpass.test":
            return httpx.Response(200, json=OVERPASS_PAYLOAD)
        await asyncio.sleep(0.02)
        return httpx.Response(200, content=tile_png)

    session = make_session(handler)

    async def run():
        first = asyncio.create_task(session.export_png(REGION, 16, title="Erster"))
        await asyncio.sleep(0.01)
        second = await session.export_pdf(REGION, 16, title="Zweiter")
        return await first, second

    first, second = asyncio.run(run())
    assert first.artifact.title == "Erster"
    assert first.artifact.tiles_failed == 0
    assert second.content.startswith(b"%PDF")
    assert session.export_tokens == set()
    assert session.cancel_export() is False
