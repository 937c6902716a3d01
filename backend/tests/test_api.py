from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from main import app, get_session


OVERPASS_PAYLOAD = {
    "elements": [
        {
            "type": "node",
            "id": 1,
            "lat": 49.5550,
            "lon": 11.3480,
            "tags": {"amenity": "fire_station", "name": "FF Musterstadt"},
        },
        {"type": "node", "id": 2, "lat": 49.5560, "lon": 11.3500, "tags": {"emergency": "fire_hydrant"}},
        {
            "type": "way",
            "id": 3,
            "geometry": [{"lat": 49.5530, "lon": 11.3490}, {"lat": 49.5580, "lon": 11.3490}],
            "tags": {"boundary": "administrative", "admin_level": "8"},
        },
    ]
}

BBOX = {"south": 49.5540, "west": 11.3460, "north": 49.5570, "east": 11.3520}


@pytest.fixture
def client(make_session, tile_png):
    def handler(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == "overpass.test":
            return httpx.Response(200, json=OVERPASS_PAYLOAD)
        if host == "nominatim.test" and request.url.path == "/search":
            q = request.url.params.get("q")
            if q == "Nowhere at all":
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=[{"lat": "49.5897", "lon": "11.0040", "display_name": q}])
        if host == "nominatim.test":
            return httpx.Response(200, json={"address": {"city": "Musterstadt"}})
        return httpx.Response(200, content=tile_png)

    session = make_session(handler)
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_healthz(client):
    assert client.get("/healthz").json() == {"ok": True}


def test_view_returns_markers_and_boundaries(client):
    resp = client.post("/view", json={"bbox": BBOX, "zoom": 16})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "current"
    assert body["reason"] == "fetch"
    assert body["plan"]["created"] == 2
    modes = {m["key"]: m["mode"] for m in body["markers"]}
    assert modes == {"node:1": "icon", "node:2": "dot"}
    assert [b["id"] for b in body["boundaries"]] == [3]

    last = client.get("/view/last").json()
    assert last["zoom"] == 16
    assert abs(last["center"][0] - 49.5555) < 1e-9


def test_view_rejects_inverted_bbox(client):
    bad = dict(BBOX, south=49.6)
    assert client.post("/view", json={"bbox": bad, "zoom": 16}).status_code == 422


def test_view_below_first_tier_is_standby(client):
    body = client.post("/view", json={"bbox": BBOX, "zoom": 10}).json()
    assert body["status"] == "standby"
    assert body["markers"] == []


def test_geocode(client):
    resp = client.get("/geocode", params={"q": "Erlangen"})
    assert resp.status_code == 200
    assert resp.json() == {"lat": 49.5897, "lon": 11.004, "label": "Erlangen"}

    short = client.get("/geocode", params={"q": "ab"})
    assert short.status_code == 400
    assert short.json() == {"error": "query_too_short"}

    none = client.get("/geocode", params={"q": "Nowhere at all"})
    assert none.status_code == 404


def test_png_export_download(client):
    resp = client.post("/export/png", json={"bbox": BBOX, "zoom": 16})
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    assert "_Z16_Musterstadt.png" in resp.headers["content-disposition"]
    assert resp.headers["x-tiles-failed"] == "0"
    assert resp.content.startswith(b"\x89PNG")


def test_export_errors_map_to_status_codes(client):
    wide = {"south": 49.40, "west": 11.00, "north": 49.60, "east": 11.50}
    too_big = client.post("/export/png", json={"bbox": wide, "zoom": 18})
    assert too_big.status_code == 413
    assert too_big.json()["error"] == "too_large"

    # Nothing loaded yet, so the GPX export has no points.
    empty = client.post("/export/gpx", json={"bbox": BBOX, "zoom": 16, "title": "x"})
    assert empty.status_code == 404

    assert client.post("/export/svg", json={"bbox": BBOX, "zoom": 16}).status_code == 422
    assert client.post("/export/cancel").json() == {"cancelled": False}


def test_gpx_after_view(client):
    client.post("/view", json={"bbox": BBOX, "zoom": 16})
    resp = client.post("/export/gpx", json={"bbox": BBOX, "zoom": 16, "title": "Übung"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/gpx+xml")
    assert b"FF Musterstadt" in resp.content


def test_status_reports_endpoint_health(client):
    client.post("/view", json={"bbox": BBOX, "zoom": 16})
    body = client.get("/status").json()
    assert body["status"] == "current"
    assert body["cachedElements"] == 3
    assert body["backoffS"] == 0.0
    assert body["endpoints"]["https://overpass.test/api/interpreter"]["lastStatus"] == 200


def test_telemetry_summary_requires_telemetry(client):
    assert client.get("/telemetry/summary").status_code == 404
