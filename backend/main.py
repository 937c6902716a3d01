from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from enum import Enum
from urllib.parse import quote

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from appconfig.registry import get_config
from exporter.errors import ExportAborted, NothingToExportError, TooLargeError
from geo.aoi import BBox
from lod.reconcile import MarkerSpec
from session.context import ExportResult, MapSession
from sync.geocode import GeocodeError
from telemetry.logging_setup import setup_logging
from telemetry.singleton import close_store, get_store


log = logging.getLogger(__name__)

_session: MapSession | None = None


def get_session() -> MapSession:
    global _session
    if _session is None:
        _session = MapSession(get_config())
    return _session


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    yield
    global _session
    if _session is not None:
        await _session.aclose()
        _session = None
    close_store()


app = FastAPI(title="OpenFireMap", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ApiBbox(BaseModel):
    south: float = Field(ge=-90, le=90)
    west: float = Field(ge=-180, le=180)
    north: float = Field(ge=-90, le=90)
    east: float = Field(ge=-180, le=180)

    def to_bbox(self) -> BBox:
        try:
            return BBox(south=self.south, west=self.west, north=self.north, east=self.east)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e


class ApiView(BaseModel):
    bbox: ApiBbox
    zoom: float = Field(ge=0, le=22)


class ApiExportFormat(str, Enum):
    png = "png"
    pdf = "pdf"
    gpx = "gpx"


class ApiExportRequest(BaseModel):
    bbox: ApiBbox
    zoom: int = Field(ge=0, le=22)
    baseLayer: str | None = None
    title: str = ""


def _marker_json(spec: MarkerSpec) -> dict:
    return {
        "key": spec.key,
        "lat": spec.position.lat,
        "lon": spec.position.lon,
        "mode": spec.mode,
        "category": spec.category,
        "iconType": spec.icon_type,
        "tags": spec.tags,
    }


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.get("/status")
def session_status(session: MapSession = Depends(get_session)):
    now = session.client.clock()
    return {
        "status": session.status,
        "cachedElements": len(session.cached_elements),
        "backoffS": session.client.backoff.remaining(now),
        "endpoints": session.client.health.snapshot(),
    }


@app.get("/telemetry/summary")
def telemetry_summary(source: str | None = None, sinceMs: int | None = None):
    store = get_store()
    if store is None:
        return JSONResponse(status_code=404, content={"error": "telemetry_disabled"})
    return {
        "phases": store.summary(source=source, since_ms=sinceMs),
        "endpoints": store.endpoint_health(since_ms=sinceMs),
    }


@app.post("/view")
async def settle_view(body: ApiView, session: MapSession = Depends(get_session)):
    result = await session.settle(body.bbox.to_bbox(), body.zoom)
    plan = result.plan
    return {
        "status": result.status,
        "reason": result.reason,
        "queryKey": result.query_key,
        "elements": result.elements,
        "plan": plan.summary() if plan is not None else None,
        "markers": [_marker_json(m) for m in session.layer.markers.values()],
        "boundaries": [b.to_json() for b in session.layer.boundaries],
    }


@app.get("/view/last")
def last_view(session: MapSession = Depends(get_session)):
    return session.last_viewport().to_json()


@app.get("/geocode")
async def geocode(q: str = Query(""), session: MapSession = Depends(get_session)):
    try:
        hit = await session.search(q)
    except GeocodeError as e:
        status = 404 if e.code == "no_results" else 400
        if e.code == "bad_response":
            status = 502
        return JSONResponse(status_code=status, content={"error": e.code})
    except httpx.HTTPError as e:
        log.warning("geocoding failed: %s", e)
        return JSONResponse(status_code=502, content={"error": "unavailable"})
    return {"lat": hit.lat, "lon": hit.lon, "label": hit.label}


@app.post("/export/cancel")
def cancel_export(session: MapSession = Depends(get_session)):
    return {"cancelled": session.cancel_export()}


@app.post("/export/{fmt}")
async def export(
    fmt: ApiExportFormat, body: ApiExportRequest, session: MapSession = Depends(get_session)
):
    bbox = body.bbox.to_bbox()
    try:
        if fmt == ApiExportFormat.gpx:
            result = await session.export_gpx(bbox, body.zoom, title=body.title)
        elif fmt == ApiExportFormat.pdf:
            result = await session.export_pdf(
                bbox, body.zoom, base_layer=body.baseLayer, title=body.title
            )
        else:
            result = await session.export_png(
                bbox, body.zoom, base_layer=body.baseLayer, title=body.title
            )
    except TooLargeError as e:
        return JSONResponse(
            status_code=413,
            content={"error": "too_large", "message": str(e), "width": e.width, "height": e.height},
        )
    except ExportAborted:
        return JSONResponse(status_code=409, content={"error": "aborted"})
    except NothingToExportError as e:
        return JSONResponse(status_code=404, content={"error": "nothing_to_export", "message": str(e)})
    return _download(result)


def _download(result: ExportResult) -> Response:
    headers = {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(result.filename)}"}
    if result.artifact is not None:
        headers["X-Tiles-Failed"] = str(result.artifact.tiles_failed)
    return Response(content=result.content, media_type=result.media_type, headers=headers)
