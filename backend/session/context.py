from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

import httpx

from appconfig.settings import state_path
from appconfig.types import AppConfig
from exporter.compose import ExportCompositor, RasterArtifact, plan_canvas
from exporter.document import render_pdf
from exporter.errors import ExportAborted
from exporter.gpx import build_gpx
from exporter.naming import export_filename
from geo.aoi import BBox
from lod.cluster import cluster_fire_stations
from lod.reconcile import InMemoryMarkerLayer, MarkerLayer, MarkerReconciler, ReconcilePlan
from osm.types import Element
from session.cancel import CancelToken
from session.viewport_store import Viewport, ViewportStore
from sync.cache import TTLCache, ttl_for_zoom
from sync.client import GeodataClient, make_http_client
from sync.errors import FetchCancelled, GeodataError, status_for_error
from sync.gate import RequestGate, query_key
from sync.geocode import GeocodeHit, Geocoder
from sync.query import build_query, load_mode, wants_boundaries
from telemetry.trace import emit, next_req_id


log = logging.getLogger(__name__)


@dataclass
class SettleResult:
    # standby | current | loading | waiting | superseded | err_*
    status: str
    reason: str
    query_key: str | None = None
    plan: ReconcilePlan | None = None
    elements: int = 0


@dataclass
class ExportResult:
    content: bytes
    filename: str
    media_type: str
    artifact: RasterArtifact | None = None


class MapSession:
    """
    Everything one map view owns: gate, cache, client, reconciler, cached
    elements and the two cancellation domains (live fetch, export).

    A new fetch replaces `fetch_token`, cancelling the previous one. Exports
    use their own token so panning never aborts them.
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        http: httpx.AsyncClient | None = None,
        layer: MarkerLayer | None = None,
        viewports: ViewportStore | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        jitter: Callable[[], float] | None = None,
        is_online: Callable[[], bool] | None = None,
    ) -> None:
        self.cfg = cfg
        self.http = http or make_http_client(user_agent=cfg.userAgent, timeout_s=cfg.overpassTimeoutS)
        self._sleep = sleep or asyncio.sleep

        self.cache: TTLCache[list[Element]] = TTLCache(clock=clock)
        self.gate = RequestGate(clock=clock)
        self.client = GeodataClient(
            self.http,
            self.cache,
            endpoints=cfg.overpassEndpoints,
            timeout_s=cfg.overpassTimeoutS,
            clock=clock,
            sleep=sleep,
            jitter=jitter,
            is_online=is_online,
        )
        self.geocoder = Geocoder(self.http, base_url=cfg.nominatimUrl, timeout_s=cfg.nominatimTimeoutS)
        self.layer = layer or InMemoryMarkerLayer()
        self.reconciler = MarkerReconciler(self.layer)
        self.viewports = viewports or ViewportStore(state_path(), cfg.defaultView)

        self.cached_elements: list[Element] = []
        self.fetch_token: CancelToken | None = None
        # One token per running export; only cancel_export() fires them.
        self.export_tokens: set[CancelToken] = set()
        self.status = "standby"
        self._settle_seq = 0

    async def aclose(self) -> None:
        if self.fetch_token is not None:
            self.fetch_token.cancel("session closed")
        for t in list(self.export_tokens):
            t.cancel("session closed")
        await self.http.aclose()

    # -- live map ----------------------------------------------------------

    def _render(self, zoom: float) -> ReconcilePlan:
        return self.reconciler.render(cluster_fire_stations(self.cached_elements), zoom)

    async def _remember_view(self, view: BBox, zoom: float) -> None:
        lat, lon = view.center
        try:
            vp = Viewport(lat=lat, lon=lon, zoom=int(zoom))
            await asyncio.to_thread(self.viewports.save, vp)
        except OSError:
            log.warning("could not persist last viewport", exc_info=True)

    def last_viewport(self) -> Viewport:
        return self.viewports.load()

    async def settle(self, view: BBox, zoom: float) -> SettleResult:
        """
        Handle a settled viewport (end of a pan/zoom).

        Re-renders cached data when the zoom bucket changes, then debounces and
        asks the gate whether a new query is due.
        """
        self._settle_seq += 1
        seq = self._settle_seq
        await self._remember_view(view, zoom)

        plan: ReconcilePlan | None = None
        if self.gate.render_bucket_changed(zoom) and self.cached_elements:
            plan = self._render(zoom)

        if load_mode(zoom) == "none":
            decision = self.gate.decide(view, zoom)
            if self.fetch_token is not None:
                self.fetch_token.cancel("zoomed out")
                self.fetch_token = None
            self.cached_elements = []
            plan = self.reconciler.clear()
            self.status = "standby"
            return SettleResult(status=self.status, reason=decision.reason, plan=plan)

        delay = self.gate.debounce_for(zoom)
        if delay > 0:
            await self._sleep(delay)
            if seq != self._settle_seq:
                return SettleResult(status="superseded", reason="debounced", plan=plan)

        decision = self.gate.decide(view, zoom)
        if not decision.should_fetch:
            return SettleResult(
                status=self.status,
                reason=decision.reason,
                query_key=decision.query_key,
                plan=plan,
                elements=len(self.cached_elements),
            )

        if self.fetch_token is not None:
            self.fetch_token.cancel("superseded")
        token = CancelToken("fetch")
        self.fetch_token = token
        self.status = "loading"
        req_id = next_req_id()
        emit("sync", "load_start", req_id=req_id, zoom=zoom, key=decision.query_key)

        try:
            elements = await self.client.fetch_elements(
                decision.query,
                cache_key=decision.query_key,
                ttl_s=ttl_for_zoom(zoom),
                token=token,
                req_id=req_id,
            )
        except FetchCancelled as e:
            emit("sync", "aborted", req_id=req_id, zoom=zoom)
            status = status_for_error(e)
            if self.fetch_token is token:
                self.status = status
            return SettleResult(status=status, reason="aborted", query_key=decision.query_key)
        except GeodataError as e:
            emit("sync", "load_fail", req_id=req_id, zoom=zoom, code=e.status_code, message=str(e))
            log.warning("geodata load failed: %s", e)
            # Let the next settle retry the same area.
            self.gate.forget()
            self.status = status_for_error(e)
            return SettleResult(status=self.status, reason="failed", query_key=decision.query_key)

        self.cached_elements = elements
        plan = self._render(zoom)
        self.status = "current"
        emit("sync", "load_ok", req_id=req_id, zoom=zoom, elements=len(elements), **plan.summary())
        return SettleResult(
            status=self.status,
            reason=decision.reason,
            query_key=decision.query_key,
            plan=plan,
            elements=len(elements),
        )

    async def search(self, query: str) -> GeocodeHit:
        return await self.geocoder.search(query)

    # -- export ------------------------------------------------------------

    def cancel_export(self) -> bool:
        running = [t for t in self.export_tokens if not t.cancelled]
        for t in running:
            t.cancel("cancelled by user")
        return bool(running)

    def _new_export_token(self) -> CancelToken:
        token = CancelToken("export")
        self.export_tokens.add(token)
        return token

    async def _export_elements(self, bbox: BBox, zoom: int, token: CancelToken) -> list[Element]:
        """Fresh data for the export region; the session's cached elements if that fails."""
        elements = self.cached_elements
        mode = load_mode(zoom)
        if mode != "none":
            key = "export|" + query_key(mode, wants_boundaries(zoom), bbox)
            try:
                elements = await self.client.fetch_elements(
                    build_query(bbox, zoom),
                    cache_key=key,
                    ttl_s=ttl_for_zoom(zoom),
                    token=token,
                )
            except GeodataError as e:
                log.warning("export data fetch failed, using cached elements: %s", e)
        return cluster_fire_stations(elements)

    async def _export_title(self, bbox: BBox, title: str, token: CancelToken) -> str:
        title = (title or "").strip()
        if title:
            return title
        lat, lon = bbox.center
        return await self.geocoder.reverse_title(lat, lon, token=token)

    async def export_raster(
        self, bbox: BBox, zoom: int, *, base_layer: str | None = None, title: str = ""
    ) -> RasterArtifact:
        _, basemap = self.cfg.basemap(base_layer)
        z = min(int(zoom), basemap.maxZoom)
        # Size guard first: no data, geocoding or tile request for oversized exports.
        plan_canvas(bbox, z, self.cfg)

        token = self._new_export_token()
        try:
            try:
                elements = await self._export_elements(bbox, z, token)
                resolved = await self._export_title(bbox, title, token)
            except FetchCancelled as e:
                raise ExportAborted("export cancelled") from e

            compositor = ExportCompositor(self.http, self.cfg)
            return await compositor.compose(
                bbox, z, elements, base_layer, token=token, title=resolved
            )
        finally:
            self.export_tokens.discard(token)

    async def export_png(self, bbox: BBox, zoom: int, **kwargs) -> ExportResult:
        artifact = await self.export_raster(bbox, zoom, **kwargs)
        return ExportResult(
            content=artifact.to_png(),
            filename=export_filename(artifact.title, artifact.zoom, now=artifact.created_at, ext="png"),
            media_type="image/png",
            artifact=artifact,
        )

    async def export_pdf(self, bbox: BBox, zoom: int, **kwargs) -> ExportResult:
        artifact = await self.export_raster(bbox, zoom, **kwargs)
        return ExportResult(
            content=render_pdf(artifact),
            filename=export_filename(artifact.title, artifact.zoom, now=artifact.created_at, ext="pdf"),
            media_type="application/pdf",
            artifact=artifact,
        )

    async def export_gpx(self, bbox: BBox, zoom: int, *, title: str = "") -> ExportResult:
        elements = cluster_fire_stations(self.cached_elements)
        token = self._new_export_token()
        try:
            resolved = await self._export_title(bbox, title, token)
        except FetchCancelled as e:
            raise ExportAborted("export cancelled") from e
        finally:
            self.export_tokens.discard(token)
        now = datetime.now()
        content = build_gpx(elements, bbox, title=resolved, now=now)
        return ExportResult(
            content=content,
            filename=export_filename(resolved, zoom, now=now, ext="gpx"),
            media_type="application/gpx+xml",
        )
