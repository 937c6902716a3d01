from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

import httpx
from PIL import Image, ImageColor, ImageDraw
from shapely.geometry import LineString, box

from appconfig.types import AppConfig, Basemap
from exporter.errors import ExportAborted, TooLargeError
from exporter.icons import IconFactory
from exporter.layout import MapRect, date_line, draw_footer, draw_header, draw_scale_bar
from exporter.tiles import fetch_tiles
from geo.aoi import BBox
from geo.ops import bbox_extent_km
from geo.tiles import TILE_SIZE, meters_per_pixel, tile_range, world_pixel
from lod.policy import BOUNDARY_MIN_ZOOM
from lod.reconcile import MarkerSpec, desired_markers
from osm.types import Element
from session.cancel import CancelToken
from sync.errors import FetchCancelled
from telemetry.trace import emit


log = logging.getLogger(__name__)

ExportState = Literal[
    "locating",
    "fetchingTiles",
    "renderingBoundaries",
    "renderingMarkers",
    "layoutFinalize",
    "done",
    "aborted",
    "failed",
]

_DASH = (10, 10)
_DOT_OUTLINE = (15, 23, 42, 255)


@dataclass(frozen=True)
class CanvasPlan:
    zoom: int
    x1: int
    y1: int
    x2: int
    y2: int
    margin: int
    footer: int
    m_per_px: float

    @property
    def tiles_x(self) -> int:
        return self.x2 - self.x1 + 1

    @property
    def tiles_y(self) -> int:
        return self.y2 - self.y1 + 1

    @property
    def map_width(self) -> int:
        return self.tiles_x * TILE_SIZE

    @property
    def map_height(self) -> int:
        return self.tiles_y * TILE_SIZE

    @property
    def width(self) -> int:
        return self.map_width + 2 * self.margin

    @property
    def height(self) -> int:
        return self.map_height + self.margin + self.footer + self.margin

    @property
    def map_rect(self) -> MapRect:
        return MapRect(left=self.margin, top=self.margin, width=self.map_width, height=self.map_height)

    def tiles(self) -> list[tuple[int, int, int]]:
        return [
            (self.zoom, x, y)
            for x in range(self.x1, self.x2 + 1)
            for y in range(self.y1, self.y2 + 1)
        ]

    def to_map_px(self, lat: float, lon: float) -> tuple[float, float]:
        """Pixel position inside the map area (origin at the NW corner of tile x1/y1)."""
        wx, wy = world_pixel(lat, lon, self.zoom)
        return wx - self.x1 * TILE_SIZE, wy - self.y1 * TILE_SIZE


def plan_canvas(bbox: BBox, zoom: int, cfg: AppConfig) -> CanvasPlan:
    """
    Tile span and canvas size for an export, raising TooLargeError before any work.
    """
    settings = cfg.export
    z = int(zoom)
    x1, y1, x2, y2 = tile_range(z, bbox)
    plan = CanvasPlan(
        zoom=z,
        x1=x1,
        y1=y1,
        x2=x2,
        y2=y2,
        margin=settings.marginPx,
        footer=settings.footerPx,
        m_per_px=meters_per_pixel(bbox.center[0], z),
    )
    limit = settings.maxCanvasPx
    if plan.width > limit or plan.height > limit:
        raise TooLargeError(
            f"export too large: {plan.width}x{plan.height}px (>{limit}px)",
            width=plan.width,
            height=plan.height,
        )
    max_km = settings.zoomLimitsKm.get(z)
    if max_km is not None:
        w_km, h_km = bbox_extent_km(bbox)
        if max(w_km, h_km) > max_km:
            raise TooLargeError(
                f"export region {w_km:.1f}x{h_km:.1f}km exceeds {max_km}km at zoom {z}",
                width=plan.width,
                height=plan.height,
            )
    return plan


@dataclass
class RasterArtifact:
    image: Image.Image
    zoom: int
    title: str
    base_layer: str
    m_per_px: float
    tiles_total: int
    tiles_failed: int
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    def to_png(self) -> bytes:
        buf = io.BytesIO()
        self.image.save(buf, format="PNG", optimize=True)
        return buf.getvalue()

    def to_jpeg(self, quality: int = 85) -> bytes:
        buf = io.BytesIO()
        self.image.convert("RGB").save(buf, format="JPEG", quality=quality)
        return buf.getvalue()


def _dashed_polyline(
    draw: ImageDraw.ImageDraw,
    coords: list[tuple[float, float]],
    *,
    fill,
    width: int,
    dash: tuple[int, int] = _DASH,
) -> None:
    # Dash phase carries over segment joints, like a canvas line dash.
    on, off = dash
    period = on + off
    phase = 0.0
    for (ax, ay), (bx, by) in zip(coords, coords[1:]):
        seg = math.hypot(bx - ax, by - ay)
        if seg == 0:
            continue
        ux, uy = (bx - ax) / seg, (by - ay) / seg
        pos = 0.0
        while pos < seg:
            in_cycle = phase % period
            if in_cycle < on:
                step = min(on - in_cycle, seg - pos)
                draw.line(
                    [(ax + ux * pos, ay + uy * pos), (ax + ux * (pos + step), ay + uy * (pos + step))],
                    fill=fill,
                    width=width,
                )
            else:
                step = min(period - in_cycle, seg - pos)
            pos += step
            phase += step


def _clip_lines(coords: list[tuple[float, float]], width: int, height: int) -> list[list[tuple[float, float]]]:
    if len(coords) < 2:
        return []
    clipped = LineString(coords).intersection(box(0, 0, width, height))
    if clipped.is_empty:
        return []
    parts = getattr(clipped, "geoms", [clipped])
    return [list(p.coords) for p in parts if isinstance(p, LineString) and len(p.coords) >= 2]


class ExportCompositor:
    """
    Renders a region into a laid-out raster: tiles, boundaries, markers, title band,
    scale bar and footer.

    One compositor per export; `states` records the state machine transitions.
    """

    def __init__(self, http: httpx.AsyncClient, cfg: AppConfig) -> None:
        self._http = http
        self.cfg = cfg
        self.states: list[ExportState] = []

    @property
    def state(self) -> ExportState | None:
        return self.states[-1] if self.states else None

    def _set_state(self, s: ExportState) -> None:
        self.states.append(s)
        emit("export", s)

    async def compose(
        self,
        bbox: BBox,
        zoom: int,
        elements: list[Element],
        base_layer: str | None,
        *,
        token: CancelToken,
        title: str = "",
        now: datetime | None = None,
    ) -> RasterArtifact:
        self._set_state("locating")
        try:
            layer_key, basemap = self.cfg.basemap(base_layer)
            plan = plan_canvas(bbox, min(int(zoom), basemap.maxZoom), self.cfg)
            token.raise_if_cancelled()
            artifact = await self._render(plan, bbox, elements, layer_key, basemap, token, title, now)
        except FetchCancelled as e:
            self._set_state("aborted")
            raise ExportAborted("export cancelled") from e
        except Exception:
            self._set_state("failed")
            raise
        self._set_state("done")
        return artifact

    async def _render(
        self,
        plan: CanvasPlan,
        bbox: BBox,
        elements: list[Element],
        layer_key: str,
        basemap: Basemap,
        token: CancelToken,
        title: str,
        now: datetime | None,
    ) -> RasterArtifact:
        settings = self.cfg.export
        now = now or datetime.now()

        self._set_state("fetchingTiles")
        batch = await fetch_tiles(
            self._http,
            basemap.url,
            plan.tiles(),
            token=token,
            concurrency=settings.tileConcurrency,
            subdomains=basemap.subdomains,
            timeout_s=settings.tileTimeoutS,
        )
        if batch.failed:
            log.warning("export: %d/%d tiles failed", batch.failed, batch.requested)

        # Everything map-related is drawn on its own layer, which clips to the map area.
        map_layer = Image.new("RGBA", (plan.map_width, plan.map_height), (255, 255, 255, 255))
        for x, y, img in batch.images:
            map_layer.paste(img, ((x - plan.x1) * TILE_SIZE, (y - plan.y1) * TILE_SIZE))

        token.raise_if_cancelled()
        self._set_state("renderingBoundaries")
        self._draw_boundaries(map_layer, plan, elements, satellite=(layer_key == "satellite"))

        token.raise_if_cancelled()
        self._set_state("renderingMarkers")
        specs, _ = desired_markers(elements, plan.zoom)
        self._draw_markers(map_layer, plan, list(specs.values()))

        token.raise_if_cancelled()
        self._set_state("layoutFinalize")
        canvas = Image.new("RGBA", (plan.width, plan.height), (255, 255, 255, 255))
        canvas.paste(map_layer, (plan.margin, plan.margin))
        rect = plan.map_rect
        display_title = title or settings.defaultTitle
        draw_header(
            canvas,
            rect,
            colors=self.cfg.colors,
            title=display_title,
            subtitle=date_line(now, plan.zoom, plan.m_per_px),
            attribution=basemap.textAttr,
            band_px=settings.headerPx,
        )
        draw_scale_bar(canvas, rect, m_per_px=plan.m_per_px)
        draw_footer(
            canvas,
            rect,
            colors=self.cfg.colors,
            product_name=settings.productName,
            now=now,
            footer_px=settings.footerPx,
        )
        return RasterArtifact(
            image=canvas,
            zoom=plan.zoom,
            title=display_title,
            base_layer=layer_key,
            m_per_px=plan.m_per_px,
            tiles_total=len(plan.tiles()),
            tiles_failed=batch.failed,
            created_at=now,
        )

    def _draw_boundaries(
        self, layer: Image.Image, plan: CanvasPlan, elements: list[Element], *, satellite: bool
    ) -> None:
        if plan.zoom < BOUNDARY_MIN_ZOOM:
            return
        colors = self.cfg.colors
        color = ImageColor.getcolor(colors.boundsSatellite if satellite else colors.bounds, "RGBA")
        width = 3 if satellite else 1
        draw = ImageDraw.Draw(layer)
        for el in elements:
            if el.tags.get("boundary") != "administrative" or not el.geometry:
                continue
            coords = [plan.to_map_px(p.lat, p.lon) for p in el.geometry]
            for part in _clip_lines(coords, plan.map_width, plan.map_height):
                _dashed_polyline(draw, part, fill=color, width=width)

    def _draw_markers(self, layer: Image.Image, plan: CanvasPlan, specs: list[MarkerSpec]) -> None:
        settings = self.cfg.export
        colors = self.cfg.colors
        icons = IconFactory(colors, size_px=settings.iconPx)
        draw = ImageDraw.Draw(layer)
        r = settings.dotRadiusPx
        half = settings.iconPx / 2.0

        for spec in specs:
            px, py = plan.to_map_px(spec.position.lat, spec.position.lon)
            if px < -half or py < -half or px > plan.map_width + half or py > plan.map_height + half:
                continue
            if spec.mode == "icon":
                icon = icons.get(spec.icon_type)
                layer.paste(icon, (int(round(px - half)), int(round(py - half))), icon)
                continue
            if spec.category == "station":
                draw.rectangle(
                    (px - r, py - r, px + r, py + r),
                    fill=ImageColor.getcolor(colors.station, "RGBA"),
                    outline=(255, 255, 255, 255),
                )
                continue
            fill = {
                "defibrillator": colors.defib,
                "water": colors.water,
            }.get(spec.category, colors.hydrant)
            draw.ellipse(
                (px - r, py - r, px + r, py + r),
                fill=ImageColor.getcolor(fill, "RGBA"),
                outline=_DOT_OUTLINE,
            )
