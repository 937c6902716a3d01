from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from PIL import Image, ImageColor, ImageDraw

from appconfig.types import Colors
from exporter.fonts import load_font


SCALE_BAR_CANDIDATES_M = (1000, 500, 250, 100, 50)
SCALE_BAR_FALLBACK_M = 100
SCALE_BAR_MAX_FRACTION = 0.3

_FRAME = (15, 23, 42, 51)
_ATTRIBUTION = "#64748b"


@dataclass(frozen=True)
class MapRect:
    """Map area inside the canvas, in canvas pixels."""

    left: int
    top: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height

    @property
    def center_x(self) -> float:
        return self.left + self.width / 2.0


def choose_scale_bar(m_per_px: float, map_width_px: int) -> tuple[int, float]:
    """Largest nice distance whose bar fits in 30% of the map width; 100 m otherwise."""
    for d in SCALE_BAR_CANDIDATES_M:
        w = d / m_per_px
        if w <= map_width_px * SCALE_BAR_MAX_FRACTION:
            return d, w
    return SCALE_BAR_FALLBACK_M, SCALE_BAR_FALLBACK_M / m_per_px


def date_line(now: datetime, zoom: int, m_per_px: float) -> str:
    return f"Date: {now.strftime('%B %Y')} | Resolution: Zoom {zoom} (~{m_per_px:.2f} m/px)"


def draw_header(
    canvas: Image.Image,
    rect: MapRect,
    *,
    colors: Colors,
    title: str,
    subtitle: str,
    attribution: str,
    band_px: int = 170,
) -> None:
    band_h = min(band_px, rect.height)
    overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    od = ImageDraw.Draw(overlay)
    od.rectangle(
        (rect.left, rect.top, rect.right, rect.top + band_h), fill=tuple(colors.bgHeader)
    )
    canvas.alpha_composite(overlay)

    draw = ImageDraw.Draw(canvas)
    draw.rectangle((rect.left, rect.top, rect.right, rect.top + band_h), outline=_FRAME, width=3)
    draw.rectangle((rect.left, rect.top + band_h, rect.right, rect.bottom), outline=_FRAME, width=3)

    cx = rect.center_x
    draw.text(
        (cx, rect.top + 55),
        title,
        font=load_font(44, bold=True),
        fill=ImageColor.getcolor(colors.textMain, "RGBA"),
        anchor="ms",
    )
    draw.text(
        (cx, rect.top + 95),
        subtitle,
        font=load_font(22),
        fill=ImageColor.getcolor(colors.textSub, "RGBA"),
        anchor="ms",
    )
    draw.text(
        (cx, rect.top + 125),
        attribution or "© OpenStreetMap",
        font=load_font(16, italic=True),
        fill=ImageColor.getcolor(_ATTRIBUTION, "RGBA"),
        anchor="ms",
    )


def draw_scale_bar(canvas: Image.Image, rect: MapRect, *, m_per_px: float) -> tuple[int, float]:
    dist_m, width = choose_scale_bar(m_per_px, rect.width)
    sx = rect.left + rect.width - width - 40
    sy = rect.top + rect.height - 40

    overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    ImageDraw.Draw(overlay).rectangle(
        (sx - 10, sy - 50, sx + width + 10, sy + 10), fill=(255, 255, 255, 204)
    )
    canvas.alpha_composite(overlay)

    draw = ImageDraw.Draw(canvas)
    ink = ImageColor.getcolor("#0f172a", "RGBA")
    draw.line(
        [(sx, sy - 10), (sx, sy), (sx + width, sy), (sx + width, sy - 10)],
        fill=ink,
        width=3,
        joint="curve",
    )
    draw.text(
        (sx + width / 2.0, sy - 15), f"{dist_m} m", font=load_font(18, bold=True), fill=ink, anchor="ms"
    )
    return dist_m, width


def draw_footer(
    canvas: Image.Image,
    rect: MapRect,
    *,
    colors: Colors,
    product_name: str,
    now: datetime,
    footer_px: int = 60,
) -> None:
    draw = ImageDraw.Draw(canvas)
    y = rect.bottom + footer_px / 2.0 + 10
    font = load_font(16)
    fill = ImageColor.getcolor(colors.textSub, "RGBA")
    draw.text((rect.left, y), product_name, font=font, fill=fill, anchor="ls")
    draw.text((rect.right, y), now.strftime("%d.%m.%Y, %H:%M"), font=font, fill=fill, anchor="rs")
