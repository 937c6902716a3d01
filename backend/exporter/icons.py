from __future__ import annotations

from PIL import Image, ImageColor, ImageDraw

from appconfig.types import Colors
from exporter.fonts import load_font
from osm.tags import HYDRANT_LETTERS, WATER_TYPES


# Icons are designed on a 100x100 grid and drawn supersampled, then downscaled.
_GRID = 100
_SUPERSAMPLE = 4
_WHITE = (255, 255, 255, 255)


def _rgba(color: str) -> tuple[int, int, int, int]:
    return ImageColor.getcolor(color, "RGBA")


class IconFactory:
    """
    Raster marker icons generated on demand.

    The cache lives on the instance; create one factory per export.
    """

    def __init__(self, colors: Colors, *, size_px: int = 32) -> None:
        self.colors = colors
        self.size_px = int(size_px)
        self._cache: dict[str, Image.Image] = {}

    def get(self, icon_type: str) -> Image.Image:
        img = self._cache.get(icon_type)
        if img is None:
            img = self._render(icon_type)
            self._cache[icon_type] = img
        return img

    def _render(self, icon_type: str) -> Image.Image:
        s = _SUPERSAMPLE
        canvas = Image.new("RGBA", (_GRID * s, _GRID * s), (0, 0, 0, 0))
        draw = ImageDraw.Draw(canvas)

        def p(*xy: float) -> list[float]:
            return [v * s for v in xy]

        if icon_type == "station":
            draw.polygon(
                p(10, 40, 50, 5, 90, 40, 90, 90, 10, 90),
                fill=_rgba(self.colors.station),
                outline=_WHITE,
                width=4 * s,
            )
            draw.rounded_rectangle(p(30, 55, 70, 90), radius=2 * s, fill=(255, 255, 255, 230))
        elif icon_type == "defibrillator":
            green = _rgba(self.colors.defib)
            draw.ellipse(p(5, 5, 95, 95), fill=green, outline=_WHITE, width=5 * s)
            # heart: two lobes and a point
            draw.ellipse(p(22, 24, 50, 52), fill=_WHITE)
            draw.ellipse(p(50, 24, 78, 52), fill=_WHITE)
            draw.polygon(p(23, 44, 77, 44, 50, 80), fill=_WHITE)
            draw.line(p(55, 45, 45, 55, 55, 55, 45, 65), fill=green, width=3 * s)
        else:
            color = _rgba(self.colors.water if icon_type in WATER_TYPES else self.colors.hydrant)
            draw.ellipse(p(5, 5, 95, 95), fill=color, outline=_WHITE, width=5 * s)
            if icon_type == "wall":
                draw.ellipse(p(24, 34, 60, 70), outline=_WHITE, width=6 * s)
                draw.line(p(64, 34, 64, 70), fill=_WHITE, width=6 * s)
            else:
                letter = HYDRANT_LETTERS.get(icon_type, "")
                if letter:
                    font = load_font(50 * s, bold=True)
                    draw.text(p(50, 52), letter, font=font, fill=_WHITE, anchor="mm")

        return canvas.resize((self.size_px, self.size_px), resample=Image.Resampling.LANCZOS)
