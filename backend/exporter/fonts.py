from __future__ import annotations

from functools import lru_cache

from PIL import ImageFont


_FACES = {
    (False, False): ("DejaVuSans.ttf", "Arial.ttf", "LiberationSans-Regular.ttf"),
    (True, False): ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "LiberationSans-Bold.ttf"),
    (False, True): ("DejaVuSans-Oblique.ttf", "Arial Italic.ttf", "LiberationSans-Italic.ttf"),
    (True, True): ("DejaVuSans-BoldOblique.ttf", "LiberationSans-BoldItalic.ttf"),
}


@lru_cache(maxsize=32)
def load_font(size: int, *, bold: bool = False, italic: bool = False) -> ImageFont.FreeTypeFont:
    """Best available sans face at `size` px; Pillow's bundled font if none is installed."""
    for name in _FACES[(bold, italic)]:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)
