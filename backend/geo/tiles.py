from __future__ import annotations

import math
from functools import lru_cache

from pyproj import Transformer

from geo.aoi import BBox


TILE_SIZE = 256
EARTH_RADIUS_EQUATOR_M = 6378137.0

_MAX_MERCATOR_LAT = 85.05112878
_MERCATOR_HALF_WORLD_M = math.pi * EARTH_RADIUS_EQUATOR_M


def lon2tile(lon: float, zoom: int) -> float:
    """Fractional slippy-tile x for a longitude."""
    return (float(lon) + 180.0) / 360.0 * (2 ** int(zoom))


def lat2tile(lat: float, zoom: int) -> float:
    """Fractional slippy-tile y for a latitude (clamped to Web Mercator limits)."""
    lat = max(-_MAX_MERCATOR_LAT, min(_MAX_MERCATOR_LAT, float(lat)))
    lat_rad = math.radians(lat)
    return (
        (1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi)
        / 2.0
        * (2 ** int(zoom))
    )


def tile_range(zoom: int, bbox: BBox) -> tuple[int, int, int, int]:
    """
    Inclusive (x1, y1, x2, y2) tile range covering the bbox.

    NW corner gives the top-left tile, SE corner the bottom-right one.
    """
    x1 = int(math.floor(lon2tile(bbox.west, zoom)))
    y1 = int(math.floor(lat2tile(bbox.north, zoom)))
    x2 = int(math.floor(lon2tile(bbox.east, zoom)))
    y2 = int(math.floor(lat2tile(bbox.south, zoom)))
    return x1, y1, x2, y2


def meters_per_pixel(lat: float, zoom: int) -> float:
    """Ground resolution of a 256px tile pixel at the given latitude."""
    return (
        math.cos(math.radians(float(lat)))
        * 2.0
        * math.pi
        * EARTH_RADIUS_EQUATOR_M
        / (TILE_SIZE * 2 ** int(zoom))
    )


@lru_cache(maxsize=1)
def transformer_4326_to_3857() -> Transformer:
    return Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)


def world_pixel(lat: float, lon: float, zoom: int) -> tuple[float, float]:
    """
    Global pixel coordinates (origin at the NW corner of tile 0/0) at zoom.

    Projected through EPSG:3857 so the result lines up with raster tiles.
    """
    lat = max(-_MAX_MERCATOR_LAT, min(_MAX_MERCATOR_LAT, float(lat)))
    mx, my = transformer_4326_to_3857().transform(float(lon), lat)
    world_px = TILE_SIZE * 2 ** int(zoom)
    px = (mx + _MERCATOR_HALF_WORLD_M) / (2.0 * _MERCATOR_HALF_WORLD_M) * world_px
    py = (_MERCATOR_HALF_WORLD_M - my) / (2.0 * _MERCATOR_HALF_WORLD_M) * world_px
    return float(px), float(py)
