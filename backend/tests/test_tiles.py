from __future__ import annotations

import math

from geo.aoi import BBox
from geo.tiles import TILE_SIZE, lat2tile, lon2tile, meters_per_pixel, tile_range, world_pixel


def test_tile_range_is_stable_within_same_tile():
    z = 14
    # Erlangen-ish.
    x = math.floor(lon2tile(11.0044, z))
    y = math.floor(lat2tile(49.5981, z))
    # Tile center, so the tiny AOIs never straddle a tile edge.
    lon = (x + 0.5) / 2**z * 360.0 - 180.0
    lat = math.degrees(math.atan(math.sinh(math.pi * (1.0 - 2.0 * (y + 0.5) / 2**z))))

    a0 = BBox(south=lat - 0.0002, west=lon - 0.0002, north=lat + 0.0002, east=lon + 0.0002)
    a1 = BBox(south=lat - 0.0001, west=lon - 0.0003, north=lat + 0.0003, east=lon + 0.0001)
    assert tile_range(z, a0) == (x, y, x, y)
    assert tile_range(z, a1) == (x, y, x, y)


def test_tile_range_uses_nw_and_se_corners():
    z = 15
    bbox = BBox(south=49.55, west=11.30, north=49.57, east=11.36)
    x1, y1, x2, y2 = tile_range(z, bbox)

    assert x1 == math.floor(lon2tile(bbox.west, z))
    assert x2 == math.floor(lon2tile(bbox.east, z))
    # Tile y grows southwards.
    assert y1 == math.floor(lat2tile(bbox.north, z))
    assert y2 == math.floor(lat2tile(bbox.south, z))
    assert x1 < x2 and y1 < y2


def test_lat2tile_clamps_to_mercator_limits():
    assert lat2tile(89.9, 3) == lat2tile(85.05112878, 3)
    assert abs(lat2tile(0.0, 3) - 4.0) < 1e-9


def test_world_pixel_matches_slippy_tile_math():
    z = 16
    lat, lon = 49.555, 11.35
    px, py = world_pixel(lat, lon, z)
    assert abs(px - lon2tile(lon, z) * TILE_SIZE) < 0.05
    assert abs(py - lat2tile(lat, z) * TILE_SIZE) < 0.05


def test_meters_per_pixel_halves_per_zoom_level():
    assert abs(meters_per_pixel(0.0, 0) - 156543.03) < 0.01
    at_15 = meters_per_pixel(49.555, 15)
    at_16 = meters_per_pixel(49.555, 16)
    assert abs(at_15 / at_16 - 2.0) < 1e-9
    # ~3.1 m/px at z15 in Franconia.
    assert 3.0 < at_15 < 3.2
