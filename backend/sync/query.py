from __future__ import annotations

from typing import Literal

from geo.aoi import BBox


LoadMode = Literal["none", "stations", "all"]

STATIONS_MIN_ZOOM = 12
BOUNDARIES_MIN_ZOOM = 14
DETAIL_MIN_ZOOM = 15

_STATION_PARTS = 'nwr["amenity"="fire_station"];nwr["building"="fire_station"];'
_DETAIL_PARTS = (
    'nwr["emergency"~"fire_hydrant|water_tank|suction_point|fire_water_pond|cistern"];'
    'node["emergency"="defibrillator"];'
)
_BOUNDARY_PART = (
    '(way["boundary"="administrative"]["admin_level"="8"];)->.boundaries; '
    ".boundaries out geom;"
)


def load_mode(zoom: float) -> LoadMode:
    z = int(zoom)
    if z < STATIONS_MIN_ZOOM:
        return "none"
    if z < DETAIL_MIN_ZOOM:
        return "stations"
    return "all"


def wants_boundaries(zoom: float) -> bool:
    return int(zoom) >= BOUNDARIES_MIN_ZOOM


def build_query(bbox: BBox, zoom: float, *, timeout_s: int = 25) -> str:
    """
    Overpass QL for everything visible at `zoom` inside `bbox`.

    POIs come back with `out center` (ways/relations get a center point);
    boundaries with `out geom` so they can be drawn as polylines.
    """
    mode = load_mode(zoom)
    if mode == "none":
        raise ValueError(f"nothing to query at zoom {zoom}")

    parts = _STATION_PARTS
    if mode == "all":
        parts += _DETAIL_PARTS

    q = (
        f"[out:json][timeout:{int(timeout_s)}][bbox:{bbox.as_overpass()}];"
        f"({parts})->.pois;.pois out center;"
    )
    if wants_boundaries(zoom):
        q += _BOUNDARY_PART
    return q
