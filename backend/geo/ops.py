from __future__ import annotations

import math

from geo.aoi import BBox


EARTH_RADIUS_M = 6371000.0
METERS_PER_DEG_LAT = 111320.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters on a spherical earth."""
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    s1 = math.sin(math.radians(lat2 - lat1) / 2.0)
    s2 = math.sin(math.radians(lon2 - lon1) / 2.0)
    h = s1 * s1 + math.cos(p1) * math.cos(p2) * s2 * s2
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def meters_per_deg_lon(lat: float) -> float:
    return METERS_PER_DEG_LAT * math.cos(math.radians(lat))


def snap(v: float, step: float) -> float:
    return round(v / step) * step


def pad_and_snap(view: BBox, *, pad_m: float, snap_m: float) -> BBox:
    """
    Grow the viewport by `pad_m` on every side and snap the edges to a metric grid.

    Degree conversions use the viewport center latitude, so sub-grid panning
    keeps producing the same bbox.
    """
    lat, _ = view.center
    m_lon = meters_per_deg_lon(lat)

    d_lat_pad = pad_m / METERS_PER_DEG_LAT
    d_lon_pad = pad_m / m_lon
    step_lat = snap_m / METERS_PER_DEG_LAT
    step_lon = snap_m / m_lon

    return BBox(
        south=snap(view.south - d_lat_pad, step_lat),
        west=snap(view.west - d_lon_pad, step_lon),
        north=snap(view.north + d_lat_pad, step_lat),
        east=snap(view.east + d_lon_pad, step_lon),
    )


def bbox_extent_km(bbox: BBox) -> tuple[float, float]:
    """Approximate (width_km, height_km) of the bbox at its center latitude."""
    lat, _ = bbox.center
    width = (bbox.east - bbox.west) * meters_per_deg_lon(lat) / 1000.0
    height = (bbox.north - bbox.south) * METERS_PER_DEG_LAT / 1000.0
    return width, height
