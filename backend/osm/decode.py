from __future__ import annotations

import logging
from typing import Any

from shapely.geometry import LineString, Point

from osm.types import Element, Position


log = logging.getLogger(__name__)

_KINDS = {"node", "way", "relation"}


def _to_float(v: Any) -> float | None:
    try:
        if v is None or isinstance(v, bool):
            return None
        return float(v)
    except (TypeError, ValueError):
        return None


def _decode_geometry(raw: Any) -> tuple[Position, ...] | None:
    if not isinstance(raw, list):
        return None
    pts: list[Position] = []
    for p in raw:
        if not isinstance(p, dict):
            continue
        lat = _to_float(p.get("lat"))
        lon = _to_float(p.get("lon"))
        if lat is None or lon is None:
            continue
        pts.append(Position(lat=lat, lon=lon))
    return tuple(pts) if pts else None


def _geometry_centroid(geometry: tuple[Position, ...]) -> Position:
    coords = [(p.lon, p.lat) for p in geometry]
    geom = Point(coords[0]) if len(coords) == 1 else LineString(coords)
    c = geom.centroid
    return Position(lat=float(c.y), lon=float(c.x))


def _decode_tags(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): "" if v is None else str(v) for k, v in raw.items()}


def decode_element(el: Any) -> Element | None:
    """
    Decode a single Overpass element.

    Position precedence:
    - nodes: `lat`/`lon`
    - ways/relations (`out center`): `center: {lat, lon}`
    - ways (`out geom`): centroid of `geometry`
    """
    if not isinstance(el, dict):
        return None
    kind = el.get("type") or "node"
    if kind not in _KINDS:
        return None
    try:
        eid = int(el.get("id"))
    except (TypeError, ValueError):
        return None

    geometry = _decode_geometry(el.get("geometry"))

    lat = _to_float(el.get("lat"))
    lon = _to_float(el.get("lon"))
    if lat is None or lon is None:
        center = el.get("center") if isinstance(el.get("center"), dict) else {}
        lat = _to_float(center.get("lat"))
        lon = _to_float(center.get("lon"))

    if lat is not None and lon is not None:
        position = Position(lat=lat, lon=lon)
    elif geometry:
        position = _geometry_centroid(geometry)
    else:
        return None

    return Element(
        kind=kind,
        id=eid,
        position=position,
        tags=_decode_tags(el.get("tags")),
        geometry=geometry,
    )


def decode_elements(payload: Any) -> list[Element]:
    """
    Input: Overpass JSON (`{"elements": [...]}`).

    Malformed records are dropped; an unexpected root yields an empty list.
    """
    if not isinstance(payload, dict):
        return []
    raw = payload.get("elements") or []
    if not isinstance(raw, list):
        return []

    out: list[Element] = []
    dropped = 0
    for el in raw:
        e = decode_element(el)
        if e is None:
            dropped += 1
            continue
        out.append(e)
    if dropped:
        log.debug("dropped %d overpass elements without position", dropped)
    return out
