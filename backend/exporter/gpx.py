from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime, timezone

from exporter.errors import NothingToExportError
from geo.aoi import BBox
from osm.tags import is_boundary, is_defibrillator, is_fire_station
from osm.types import Element


GPX_NS = "http://www.topografix.com/GPX/1/1"
DEFAULT_GPX_TITLE = "Hydrant Export"

_HYDRANT_EMERGENCY = ("fire_hydrant", "water_tank", "suction_point", "fire_water_pond", "cistern")


def _is_hydrant(tags: dict[str, str]) -> bool:
    emergency = tags.get("emergency", "")
    return bool(emergency) and any(t in emergency for t in _HYDRANT_EMERGENCY)


def waypoint_name(tags: dict[str, str]) -> str:
    station = is_fire_station(tags)
    if tags.get("name"):
        return tags["name"]
    if tags.get("ref"):
        return f"{'Station' if station else 'H'} {tags['ref']}"
    if tags.get("fire_hydrant:type"):
        return f"H {tags['fire_hydrant:type']}"
    if station:
        return "Fire station"
    return "Defibrillator" if is_defibrillator(tags) else "Hydrant"


def exportable_points(elements: list[Element], bbox: BBox) -> list[Element]:
    return [
        e
        for e in elements
        if not is_boundary(e)
        and bbox.contains(e.lat, e.lon)
        and (is_fire_station(e.tags) or _is_hydrant(e.tags) or is_defibrillator(e.tags))
    ]


def build_gpx(
    elements: list[Element],
    bbox: BBox,
    *,
    title: str = "",
    now: datetime | None = None,
) -> bytes:
    """
    GPX 1.1 waypoints for stations, hydrants/water sources and defibrillators in `bbox`.

    Raises NothingToExportError when the selection holds no such element.
    """
    points = exportable_points(elements, bbox)
    if not points:
        raise NothingToExportError("no objects in the selected area")

    ET.register_namespace("", GPX_NS)
    root = ET.Element(f"{{{GPX_NS}}}gpx", {"version": "1.1", "creator": "OpenFireMap"})
    meta = ET.SubElement(root, f"{{{GPX_NS}}}metadata")
    ET.SubElement(meta, f"{{{GPX_NS}}}name").text = title or DEFAULT_GPX_TITLE
    ts = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    ET.SubElement(meta, f"{{{GPX_NS}}}time").text = ts.isoformat().replace("+00:00", "Z")

    for el in points:
        wpt = ET.SubElement(
            root, f"{{{GPX_NS}}}wpt", {"lat": f"{el.lat:.7f}", "lon": f"{el.lon:.7f}"}
        )
        ET.SubElement(wpt, f"{{{GPX_NS}}}name").text = waypoint_name(el.tags)
        ET.SubElement(wpt, f"{{{GPX_NS}}}desc").text = "\n".join(
            f"{k}: {v}" for k, v in el.tags.items()
        )
        ET.SubElement(wpt, f"{{{GPX_NS}}}sym").text = (
            "Fire Station" if is_fire_station(el.tags) else "Hydrant"
        )

    ET.indent(root)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)
