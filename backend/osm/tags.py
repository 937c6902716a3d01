from __future__ import annotations

from typing import Literal

from osm.types import Element


Category = Literal["station", "hydrant", "water", "defibrillator", "boundary"]

WATER_TYPES = frozenset({"water_tank", "cistern", "fire_water_pond", "suction_point"})

# fire_hydrant:type -> single-letter icon glyph
HYDRANT_LETTERS: dict[str, str] = {
    "underground": "U",
    "pillar": "O",
    "pipe": "I",
    "dry_barrel": "Ø",
}


def is_fire_station(tags: dict[str, str]) -> bool:
    return tags.get("amenity") == "fire_station" or tags.get("building") == "fire_station"


def is_defibrillator(tags: dict[str, str]) -> bool:
    return tags.get("emergency") == "defibrillator"


def is_boundary(el: Element) -> bool:
    return el.tags.get("boundary") == "administrative" and bool(el.geometry)


def icon_type(tags: dict[str, str]) -> str:
    """
    Icon/dot type used by both the live map and the export.

    station > defibrillator > fire_hydrant:type > emergency > "fire_hydrant".
    """
    if is_fire_station(tags):
        return "station"
    if is_defibrillator(tags):
        return "defibrillator"
    return tags.get("fire_hydrant:type") or tags.get("emergency") or "fire_hydrant"


def category(el: Element) -> Category:
    tags = el.tags
    if is_boundary(el):
        return "boundary"
    if is_fire_station(tags):
        return "station"
    if is_defibrillator(tags):
        return "defibrillator"
    # Everything else the query returns is a hydrant-like water source.
    return "water" if icon_type(tags) in WATER_TYPES else "hydrant"
