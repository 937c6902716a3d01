from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from osm.tags import Category, category, icon_type
from osm.types import Element


DisplayMode = Literal["dot", "icon"]

STATION_MIN_ZOOM = 12
DETAIL_MIN_ZOOM = 15
BOUNDARY_MIN_ZOOM = 14
STATION_ICON_ZOOM = 14
DETAIL_ICON_ZOOM = 17

# Stations closer than this in both lat and lon are drawn once.
STATION_DUPLICATE_DEG = 0.0001


@dataclass(frozen=True)
class MarkerStyle:
    category: Category
    icon_type: str
    mode: DisplayMode


def is_visible(cat: Category, zoom: float) -> bool:
    z = int(zoom)
    if cat == "boundary":
        return z >= BOUNDARY_MIN_ZOOM
    if cat == "station":
        return z >= STATION_MIN_ZOOM
    return z >= DETAIL_MIN_ZOOM


def display_mode(cat: Category, zoom: float) -> DisplayMode:
    z = int(zoom)
    if cat == "station":
        return "dot" if z < STATION_ICON_ZOOM else "icon"
    return "dot" if z < DETAIL_ICON_ZOOM else "icon"


def marker_style(el: Element, zoom: float) -> MarkerStyle | None:
    """
    How a point element is drawn at `zoom`, or None if it is hidden.

    Shared by the live map reconciler and the export compositor so both show
    the same thing at the same zoom. Boundaries are not markers.
    """
    cat = category(el)
    if cat == "boundary" or not is_visible(cat, zoom):
        return None
    return MarkerStyle(category=cat, icon_type=icon_type(el.tags), mode=display_mode(cat, zoom))


class StationDeduper:
    """Suppresses stations drawn at (almost) the same spot within one pass."""

    def __init__(self) -> None:
        self._seen: list[tuple[float, float]] = []

    def accept(self, lat: float, lon: float) -> bool:
        for slat, slon in self._seen:
            if abs(slat - lat) < STATION_DUPLICATE_DEG and abs(slon - lon) < STATION_DUPLICATE_DEG:
                return False
        self._seen.append((lat, lon))
        return True
