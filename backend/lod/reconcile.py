from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from lod.policy import BOUNDARY_MIN_ZOOM, DisplayMode, StationDeduper, marker_style
from osm.tags import Category, is_boundary
from osm.types import Element, Position


@dataclass(frozen=True)
class MarkerSpec:
    """Desired on-map state of one element at one zoom."""

    key: str
    position: Position
    tags: dict[str, str]
    mode: DisplayMode
    category: Category
    icon_type: str


@dataclass
class RenderEntry:
    key: str
    handle: Any
    mode: DisplayMode
    category: Category
    icon_type: str
    position: Position
    tags: dict[str, str]


@dataclass
class ReconcilePlan:
    to_create: list[MarkerSpec] = field(default_factory=list)
    to_update: list[MarkerSpec] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)
    # Redrawn in full on every pass.
    boundaries: list[Element] = field(default_factory=list)
    unchanged: int = 0

    @property
    def is_noop(self) -> bool:
        return not (self.to_create or self.to_update or self.to_remove)

    def summary(self) -> dict[str, int]:
        return {
            "created": len(self.to_create),
            "updated": len(self.to_update),
            "removed": len(self.to_remove),
            "unchanged": self.unchanged,
            "boundaries": len(self.boundaries),
        }


def desired_markers(
    elements: list[Element], zoom: float
) -> tuple[dict[str, MarkerSpec], list[Element]]:
    """
    Visible markers keyed by identity, plus the boundaries to draw.

    First occurrence of a key wins; stations at (almost) the same spot as an
    already accepted station are dropped.
    """
    desired: dict[str, MarkerSpec] = {}
    boundaries: list[Element] = []
    dedupe = StationDeduper()

    for el in elements:
        if is_boundary(el):
            if int(zoom) >= BOUNDARY_MIN_ZOOM:
                boundaries.append(el)
            continue
        style = marker_style(el, zoom)
        if style is None or el.key in desired:
            continue
        if style.category == "station" and not dedupe.accept(el.lat, el.lon):
            continue
        desired[el.key] = MarkerSpec(
            key=el.key,
            position=el.position,
            tags=dict(el.tags),
            mode=style.mode,
            category=style.category,
            icon_type=style.icon_type,
        )
    return desired, boundaries


def reconcile(
    previous: Mapping[str, RenderEntry], elements: list[Element], zoom: float
) -> ReconcilePlan:
    """
    Diff the rendered markers against a new element set.

    - same key, same mode, same content: untouched
    - same key, same mode, changed tags/position: updated in place
    - same key, different mode: removed and recreated
    - tracked key no longer present (or hidden at this zoom): removed
    """
    desired, boundaries = desired_markers(elements, zoom)
    plan = ReconcilePlan(boundaries=boundaries)

    for key, spec in desired.items():
        prev = previous.get(key)
        if prev is None:
            plan.to_create.append(spec)
        elif prev.mode != spec.mode:
            plan.to_remove.append(key)
            plan.to_create.append(spec)
        elif prev.tags != spec.tags or prev.position != spec.position:
            plan.to_update.append(spec)
        else:
            plan.unchanged += 1

    for key in previous:
        if key not in desired:
            plan.to_remove.append(key)
    return plan


class MarkerLayer(Protocol):
    """Whatever actually draws markers (a map widget, a websocket client, a test double)."""

    def add(self, spec: MarkerSpec) -> Any: ...

    def update(self, handle: Any, spec: MarkerSpec) -> Any: ...

    def remove(self, handle: Any) -> None: ...

    def set_boundaries(self, boundaries: list[Element]) -> None: ...


class InMemoryMarkerLayer:
    """Marker layer that keeps its state in dicts; backs the HTTP API and tests."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.markers: dict[int, MarkerSpec] = {}
        self.boundaries: list[Element] = []
        self.ops = {"add": 0, "update": 0, "remove": 0}

    def add(self, spec: MarkerSpec) -> int:
        handle = next(self._ids)
        self.markers[handle] = spec
        self.ops["add"] += 1
        return handle

    def update(self, handle: int, spec: MarkerSpec) -> int:
        self.markers[handle] = spec
        self.ops["update"] += 1
        return handle

    def remove(self, handle: int) -> None:
        self.markers.pop(handle, None)
        self.ops["remove"] += 1

    def set_boundaries(self, boundaries: list[Element]) -> None:
        self.boundaries = list(boundaries)


class MarkerReconciler:
    """Owns the render entries and applies reconcile plans to a marker layer."""

    def __init__(self, layer: MarkerLayer) -> None:
        self.layer = layer
        self.entries: dict[str, RenderEntry] = {}

    def render(self, elements: list[Element], zoom: float) -> ReconcilePlan:
        plan = reconcile(self.entries, elements, zoom)

        for key in plan.to_remove:
            entry = self.entries.pop(key, None)
            if entry is not None:
                self.layer.remove(entry.handle)

        for spec in plan.to_update:
            entry = self.entries[spec.key]
            entry.handle = self.layer.update(entry.handle, spec)
            entry.position = spec.position
            entry.tags = spec.tags

        for spec in plan.to_create:
            self.entries[spec.key] = RenderEntry(
                key=spec.key,
                handle=self.layer.add(spec),
                mode=spec.mode,
                category=spec.category,
                icon_type=spec.icon_type,
                position=spec.position,
                tags=spec.tags,
            )

        self.layer.set_boundaries(plan.boundaries)
        return plan

    def clear(self) -> ReconcilePlan:
        return self.render([], 0)
