from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Literal


ElementKind = Literal["node", "way", "relation"]


@dataclass(frozen=True)
class Position:
    lat: float
    lon: float


@dataclass(frozen=True)
class Element:
    """
    A tagged geodata record as returned by Overpass.

    `position` is always resolved: nodes carry it directly, ways/relations use the
    service-provided center (or the centroid of `geometry`). Records without a
    position never become an Element.
    """

    kind: ElementKind
    id: int
    position: Position
    tags: dict[str, str] = field(default_factory=dict)
    # Only populated for `out geom` results (administrative boundaries).
    geometry: tuple[Position, ...] | None = None
    # Source records of a clustered station, so clustering again starts from them.
    merged_from: tuple["Element", ...] = field(default=(), compare=False, repr=False)

    @property
    def key(self) -> str:
        # node/way/relation ids overlap, so the kind is part of the identity.
        return f"{self.kind}:{self.id}"

    @property
    def lat(self) -> float:
        return self.position.lat

    @property
    def lon(self) -> float:
        return self.position.lon

    def with_changes(self, **kwargs) -> "Element":
        return replace(self, **kwargs)

    def to_json(self) -> dict:
        out: dict = {
            "type": self.kind,
            "id": self.id,
            "lat": self.position.lat,
            "lon": self.position.lon,
            "tags": dict(self.tags),
        }
        if self.geometry is not None:
            out["geometry"] = [{"lat": p.lat, "lon": p.lon} for p in self.geometry]
        return out
