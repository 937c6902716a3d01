from __future__ import annotations

from dataclasses import dataclass, field

from geo.ops import haversine_m
from osm.tags import is_fire_station
from osm.types import Element, Position


DEFAULT_RADIUS_M = 150.0


@dataclass
class _ClusterGroup:
    master: Element
    tags: dict[str, str]
    members: list[Element] = field(default_factory=list)

    def absorb(self, cand: Element) -> None:
        for k, v in cand.tags.items():
            # Only fill gaps; empty strings count as missing.
            if self.tags.get(k, "") == "":
                self.tags[k] = v
        self.members.append(cand)

    def result(self) -> Element:
        if not self.members:
            return self.master
        sources = (self.master, *self.members)
        # Arithmetic mean of member coordinates. Not a geodesic centroid, but the
        # members are at most a few hundred meters apart.
        lat = sum(e.lat for e in sources) / len(sources)
        lon = sum(e.lon for e in sources) / len(sources)
        return self.master.with_changes(
            tags=self.tags, position=Position(lat=lat, lon=lon), merged_from=sources
        )


def _source_records(stations: list[Element]) -> list[Element]:
    out: list[Element] = []
    for e in stations:
        if e.merged_from:
            out.extend(_source_records(list(e.merged_from)))
        else:
            out.append(e)
    return out


def cluster_fire_stations(
    elements: list[Element], radius_m: float = DEFAULT_RADIUS_M
) -> list[Element]:
    """
    Merge fire-station records that describe the same building (e.g. node + way).

    - Only `amenity=fire_station` / `building=fire_station` take part; all other
      elements pass through untouched, after the stations.
    - Already clustered stations are expanded back to their source records, so
      clustering a clustered list gives the same list.
    - Input elements are never mutated.
    """
    stations = [e for e in elements if is_fire_station(e.tags)]
    if len(stations) < 2:
        return elements
    others = [e for e in elements if not is_fire_station(e.tags)]

    # Most detailed record first: it becomes the master of its neighbourhood.
    ordered = sorted(_source_records(stations), key=lambda e: len(e.tags), reverse=True)
    processed: set[str] = set()
    out: list[Element] = []

    for master in ordered:
        if master.key in processed:
            continue
        processed.add(master.key)
        group = _ClusterGroup(master=master, tags=dict(master.tags))
        for cand in ordered:
            if cand.key in processed:
                continue
            # Distance from the master's own position, not the running mean.
            if haversine_m(master.lat, master.lon, cand.lat, cand.lon) < radius_m:
                processed.add(cand.key)
                group.absorb(cand)
        out.append(group.result())

    return out + others
