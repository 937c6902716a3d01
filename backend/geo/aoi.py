from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BBox:
    """
    WGS84 bounding box in lat/lon degrees.

    Convention used throughout this repo (Overpass order):
    - south, west, north, east

    No antimeridian handling: west must be strictly smaller than east.
    """

    south: float
    west: float
    north: float
    east: float

    def __post_init__(self) -> None:
        if not self.south < self.north:
            raise ValueError(f"bbox south ({self.south}) must be < north ({self.north})")
        if not self.west < self.east:
            raise ValueError(f"bbox west ({self.west}) must be < east ({self.east})")

    @property
    def center(self) -> tuple[float, float]:
        return ((self.south + self.north) / 2.0, (self.west + self.east) / 2.0)

    def contains(self, lat: float, lon: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lon <= self.east

    def rounded_key(self, decimals: int = 5) -> str:
        """
        A stable string key for caching bbox-derived queries.

        decimals=5 is ~1m in latitude, well below the coarsest snap grid.
        """
        return ",".join(
            f"{v:.{decimals}f}" for v in (self.south, self.west, self.north, self.east)
        )

    def as_overpass(self) -> str:
        return f"{self.south},{self.west},{self.north},{self.east}"
