from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from geo.aoi import BBox
from geo.ops import pad_and_snap
from sync.query import LoadMode, build_query, load_mode, wants_boundaries


def pad_meters(zoom: float) -> float:
    # Query more than is visible so small pans stay inside the last result.
    z = int(zoom)
    if z <= 15:
        return 600.0
    if z == 16:
        return 400.0
    if z == 17:
        return 250.0
    if z == 18:
        return 150.0
    return 100.0


def snap_meters(zoom: float) -> float:
    z = int(zoom)
    if z <= 15:
        return 200.0
    if z == 16:
        return 100.0
    if z == 17:
        return 50.0
    if z == 18:
        return 25.0
    return 20.0


def debounce_s(zoom: float) -> float:
    z = int(zoom)
    if z <= 15:
        return 0.2
    if z == 16:
        return 0.3
    if z == 17:
        return 0.25
    return 0.2


def min_interval_s(zoom: float) -> float:
    z = int(zoom)
    if z <= 15:
        return 2.0
    if z == 16:
        return 1.5
    if z == 17:
        return 1.0
    return 0.8


def render_bucket(zoom: float) -> str:
    z = int(zoom)
    if z < 12:
        return "z<12"
    if z <= 14:
        return "z12-14"
    if z <= 16:
        return "z15-16"
    if z == 17:
        return "z17"
    return "z18+"


def query_bbox(view: BBox, zoom: float) -> BBox:
    return pad_and_snap(view, pad_m=pad_meters(zoom), snap_m=snap_meters(zoom))


def query_key(mode: LoadMode, boundaries: bool, bbox: BBox) -> str:
    return f"{mode}|{'b1' if boundaries else 'b0'}|{bbox.rounded_key(5)}"


@dataclass(frozen=True)
class GateDecision:
    should_fetch: bool
    # "standby" | "unchanged" | "throttled" | "fetch"
    reason: str
    query_key: str | None = None
    query: str | None = None
    bbox: BBox | None = None
    mode: LoadMode = "none"
    # True when shown data must be dropped (zoomed out below the first tier).
    clear: bool = False


class RequestGate:
    """
    Decides whether a settled viewport warrants a new geodata request.

    One gate per map session. Not thread-safe; meant for a single event loop.
    """

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.monotonic
        self.last_fetch_key: str | None = None
        self.last_fetch_started: float | None = None
        self.last_bucket: str | None = None
        self.first_load = True

    def debounce_for(self, zoom: float) -> float:
        """Debounce before acting on a settle; the very first settle is immediate."""
        if self.first_load:
            return 0.0
        return debounce_s(zoom)

    def render_bucket_changed(self, zoom: float) -> bool:
        b = render_bucket(zoom)
        if b == self.last_bucket:
            return False
        self.last_bucket = b
        return True

    def decide(self, view: BBox, zoom: float, now: float | None = None) -> GateDecision:
        t = self._clock() if now is None else float(now)
        self.first_load = False

        mode = load_mode(zoom)
        if mode == "none":
            # Forget the last key so zooming back in refetches immediately.
            self.last_fetch_key = None
            return GateDecision(should_fetch=False, reason="standby", clear=True)

        boundaries = wants_boundaries(zoom)
        qb = query_bbox(view, zoom)
        key = query_key(mode, boundaries, qb)

        if key == self.last_fetch_key:
            return GateDecision(
                should_fetch=False, reason="unchanged", query_key=key, bbox=qb, mode=mode
            )
        if (
            self.last_fetch_started is not None
            and (t - self.last_fetch_started) < min_interval_s(zoom)
        ):
            return GateDecision(
                should_fetch=False, reason="throttled", query_key=key, bbox=qb, mode=mode
            )

        self.last_fetch_key = key
        self.last_fetch_started = t
        return GateDecision(
            should_fetch=True,
            reason="fetch",
            query_key=key,
            query=build_query(qb, zoom),
            bbox=qb,
            mode=mode,
        )

    def forget(self) -> None:
        """Allow the next decision to refetch the same key (e.g. after a failed load)."""
        self.last_fetch_key = None
