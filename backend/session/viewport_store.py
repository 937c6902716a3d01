from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from appconfig.types import DefaultView


log = logging.getLogger(__name__)

LAST_VIEW_KEY = "ofm_last_view"


@dataclass(frozen=True)
class Viewport:
    lat: float
    lon: float
    zoom: int

    def to_json(self) -> dict:
        return {"center": [self.lat, self.lon], "zoom": self.zoom}


def _parse_viewport(raw) -> Viewport | None:
    if not isinstance(raw, dict):
        return None
    center = raw.get("center")
    if not isinstance(center, (list, tuple)) or len(center) != 2:
        return None
    try:
        lat, lon = float(center[0]), float(center[1])
        zoom = int(raw.get("zoom"))
    except (TypeError, ValueError):
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return Viewport(lat=lat, lon=lon, zoom=zoom)


class ViewportStore:
    """
    File-backed key/value store holding the last map viewport.

    Missing or corrupt state falls back to the configured default view.
    """

    def __init__(self, path: Path, default: DefaultView) -> None:
        self.path = path
        self.default = Viewport(lat=default.center.lat, lon=default.center.lon, zoom=default.zoom)

    def _read_all(self) -> dict:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError):
            log.warning("unreadable state file %s, ignoring", self.path, exc_info=True)
            return {}
        return data if isinstance(data, dict) else {}

    def load(self) -> Viewport:
        vp = _parse_viewport(self._read_all().get(LAST_VIEW_KEY))
        return vp or self.default

    def save(self, vp: Viewport) -> None:
        data = self._read_all()
        data[LAST_VIEW_KEY] = vp.to_json()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)
