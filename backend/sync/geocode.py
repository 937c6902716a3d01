from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import httpx

from session.cancel import CancelToken


log = logging.getLogger(__name__)

MIN_QUERY_LEN = 3


class GeocodeError(Exception):
    """Forward search failure; `code` is one of query_too_short / no_results / bad_response."""

    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class GeocodeHit:
    lat: float
    lon: float
    label: str


def _address_title(address: dict) -> str:
    city = (
        address.get("city")
        or address.get("town")
        or address.get("village")
        or address.get("municipality")
        or ""
    )
    suburb = address.get("suburb") or address.get("neighbourhood") or address.get("hamlet") or ""
    if not city:
        return ""
    return f"{city} - {suburb}" if suburb else city


class Geocoder:
    def __init__(self, http: httpx.AsyncClient, *, base_url: str, timeout_s: float = 8.0) -> None:
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._timeout_s = float(timeout_s)

    async def search(self, query: str, *, token: CancelToken | None = None) -> GeocodeHit:
        """
        Forward-geocode a free-text query to its best match.

        Raises GeocodeError for short queries, empty results and unusable payloads;
        transport errors (httpx.HTTPError) propagate.
        """
        q = (query or "").strip()
        if len(q) < MIN_QUERY_LEN:
            raise GeocodeError("query_too_short")

        call = self._http.get(
            f"{self._base_url}/search",
            params={"format": "json", "q": q, "limit": 1, "addressdetails": 0},
            timeout=self._timeout_s,
        )
        resp = await (token.run(call) if token is not None else call)
        resp.raise_for_status()
        try:
            data = resp.json()
        except ValueError as e:
            raise GeocodeError("bad_response") from e

        if not isinstance(data, list) or not data:
            raise GeocodeError("no_results")
        hit = data[0] if isinstance(data[0], dict) else {}
        try:
            lat = float(hit.get("lat"))
            lon = float(hit.get("lon"))
        except (TypeError, ValueError) as e:
            raise GeocodeError("bad_response") from e
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise GeocodeError("bad_response")
        return GeocodeHit(lat=lat, lon=lon, label=str(hit.get("display_name") or q))

    async def reverse_title(
        self, lat: float, lon: float, *, token: CancelToken | None = None
    ) -> str:
        """
        "{city} - {suburb}" for a point, or "" when nothing usable comes back.

        Never raises for service errors; the caller falls back to a default title.
        """
        call = self._http.get(
            f"{self._base_url}/reverse",
            params={"format": "json", "lat": f"{lat:.7f}", "lon": f"{lon:.7f}", "zoom": 18},
            timeout=self._timeout_s,
        )
        try:
            resp = await (token.run(call) if token is not None else call)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError):
            log.warning("reverse geocoding failed", exc_info=True)
            return ""
        if not isinstance(data, dict):
            return ""
        address = data.get("address")
        return _address_title(address) if isinstance(address, dict) else ""
