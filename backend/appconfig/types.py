from __future__ import annotations

from pydantic import BaseModel, Field


class MapCenter(BaseModel):
    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)


class DefaultView(BaseModel):
    center: MapCenter = Field(default_factory=lambda: MapCenter(lat=49.555, lon=11.35))
    zoom: int = Field(default=14, ge=0, le=22)


class Basemap(BaseModel):
    """
    A raster tile source.

    `url` is a slippy-map template: `{z}/{x}/{y}` are substituted, `{s}` rotates
    over `subdomains`, `{r}` (retina suffix) is dropped.
    """

    url: str
    textAttr: str = ""
    maxZoom: int = Field(default=18, ge=0, le=22)
    subdomains: list[str] = Field(default_factory=lambda: ["a", "b", "c"])


def _default_basemaps() -> dict[str, Basemap]:
    carto = "© OpenStreetMap contributors, © CARTO"
    osm = "© OpenStreetMap contributors"
    return {
        "voyager": Basemap(
            url="https://{s}.basemaps.cartocdn.com/rastertiles/voyager/{z}/{x}/{y}{r}.png",
            textAttr=carto,
        ),
        "positron": Basemap(
            url="https://{s}.basemaps.cartocdn.com/light_all/{z}/{x}/{y}{r}.png",
            textAttr=carto,
        ),
        "dark": Basemap(
            url="https://{s}.basemaps.cartocdn.com/dark_all/{z}/{x}/{y}{r}.png",
            textAttr=carto,
        ),
        "satellite": Basemap(
            url="https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/{z}/{y}/{x}",
            textAttr="Tiles © Esri",
            maxZoom=17,
        ),
        "topo": Basemap(
            url="https://{s}.tile.opentopomap.org/{z}/{x}/{y}.png",
            textAttr="Data: © OpenStreetMap contributors, SRTM | Style: © OpenTopoMap (CC-BY-SA)",
            maxZoom=17,
        ),
        "osm": Basemap(url="https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png", textAttr=osm),
        "osmde": Basemap(url="https://tile.openstreetmap.de/{z}/{x}/{y}.png", textAttr=osm),
    }


class Colors(BaseModel):
    station: str = "#ef4444"
    hydrant: str = "#ef4444"
    water: str = "#3b82f6"
    defib: str = "#16a34a"
    bounds: str = "#333333"
    boundsSatellite: str = "#ffff00"
    textMain: str = "#0f172a"
    textSub: str = "#334155"
    # RGBA, white at 0.98 alpha
    bgHeader: tuple[int, int, int, int] = (255, 255, 255, 250)


class ExportSettings(BaseModel):
    tileConcurrency: int = Field(default=6, ge=1, le=32)
    maxCanvasPx: int = Field(default=14_000, ge=256)
    marginPx: int = Field(default=40, ge=0)
    footerPx: int = Field(default=60, ge=0)
    headerPx: int = Field(default=170, ge=0)
    iconPx: int = Field(default=32, ge=8)
    dotRadiusPx: int = Field(default=5, ge=1)
    tileTimeoutS: float = Field(default=15.0, gt=0.0)
    defaultTitle: str = "Ort- und Hydrantenplan"
    productName: str = "OpenFireMap.org"
    # zoom -> max export edge length in km
    zoomLimitsKm: dict[int, float] = Field(
        default_factory=lambda: {12: 30, 13: 25, 14: 20, 15: 15, 16: 10, 17: 8, 18: 5}
    )


class AppConfig(BaseModel):
    defaultView: DefaultView = Field(default_factory=DefaultView)
    overpassEndpoints: list[str] = Field(
        default_factory=lambda: [
            "https://overpass-api.de/api/interpreter",
            "https://overpass.kumi.systems/api/interpreter",
            "https://maps.mail.ru/osm/tools/overpass/api/interpreter",
        ]
    )
    overpassTimeoutS: float = Field(default=25.0, gt=0.0)
    nominatimUrl: str = "https://nominatim.openstreetmap.org"
    nominatimTimeoutS: float = Field(default=8.0, gt=0.0)
    userAgent: str = "openfiremap-backend/0.1"
    basemaps: dict[str, Basemap] = Field(default_factory=_default_basemaps)
    defaultBasemap: str = "voyager"
    colors: Colors = Field(default_factory=Colors)
    export: ExportSettings = Field(default_factory=ExportSettings)

    def basemap(self, key: str | None) -> tuple[str, Basemap]:
        """Resolve a basemap key; unknown keys fall back to the default basemap."""
        k = (key or "").strip()
        if k not in self.basemaps:
            k = self.defaultBasemap if self.defaultBasemap in self.basemaps else next(iter(self.basemaps))
        return k, self.basemaps[k]
