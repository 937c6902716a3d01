import io
import sys
from pathlib import Path

import pytest


# Ensure `backend/` is on sys.path so tests can import local modules
# like `sync.*`, `exporter.*`, and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))

OVERPASS = "https://overpass.test/api/interpreter"
NOMINATIM = "https://nominatim.test"
TILES = "https://tiles.test/{z}/{x}/{y}.png"


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("OFM_STATE_PATH", str(tmp_path / "state.json"))
    monkeypatch.delenv("OFM_TELEMETRY", raising=False)
    monkeypatch.delenv("OFM_OVERPASS_ENDPOINTS", raising=False)


@pytest.fixture
def tile_png() -> bytes:
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGB", (256, 256), (220, 220, 210)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def ofm_config():
    from appconfig.types import AppConfig, Basemap

    return AppConfig(
        overpassEndpoints=[OVERPASS],
        nominatimUrl=NOMINATIM,
        basemaps={
            "test": Basemap(url=TILES, textAttr="© test tiles"),
            "satellite": Basemap(url=TILES, textAttr="© test imagery", maxZoom=17),
        },
        defaultBasemap="test",
    )


@pytest.fixture
def make_session(ofm_config, tmp_path):
    """Build a MapSession whose HTTP traffic goes to `handler`; nothing sleeps for real."""
    import httpx

    from session.context import MapSession
    from session.viewport_store import ViewportStore

    def build(handler, **kwargs):
        async def no_sleep(_s: float) -> None:
            return None

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        viewports = kwargs.pop("viewports", None) or ViewportStore(
            tmp_path / "state.json", ofm_config.defaultView
        )
        return MapSession(
            ofm_config,
            http=http,
            viewports=viewports,
            sleep=kwargs.pop("sleep", no_sleep),
            jitter=lambda: 0.0,
            **kwargs,
        )

    return build
