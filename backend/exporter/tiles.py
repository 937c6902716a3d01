from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass, field

import httpx
from PIL import Image

from session.cancel import CancelToken
from sync.errors import FetchCancelled


log = logging.getLogger(__name__)


def tile_url(template: str, z: int, x: int, y: int, subdomains: list[str] | None = None) -> str:
    """
    Fill a slippy-map URL template.

    `{s}` rotates over the subdomains by abs(x + y); `{r}` (retina suffix) is dropped.
    """
    subs = subdomains or ["a", "b", "c"]
    return (
        template.replace("{s}", subs[abs(x + y) % len(subs)])
        .replace("{r}", "")
        .replace("{z}", str(z))
        .replace("{x}", str(x))
        .replace("{y}", str(y))
    )


@dataclass
class TileBatch:
    # (x, y, image) for every tile that loaded; order is completion order.
    images: list[tuple[int, int, Image.Image]] = field(default_factory=list)
    requested: int = 0
    failed: int = 0


def _decode(content: bytes) -> Image.Image:
    with Image.open(io.BytesIO(content)) as im:
        return im.convert("RGBA")


async def fetch_tiles(
    http: httpx.AsyncClient,
    template: str,
    tiles: list[tuple[int, int, int]],
    *,
    token: CancelToken,
    concurrency: int = 6,
    subdomains: list[str] | None = None,
    timeout_s: float = 15.0,
) -> TileBatch:
    """
    Load tiles with a fixed-size worker pool.

    A failing tile is counted and skipped (blank cell). Workers check the token
    before each new load and stop once it fires; FetchCancelled is raised after
    all workers have joined.
    """
    queue: asyncio.Queue[tuple[int, int, int]] = asyncio.Queue()
    for t in tiles:
        queue.put_nowait(t)
    batch = TileBatch()

    async def load(z: int, x: int, y: int) -> Image.Image:
        url = tile_url(template, z, x, y, subdomains)
        resp = await http.get(url, timeout=timeout_s)
        resp.raise_for_status()
        return await asyncio.to_thread(_decode, resp.content)

    async def worker() -> None:
        while not token.cancelled:
            try:
                z, x, y = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            batch.requested += 1
            try:
                img = await token.run(load(z, x, y))
            except FetchCancelled:
                return
            except Exception as e:
                # Bad URL, HTTP error, undecodable or oversized image: blank cell.
                batch.failed += 1
                log.warning("tile %s/%s/%s failed: %s", z, x, y, e)
                continue
            batch.images.append((x, y, img))

    await asyncio.gather(*(worker() for _ in range(max(1, int(concurrency)))))
    token.raise_if_cancelled()
    return batch
