from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable

import httpx

from osm.decode import decode_elements
from osm.types import Element
from session.cancel import CancelToken
from sync.cache import TTLCache
from sync.endpoints import EndpointHealth, GlobalBackoff
from sync.errors import (
    AllEndpointsExhaustedError,
    EndpointFailure,
    FetchTimeoutError,
    GeodataError,
    OfflineError,
    RateLimitedError,
    ServerError,
)
from telemetry.trace import emit


log = logging.getLogger(__name__)

# Pause before moving on to the next endpoint; 429 gets the shorter pause but
# the longer endpoint cooldown and global backoff.
_PAUSE_AFTER_SERVER_ERROR_S = 0.4
_PAUSE_AFTER_OTHER_ERROR_S = 0.3


def _always_online() -> bool:
    return True


def make_http_client(
    *, user_agent: str, timeout_s: float = 25.0, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={"User-Agent": user_agent},
        timeout=timeout_s,
        follow_redirects=True,
        transport=transport,
    )


class GeodataClient:
    """
    Overpass client with cache, endpoint fallback, circuit breaker and global backoff.

    Clock, sleep, jitter and the online probe are injectable so the retry
    behaviour can be exercised without waiting.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        cache: TTLCache[list[Element]],
        *,
        endpoints: list[str],
        timeout_s: float = 25.0,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        jitter: Callable[[], float] | None = None,
        is_online: Callable[[], bool] | None = None,
    ) -> None:
        self._http = http
        self.cache = cache
        self.endpoints = list(endpoints)
        self._timeout_s = float(timeout_s)
        self.clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._is_online = is_online or _always_online
        self.health = EndpointHealth()
        self.backoff = GlobalBackoff(jitter=jitter)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def fetch_elements(
        self,
        query: str,
        *,
        cache_key: str,
        ttl_s: float,
        token: CancelToken,
        endpoints: list[str] | None = None,
        req_id: int | None = None,
    ) -> list[Element]:
        token.raise_if_cancelled()
        if not self._is_online():
            raise OfflineError("offline")

        cached = self.cache.get(cache_key)
        if cached is not None:
            emit("sync", "cache_hit", req_id=req_id, key=cache_key)
            return cached
        emit("sync", "cache_miss", req_id=req_id, key=cache_key)

        order = self.health.ordered(endpoints or self.endpoints, self.clock())
        if not order:
            raise AllEndpointsExhaustedError("no endpoints configured")

        wait_s = self.backoff.remaining(self.clock())
        if wait_s > 0:
            emit("sync", "backoff_wait", req_id=req_id, ms=wait_s * 1000.0)
            await token.run(self._sleep(wait_s))

        last: EndpointFailure | None = None
        for endpoint in order:
            token.raise_if_cancelled()
            now = self.clock()
            if self.health.cooling(endpoint, now):
                st = self.health.state(endpoint)
                emit(
                    "sync",
                    "skip_endpoint",
                    req_id=req_id,
                    endpoint=endpoint,
                    untilMs=(st.fail_until - now) * 1000.0,
                    lastStatus=st.last_status,
                )
                continue

            emit("sync", "try", req_id=req_id, endpoint=endpoint)
            t0 = self.clock()
            try:
                payload = await token.run(self._post(endpoint, query))
            except EndpointFailure as f:
                last = f
                await self._on_failure(f, token=token, req_id=req_id)
                continue

            now = self.clock()
            self.health.mark_ok(endpoint, now)
            self.backoff.reset()

            elements = decode_elements(payload)
            emit(
                "sync",
                "net_ok",
                req_id=req_id,
                endpoint=endpoint,
                ms=(now - t0) * 1000.0,
                elements=len(elements),
            )
            # A result that arrives after cancellation is dropped, never cached.
            token.raise_if_cancelled()
            self.cache.put(cache_key, elements, ttl_s=ttl_s)
            return elements

        raise self._exhausted(last)

    async def _post(self, endpoint: str, query: str) -> dict:
        try:
            resp = await self._http.post(
                endpoint, data={"data": query}, timeout=self._timeout_s
            )
        except httpx.TimeoutException as e:
            raise EndpointFailure(endpoint, "timeout") from e
        except httpx.HTTPError as e:
            raise EndpointFailure(endpoint, f"network error: {e}") from e

        if not resp.is_success:
            raise EndpointFailure(
                endpoint, f"http {resp.status_code}", http_status=resp.status_code
            )

        text = resp.text.strip()
        if not text:
            raise EndpointFailure(endpoint, "empty body")
        # Overloaded instances answer 200 with an HTML error page.
        if text.startswith("<"):
            raise EndpointFailure(endpoint, "html body")
        try:
            data = json.loads(text)
        except ValueError as e:
            raise EndpointFailure(endpoint, "invalid json") from e
        if not isinstance(data, dict):
            raise EndpointFailure(endpoint, "json root is not an object")
        return data

    async def _on_failure(
        self, f: EndpointFailure, *, token: CancelToken, req_id: int | None
    ) -> None:
        now = self.clock()
        status = f.http_status
        log.warning("overpass endpoint failed: %s", f)
        emit(
            "sync", "net_err", req_id=req_id, endpoint=f.endpoint, status=status, message=f.reason
        )

        cooldown = self.health.mark_fail(f.endpoint, now, status)
        backoff = self.backoff.bump_for_status(now, status)
        if status == 429:
            emit("sync", "ratelimit", req_id=req_id, endpoint=f.endpoint, backoffMs=(backoff or 0) * 1000.0)
            pause = _PAUSE_AFTER_OTHER_ERROR_S
        elif status is not None and status >= 500:
            pause = _PAUSE_AFTER_SERVER_ERROR_S
        else:
            pause = _PAUSE_AFTER_OTHER_ERROR_S
        log.debug("endpoint %s cooling down for %.0fs", f.endpoint, cooldown)
        await token.run(self._sleep(pause))

    @staticmethod
    def _exhausted(last: EndpointFailure | None) -> GeodataError:
        if last is None:
            return AllEndpointsExhaustedError("all endpoints cooling down")
        status = last.http_status
        if status == 429:
            return RateLimitedError(str(last), http_status=status)
        if status is not None and status >= 500:
            return ServerError(str(last), http_status=status)
        if last.reason == "timeout":
            return FetchTimeoutError(str(last))
        return AllEndpointsExhaustedError(str(last), http_status=status)
