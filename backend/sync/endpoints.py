from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable


COOLDOWN_RATELIMIT_S = 90.0
COOLDOWN_SERVER_S = 30.0
COOLDOWN_OTHER_S = 20.0

BACKOFF_RATELIMIT_S = (8.0, 30.0)
BACKOFF_SERVER_S = (1.2, 8.0)
BACKOFF_JITTER_MAX_S = 1.5


def cooldown_for_status(http_status: int | None) -> float:
    if http_status == 429:
        return COOLDOWN_RATELIMIT_S
    if http_status is not None and http_status >= 500:
        return COOLDOWN_SERVER_S
    return COOLDOWN_OTHER_S


@dataclass
class EndpointState:
    fail_until: float = 0.0
    last_ok: float = 0.0
    last_fail: float = 0.0
    last_status: int | None = None


class EndpointHealth:
    """
    Per-endpoint circuit breaker.

    A failing endpoint is put on cooldown; healthy endpoints are tried first,
    most recently successful first.
    """

    def __init__(self) -> None:
        self._states: dict[str, EndpointState] = {}

    def state(self, endpoint: str) -> EndpointState:
        s = self._states.get(endpoint)
        if s is None:
            s = EndpointState()
            self._states[endpoint] = s
        return s

    def cooling(self, endpoint: str, now: float) -> bool:
        return self.state(endpoint).fail_until > now

    def ordered(self, endpoints: list[str], now: float) -> list[str]:
        ok = [e for e in endpoints if not self.cooling(e, now)]
        cool = [e for e in endpoints if self.cooling(e, now)]
        # sort() is stable: ties keep the configured order.
        ok.sort(key=lambda e: self.state(e).last_ok, reverse=True)
        cool.sort(key=lambda e: self.state(e).fail_until)
        return ok + cool

    def mark_ok(self, endpoint: str, now: float, http_status: int = 200) -> None:
        s = self.state(endpoint)
        s.last_ok = now
        s.last_status = http_status
        s.fail_until = 0.0

    def mark_fail(self, endpoint: str, now: float, http_status: int | None) -> float:
        s = self.state(endpoint)
        cooldown = cooldown_for_status(http_status)
        s.last_fail = now
        s.last_status = http_status
        s.fail_until = max(s.fail_until, now + cooldown)
        return cooldown

    def snapshot(self) -> dict[str, dict]:
        return {
            e: {
                "failUntil": s.fail_until,
                "lastOk": s.last_ok,
                "lastStatus": s.last_status,
            }
            for e, s in self._states.items()
        }


class GlobalBackoff:
    """
    Shared pause applied before any endpoint is tried.

    Doubles from the previous value (clamped to the range max) plus jitter,
    and resets on the first success.
    """

    def __init__(self, *, jitter: Callable[[], float] | None = None) -> None:
        self._jitter = jitter or (lambda: random.uniform(0.0, BACKOFF_JITTER_MAX_S))
        self.backoff_s = 0.0
        self.until = 0.0

    def bump(self, now: float, *, min_s: float, max_s: float) -> float:
        base = min(self.backoff_s * 2.0, max_s) if self.backoff_s else min_s
        self.backoff_s = base + float(self._jitter())
        self.until = now + self.backoff_s
        return self.backoff_s

    def bump_for_status(self, now: float, http_status: int | None) -> float | None:
        if http_status == 429:
            lo, hi = BACKOFF_RATELIMIT_S
        elif http_status is not None and http_status >= 500:
            lo, hi = BACKOFF_SERVER_S
        else:
            return None
        return self.bump(now, min_s=lo, max_s=hi)

    def remaining(self, now: float) -> float:
        return max(0.0, self.until - now)

    def reset(self) -> None:
        self.backoff_s = 0.0
        self.until = 0.0
