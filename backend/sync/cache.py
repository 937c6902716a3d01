from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar


T = TypeVar("T")

Clock = Callable[[], float]


def ttl_for_zoom(zoom: float) -> float:
    """Seconds a query result stays fresh: detail zooms churn faster."""
    return 30.0 if int(zoom) >= 15 else 60.0


@dataclass
class CacheEntry(Generic[T]):
    value: T
    created_at: float
    ttl_s: float

    def expired(self, now: float) -> bool:
        return (now - self.created_at) > self.ttl_s


class TTLCache(Generic[T]):
    """
    Time-bounded key/value cache.

    Expiry is lazy: an expired entry is evicted by the lookup that finds it.
    `max_items` bounds memory by dropping the oldest insert.
    """

    def __init__(self, *, clock: Clock | None = None, max_items: int = 256) -> None:
        self._clock = clock or time.monotonic
        self._max_items = int(max_items)
        self._entries: dict[str, CacheEntry[T]] = {}

    def get(self, key: str) -> T | None:
        e = self._entries.get(key)
        if e is None:
            return None
        if e.expired(self._clock()):
            self._entries.pop(key, None)
            return None
        return e.value

    def put(self, key: str, value: T, *, ttl_s: float) -> None:
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(value=value, created_at=self._clock(), ttl_s=float(ttl_s))
        if len(self._entries) > self._max_items:
            oldest = next(iter(self._entries.keys()))
            if oldest != key:
                self._entries.pop(oldest, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
