from __future__ import annotations

from sync.cache import TTLCache, ttl_for_zoom


class FakeClock:
    def __init__(self) -> None:
        self.t = 0.0

    def __call__(self) -> float:
        return self.t


def test_ttl_by_zoom():
    assert ttl_for_zoom(14) == 60.0
    assert ttl_for_zoom(15) == 30.0
    assert ttl_for_zoom(18.4) == 30.0


def test_entries_expire_lazily():
    clock = FakeClock()
    cache: TTLCache[list[int]] = TTLCache(clock=clock)
    cache.put("k", [1, 2], ttl_s=30)

    clock.t = 30.0
    assert cache.get("k") == [1, 2]
    assert len(cache) == 1

    clock.t = 30.5
    # Still stored until a lookup finds it stale.
    assert len(cache) == 1
    assert cache.get("k") is None
    assert len(cache) == 0
    assert "k" not in cache


def test_put_replaces_and_bounds_size():
    clock = FakeClock()
    cache: TTLCache[str] = TTLCache(clock=clock, max_items=2)
    cache.put("a", "1", ttl_s=60)
    cache.put("b", "2", ttl_s=60)
    cache.put("a", "3", ttl_s=60)
    assert cache.get("a") == "3"

    cache.put("c", "4", ttl_s=60)
    assert len(cache) == 2
    # "b" is now the oldest insert.
    assert cache.get("b") is None
    assert cache.get("a") == "3" and cache.get("c") == "4"

    cache.clear()
    assert len(cache) == 0
