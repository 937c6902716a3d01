from __future__ import annotations

import pytest

from geo.aoi import BBox
from sync.gate import RequestGate, debounce_s, min_interval_s, pad_meters, render_bucket, snap_meters
from sync.query import build_query, load_mode, wants_boundaries


VIEW = BBox(south=49.5512, west=11.3431, north=49.5588, east=11.3569)
OTHER = BBox(south=49.6012, west=11.4431, north=49.6088, east=11.4569)


class FakeClock:
    def __init__(self, t: float = 1000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t


def test_load_mode_tiers():
    assert load_mode(11.9) == "none"
    assert load_mode(12) == "stations"
    assert load_mode(14.7) == "stations"
    assert load_mode(15) == "all"
    assert not wants_boundaries(13.9)
    assert wants_boundaries(14)


def test_zoom_tables():
    assert [pad_meters(z) for z in (13, 16, 17, 18, 19)] == [600, 400, 250, 150, 100]
    assert [snap_meters(z) for z in (13, 16, 17, 18, 19)] == [200, 100, 50, 25, 20]
    assert [debounce_s(z) for z in (15, 16, 17, 18)] == [0.2, 0.3, 0.25, 0.2]
    assert [min_interval_s(z) for z in (15, 16, 17, 18)] == [2.0, 1.5, 1.0, 0.8]
    assert [render_bucket(z) for z in (11, 12, 14, 15, 16, 17, 18, 19)] == [
        "z<12",
        "z12-14",
        "z12-14",
        "z15-16",
        "z15-16",
        "z17",
        "z18+",
        "z18+",
    ]


def test_build_query_by_zoom():
    q13 = build_query(VIEW, 13)
    assert q13.startswith("[out:json][timeout:25][bbox:49.5512,11.3431,49.5588,11.3569];")
    assert '"amenity"="fire_station"' in q13
    assert "fire_hydrant" not in q13
    assert "boundary" not in q13

    q14 = build_query(VIEW, 14)
    assert '["boundary"="administrative"]["admin_level"="8"]' in q14
    assert ".boundaries out geom;" in q14

    q16 = build_query(VIEW, 16)
    assert "fire_hydrant|water_tank|suction_point|fire_water_pond|cistern" in q16
    assert 'node["emergency"="defibrillator"]' in q16
    assert ".pois out center;" in q16

    with pytest.raises(ValueError):
        build_query(VIEW, 11)


def test_first_decision_fetches_and_repeat_is_unchanged():
    clock = FakeClock()
    gate = RequestGate(clock=clock)
    assert gate.debounce_for(16) == 0.0

    d = gate.decide(VIEW, 16)
    assert d.should_fetch and d.reason == "fetch"
    assert d.mode == "all"
    assert d.query_key.startswith("all|b1|")
    assert d.query is not None and d.bbox is not None
    assert gate.debounce_for(16) == 0.3

    clock.t += 10
    again = gate.decide(VIEW, 16)
    assert not again.should_fetch
    assert again.reason == "unchanged"
    assert again.query_key == d.query_key


def test_new_area_inside_min_interval_is_throttled():
    clock = FakeClock()
    gate = RequestGate(clock=clock)
    assert gate.decide(VIEW, 15).should_fetch

    clock.t += 1.0
    d = gate.decide(OTHER, 15)
    assert not d.should_fetch and d.reason == "throttled"

    clock.t += 1.5
    assert gate.decide(OTHER, 15).should_fetch


def test_standby_clears_and_zooming_back_refetches():
    clock = FakeClock()
    gate = RequestGate(clock=clock)
    first = gate.decide(VIEW, 13)
    assert first.should_fetch

    clock.t += 5
    out = gate.decide(VIEW, 11)
    assert not out.should_fetch and out.clear and out.reason == "standby"

    clock.t += 5
    back = gate.decide(VIEW, 13)
    assert back.should_fetch
    assert back.query_key == first.query_key


def test_render_bucket_changes_are_reported_once():
    gate = RequestGate(clock=FakeClock())
    assert gate.render_bucket_changed(15)
    assert not gate.render_bucket_changed(16)
    assert gate.render_bucket_changed(17)
    assert gate.render_bucket_changed(12.5)
