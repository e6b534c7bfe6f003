import pytest

from nearchat.core.identity import TemporaryIdentity
from nearchat.core.sensing import GeoSource, SignalKind, haversine_m


def peer(clock):
    return TemporaryIdentity(token="p" * 32, created_at=clock.now, expires_at=clock.now + 60)


def test_haversine_known_distance():
    # one thousandth of a degree of latitude is ~111 m
    assert haversine_m((0.0, 0.0), (0.001, 0.0)) == pytest.approx(111.2, abs=0.5)
    assert haversine_m((51.5, -0.1), (51.5, -0.1)) == 0.0


def test_fix_in_range_pushes_geo_sighting(clock):
    pushed = []
    geo = GeoSource(pushed.append, radius_m=150, clock=clock)
    geo.set_own_fix(0.0, 0.0)

    sighting = geo.report_fix(peer(clock), 0.0005, 0.0)

    assert pushed == [sighting]
    assert sighting.kind == SignalKind.GEO
    assert sighting.observed_at == clock.now
    assert 0.0 < sighting.strength < 1.0


def test_fix_out_of_range_is_ignored(clock):
    pushed = []
    geo = GeoSource(pushed.append, radius_m=150, clock=clock)
    geo.set_own_fix(0.0, 0.0)

    assert geo.report_fix(peer(clock), 0.01, 0.0) is None
    assert pushed == []


def test_no_own_fix_means_no_sightings(clock):
    pushed = []
    geo = GeoSource(pushed.append, clock=clock)

    assert geo.report_fix(peer(clock), 0.0, 0.0) is None
    geo.set_own_fix(0.0, 0.0)
    geo.clear()
    assert geo.report_fix(peer(clock), 0.0, 0.0) is None
    assert pushed == []
