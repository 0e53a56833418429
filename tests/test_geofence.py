import random

import pytest

from routequest import geofence
from routequest.errors import ValidationError

from conftest import BERN, north_of


def test_distance_zero_and_known_value():
    assert geofence.distance_m(*BERN, *BERN) == 0
    # one degree of latitude on the mean-radius sphere
    assert geofence.distance_m(0, 0, 1, 0) == pytest.approx(111194.93, abs=0.01)


def test_distance_is_symmetric():
    rng = random.Random(7)
    for _ in range(200):
        a = (rng.uniform(-90, 90), rng.uniform(-180, 180))
        b = (rng.uniform(-90, 90), rng.uniform(-180, 180))
        assert geofence.distance_m(*a, *b) == pytest.approx(geofence.distance_m(*b, *a))


def test_antipodal_points_do_not_blow_up():
    d = geofence.distance_m(0, 0, 0, 180)
    assert d == pytest.approx(geofence.EARTH_RADIUS_M * 3.141592653589793)


def test_radius_plus_tolerance_scenario():
    far = north_of(*BERN, 45)
    near = north_of(*BERN, 35)
    assert geofence.is_within_geofence(*far, *BERN, 30, 10) is False
    assert geofence.is_within_geofence(*near, *BERN, 30, 10) is True
    # exactly on the boundary counts as inside
    edge = north_of(*BERN, 39.999)
    assert geofence.is_within_geofence(*edge, *BERN, 30, 10) is True


def test_growing_radius_never_turns_true_into_false():
    rng = random.Random(11)
    for _ in range(100):
        player = north_of(*BERN, rng.uniform(0, 200))
        hits = [geofence.is_within_geofence(*player, *BERN, r, 10) for r in range(0, 250, 5)]
        # once inside, stays inside as the radius grows
        first = hits.index(True) if True in hits else len(hits)
        assert all(hits[first:])


def test_default_tolerance_is_ten_metres():
    assert geofence.is_within_geofence(*north_of(*BERN, 39), *BERN, 30) is True
    assert geofence.is_within_geofence(*north_of(*BERN, 41), *BERN, 30) is False


@pytest.mark.parametrize("lat,lng", [(91, 0), (-90.5, 0), (0, 180.1), (0, -181), (float('nan'), 0), ("1", 2), (None, 0), (True, 0)])
def test_validate_coordinates_rejects(lat, lng):
    with pytest.raises(ValidationError):
        geofence.validate_coordinates(lat, lng)


def test_validate_coordinates_accepts_edges():
    geofence.validate_coordinates(90, 180)
    geofence.validate_coordinates(-90.0, -180.0)
