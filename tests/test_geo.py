import math

import pytest

from attendance_module.errors import InvalidCoordinate
from attendance_module.geo import classify, distance_meters
from attendance_module.models import ZoneStatus

from conftest import SCHOOL_LAT, SCHOOL_LNG, north_of


def test_zero_distance():
    assert distance_meters(SCHOOL_LAT, SCHOOL_LNG, SCHOOL_LAT, SCHOOL_LNG) == 0


def test_distance_is_symmetric():
    forward = distance_meters(12.9716, 77.5946, 13.0827, 80.2707)
    backward = distance_meters(13.0827, 80.2707, 12.9716, 77.5946)
    assert forward == pytest.approx(backward, rel=1e-6)


def test_known_distance_bengaluru_chennai():
    # Roughly 290 km as the crow flies.
    assert distance_meters(12.9716, 77.5946, 13.0827, 80.2707) == pytest.approx(290_000, rel=0.01)


def test_due_north_offset_matches_meters():
    lat, lng = north_of(SCHOOL_LAT, SCHOOL_LNG, 150)
    assert distance_meters(SCHOOL_LAT, SCHOOL_LNG, lat, lng) == pytest.approx(150, abs=1e-6)


def test_accepts_numeric_strings():
    assert distance_meters("12.9716", "77.5946", 12.9716, 77.5946) == 0


def test_antipodal_points_do_not_blow_up():
    assert distance_meters(0, 0, 0, 180) == pytest.approx(math.pi * 6371000.0)


@pytest.mark.parametrize("bad", ["north", None, float("nan"), float("inf"), True, [1.0]])
def test_rejects_malformed_coordinates(bad):
    with pytest.raises(InvalidCoordinate):
        distance_meters(bad, 77.5946, 12.9716, 77.5946)


def test_out_of_range_degrees_are_not_validated():
    assert distance_meters(95, 200, 0, 0) > 0


@pytest.mark.parametrize(
    "distance, zone, out_of_range",
    [
        (0, ZoneStatus.GREEN, False),
        (100, ZoneStatus.GREEN, False),
        (100.0001, ZoneStatus.ORANGE, True),
        (200, ZoneStatus.ORANGE, True),
        (200.0001, ZoneStatus.RED, True),
        (5_000_000, ZoneStatus.RED, True),
    ],
)
def test_classification_boundaries(distance, zone, out_of_range):
    result = classify(distance, 100)
    assert result.zone_status is zone
    assert result.out_of_range is out_of_range
    assert result.distance_meters == distance


def test_missing_radius_uses_default_of_100m():
    assert classify(150, None).zone_status is ZoneStatus.ORANGE
    assert classify(100, None).zone_status is ZoneStatus.GREEN


@pytest.mark.parametrize("radius", [0, -5])
def test_non_positive_radius_is_rejected(radius):
    with pytest.raises(ValueError):
        classify(10, radius)
