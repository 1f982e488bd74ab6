import math

import pytest

from match_service import geo
from match_service.errors import ConfigurationError
from match_service.schemas import Coordinate

from .conftest import PARIS, north_of

LYON = Coordinate(latitude=45.764043, longitude=4.835659)


def test_haversine_known_distance():
    # Paris -> Lyon is roughly 392 km as the crow flies
    assert geo.haversine_distance(PARIS, LYON) == pytest.approx(392, abs=2)


def test_haversine_symmetric_and_zero_on_same_point():
    assert geo.haversine_distance(PARIS, LYON) == geo.haversine_distance(LYON, PARIS)
    assert geo.haversine_distance(PARIS, PARIS) == 0.0


def test_haversine_miles():
    km = geo.haversine_distance(PARIS, LYON, "km")
    mi = geo.haversine_distance(PARIS, LYON, "mi")
    assert mi == pytest.approx(km * 3959 / 6371)


def test_unknown_unit_rejected():
    with pytest.raises(ConfigurationError):
        geo.haversine_distance(PARIS, LYON, "parsec")


def test_bounding_box_contains_points_inside_radius():
    box = geo.bounding_box(PARIS, 10)
    assert box.contains(north_of(PARIS, 9.9))
    assert not box.contains(north_of(PARIS, 10.5))
    assert box.min_longitude < PARIS.longitude < box.max_longitude


def test_bounding_box_negative_radius():
    with pytest.raises(ConfigurationError):
        geo.bounding_box(PARIS, -1)


def test_bounding_box_near_pole_spans_all_longitudes():
    box = geo.bounding_box(Coordinate(latitude=89.9, longitude=0), 50)
    assert box.min_longitude == -180.0
    assert box.max_longitude == 180.0
    assert box.max_latitude == 90.0


def test_bounding_box_across_antimeridian_keeps_nearby_points():
    center = Coordinate(latitude=0, longitude=179.95)
    neighbour = Coordinate(latitude=0, longitude=-179.95)
    assert geo.haversine_distance(center, neighbour) == pytest.approx(11.12, abs=0.01)

    box = geo.bounding_box(center, 50)
    assert box.contains(neighbour)
    assert box.min_longitude == -180.0
    assert box.max_longitude == 180.0

    west = geo.bounding_box(Coordinate(latitude=10, longitude=-179.9), 30)
    assert west.contains(Coordinate(latitude=10, longitude=179.9))


def test_bounding_box_away_from_antimeridian_stays_narrow():
    box = geo.bounding_box(Coordinate(latitude=0, longitude=179.0), 50)
    assert 178.5 < box.min_longitude < 179.0 < box.max_longitude < 179.5


def test_haversine_near_antipodal_points():
    half_circumference = 6371.0 * math.pi
    for i in range(9000):
        lat = i / 100
        d = geo.haversine_distance(Coordinate(latitude=lat, longitude=0), Coordinate(latitude=-lat, longitude=180))
        assert d == pytest.approx(half_circumference, rel=1e-6)


def test_nearest_point_with_antipodal_candidate():
    origin = Coordinate(latitude=0.08, longitude=0)
    antipode = Coordinate(latitude=-0.08, longitude=180)
    point, distance = geo.nearest_point(origin, [antipode])
    assert point == antipode
    assert distance == pytest.approx(6371.0 * math.pi)


def test_is_within_radius():
    assert geo.is_within_radius(PARIS, north_of(PARIS, 4), 5)
    assert not geo.is_within_radius(PARIS, north_of(PARIS, 6), 5)


def test_centroid():
    assert geo.centroid([]) is None
    mid = geo.centroid([north_of(PARIS, -10), north_of(PARIS, 10)])
    assert mid.latitude == pytest.approx(PARIS.latitude, abs=1e-6)
    assert mid.longitude == pytest.approx(PARIS.longitude, abs=1e-6)


def test_nearest_point():
    near = north_of(PARIS, 2)
    far = north_of(PARIS, 30)
    point, distance = geo.nearest_point(PARIS, [far, near])
    assert point == near
    assert distance == pytest.approx(2, abs=1e-6)
    assert geo.nearest_point(PARIS, []) is None


def test_points_within_radius_sorted():
    pts = [north_of(PARIS, 8), north_of(PARIS, 3), north_of(PARIS, 30)]
    inside = geo.points_within_radius(PARIS, pts, 10)
    assert [round(d) for _, d in inside] == [3, 8]


def test_estimate_travel_time_uses_mode_speed():
    b = north_of(PARIS, 10)
    assert geo.estimate_travel_time(PARIS, b, "driving")["duration_minutes"] == 12
    assert geo.estimate_travel_time(PARIS, b, "walking")["duration_minutes"] == 120
    assert geo.estimate_travel_time(PARIS, b, "teleport")["mode"] == "driving"


def test_format_distance():
    assert geo.format_distance(0.85) == "850 m"
    assert geo.format_distance(3.24) == "3.2 km"
    assert geo.format_distance(4.06, "mi") == "4.1 miles"


def test_optimize_route_greedy_order():
    a, b, c = north_of(PARIS, 1), north_of(PARIS, 5), north_of(PARIS, 3)
    out = geo.optimize_route(PARIS, [b, a, c])
    assert [leg["point"] for leg in out["route"]] == [a, c, b]
    assert out["total_distance_km"] == pytest.approx(5, abs=0.01)
    assert geo.optimize_route(PARIS, [])["route"] == []
