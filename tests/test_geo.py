import random
import pytest

from routing.geo import MapRegion, bounding_region, distance, path_distance

LONDON = (51.5074, -0.1278)
PARIS = (48.8566, 2.3522)


@pytest.fixture
def random_points():
    rng = random.Random(7)
    return [(rng.uniform(-90, 90), rng.uniform(-180, 180)) for _ in range(60)]


def test_known_distance():
    assert distance(LONDON, PARIS) == pytest.approx(343.5, abs=1.0)


def test_distance_to_self_is_zero(random_points):
    for point in random_points:
        assert distance(point, point) == 0


def test_distance_is_symmetric(random_points):
    for a, b in zip(random_points, random_points[1:]):
        assert distance(a, b) == pytest.approx(distance(b, a))


def test_triangle_inequality(random_points):
    for a, b, c in zip(random_points, random_points[1:], random_points[2:]):
        assert distance(a, c) <= distance(a, b) + distance(b, c) + 1e-9


def test_antipodal_points_stay_finite():
    # rounding can push the haversine term just past 1
    assert distance((0.0, 0.0), (0.0, 180.0)) == pytest.approx(6371 * 3.141592653589793, rel=1e-6)


def test_path_distance_sums_legs():
    stop = (50.0, 1.0)
    assert path_distance([LONDON, stop, PARIS]) == pytest.approx(distance(LONDON, stop) + distance(stop, PARIS))
    assert path_distance([LONDON]) == 0
    assert path_distance([]) == 0


def test_bounding_region_pads_the_span():
    region = bounding_region([(10.0, 20.0), (10.2, 20.4)])

    assert region.latitude == pytest.approx(10.1)
    assert region.longitude == pytest.approx(20.2)
    assert region.latitude_delta == pytest.approx(0.3)
    assert region.longitude_delta == pytest.approx(0.6)


def test_bounding_region_single_point_uses_min_span():
    region = bounding_region([LONDON])

    assert region == MapRegion(LONDON[0], LONDON[1], 0.01, 0.01)


def test_bounding_region_empty_uses_default_center():
    assert bounding_region([]) == MapRegion(0.0, 0.0, 0.01, 0.01)
    assert bounding_region([], default_center=(-17.8, 31.0), min_span=0.05) == MapRegion(-17.8, 31.0, 0.05, 0.05)
