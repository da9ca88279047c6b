import math

import pytest

from nowcast.geo import bearing, cardinal, distance, distances_for_points, to_local_cartesian
from nowcast.state import Location

SINGAPORE = Location(latitude=1.3521, longitude=103.8198)
CHANGI = Location(latitude=1.3644, longitude=103.9915)


@pytest.mark.parametrize(
    "point",
    [SINGAPORE, CHANGI, Location(latitude=0.0, longitude=0.0), Location(latitude=-45.5, longitude=170.25)],
)
def test_distance_to_self_is_zero(point: Location) -> None:
    assert distance(point, point) == 0.0


def test_distance_is_symmetric() -> None:
    assert distance(SINGAPORE, CHANGI) == pytest.approx(distance(CHANGI, SINGAPORE))
    assert distance(SINGAPORE, CHANGI) == pytest.approx(19.1, abs=0.2)


def test_distance_without_location_is_unreachable() -> None:
    assert distance(SINGAPORE, None) == math.inf
    assert distance(None, SINGAPORE) == math.inf


def test_one_degree_of_latitude() -> None:
    north = Location(latitude=2.3521, longitude=103.8198)
    assert distance(SINGAPORE, north) == pytest.approx(6371.0 * math.pi / 180.0, rel=1e-9)


def test_bearing_cardinal_directions() -> None:
    assert bearing(SINGAPORE, Location(latitude=1.5, longitude=103.8198)) == pytest.approx(0.0, abs=1e-9)
    assert bearing(SINGAPORE, Location(latitude=1.3521, longitude=104.0)) == pytest.approx(90.0, abs=0.01)
    assert bearing(SINGAPORE, Location(latitude=1.2, longitude=103.8198)) == pytest.approx(180.0, abs=1e-9)
    west = bearing(SINGAPORE, Location(latitude=1.3521, longitude=103.6))
    assert west == pytest.approx(270.0, abs=0.01)
    assert 0.0 <= west < 360.0


def test_local_cartesian_axes() -> None:
    x, y = to_local_cartesian(Location(latitude=1.4521, longitude=103.8198), SINGAPORE)
    assert x == pytest.approx(0.0)
    assert y == pytest.approx(6371.0 * math.radians(0.1))

    x, y = to_local_cartesian(Location(latitude=1.3521, longitude=103.9198), SINGAPORE)
    assert x == pytest.approx(6371.0 * math.radians(0.1) * math.cos(math.radians(1.3521)))
    assert y == pytest.approx(0.0)


@pytest.mark.parametrize(
    ("degrees", "label"),
    [
        (0.0, "N"),
        (360.0, "N"),
        (11.24, "N"),
        (11.25, "NNE"),
        (45.0, "NE"),
        (90.0, "E"),
        (180.0, "S"),
        (270.0, "W"),
        (348.75, "N"),
        (-90.0, "W"),
        (720.0 + 22.5, "NNE"),
    ],
)
def test_cardinal_labels(degrees: float, label: str) -> None:
    assert cardinal(degrees) == label


def test_cardinal_is_cyclic() -> None:
    for degrees in range(0, 360, 7):
        assert cardinal(degrees) == cardinal(degrees + 360)


def test_distances_for_points_preserves_order() -> None:
    points = [("a", 1.3644, 103.9915), ("b", 1.3521, 103.8198), ("c", 1.40, 103.70)]
    result = distances_for_points((SINGAPORE.latitude, SINGAPORE.longitude), points)
    assert [item[0] for item in result] == ["a", "b", "c"]
    assert result[1][1] == 0.0
    assert result[0][1] == pytest.approx(distance(SINGAPORE, CHANGI))
