import pytest

from nowcast.vectors import KNOTS_TO_KMH, build_wind_vectors, to_wind_vector, travel_direction


def test_easterly_wind_points_west() -> None:
    vector = to_wind_vector(10.0, 90.0)
    assert vector.magnitude == pytest.approx(18.52)
    assert vector.direction_deg == pytest.approx(270.0)
    assert vector.velocity_x == pytest.approx(0.0, abs=1e-9)
    assert vector.velocity_y == pytest.approx(-18.52)


@pytest.mark.parametrize(("source", "travel"), [(0.0, 180.0), (180.0, 0.0), (270.0, 90.0), (359.0, 179.0)])
def test_travel_direction_is_opposite(source: float, travel: float) -> None:
    assert travel_direction(source) == pytest.approx(travel)


def test_magnitude_matches_components() -> None:
    vector = to_wind_vector(7.5, 33.0)
    assert vector.magnitude == pytest.approx(7.5 * KNOTS_TO_KMH)
    assert (vector.velocity_x**2 + vector.velocity_y**2) ** 0.5 == pytest.approx(vector.magnitude)


def test_build_wind_vectors_skips_calm_and_unreported() -> None:
    speeds = {"S1": 5.0, "S2": 0.0, "S3": 4.0, "S4": -1.0}
    directions = {"S1": 180.0, "S2": 90.0, "S4": 10.0, "S5": 45.0}

    vectors = build_wind_vectors(speeds, directions)

    assert set(vectors) == {"S1"}
    assert vectors["S1"].direction_deg == pytest.approx(0.0)
    assert vectors["S1"].magnitude == pytest.approx(5.0 * KNOTS_TO_KMH)


def test_build_wind_vectors_empty_inputs() -> None:
    assert build_wind_vectors({}, {}) == {}
