"""Conversion of station wind samples into planar velocity vectors (km/h)."""

from __future__ import annotations

import math
from typing import Final, Mapping

from .state import WindVector

KNOTS_TO_KMH: Final[float] = 1.852


def travel_direction(direction_from_deg: float) -> float:
    """Return the direction air moves towards for a reported "from" direction [deg]."""

    return (direction_from_deg + 180.0) % 360.0


def to_wind_vector(speed_knots: float, direction_from_deg: float) -> WindVector:
    """Return the planar velocity for a wind sample.

    Args:
        speed_knots: Sustained wind speed [kn]; callers only pass positive values.
        direction_from_deg: Meteorological direction the wind blows from [deg].

    The travel angle is decomposed as ``(cos, sin)`` so that a wind from the
    east (90 deg) yields ``(0, -speed)``.
    """

    speed_kmh = speed_knots * KNOTS_TO_KMH
    travel_deg = travel_direction(direction_from_deg)
    travel_rad = math.radians(travel_deg)
    return WindVector(
        velocity_x=speed_kmh * math.cos(travel_rad),
        velocity_y=speed_kmh * math.sin(travel_rad),
        magnitude=abs(speed_kmh),
        direction_deg=travel_deg,
    )


def build_wind_vectors(
    speed_knots: Mapping[str, float],
    direction_from_deg: Mapping[str, float],
) -> dict[str, WindVector]:
    """Return vectors for every station with a positive speed and a known direction.

    Calm or unreported stations get no entry at all; downstream a missing
    vector means the station cannot carry rain anywhere.
    """

    vectors: dict[str, WindVector] = {}
    for station_id, speed in speed_knots.items():
        direction = direction_from_deg.get(station_id)
        if speed is None or direction is None or speed <= 0.0:
            continue
        vectors[station_id] = to_wind_vector(speed, direction)
    return vectors


__all__ = ["KNOTS_TO_KMH", "travel_direction", "to_wind_vector", "build_wind_vectors"]
