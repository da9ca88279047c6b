"""Spherical and local-plane geometry helpers for station proximity work (km, degrees)."""

from __future__ import annotations

import math
from typing import Final, Iterable, Sequence

from .state import Location

EARTH_RADIUS_KM: Final[float] = 6371.0
UNREACHABLE_KM: Final[float] = math.inf
COMPASS_POINTS: Final[tuple[str, ...]] = (
    "N",
    "NNE",
    "NE",
    "ENE",
    "E",
    "ESE",
    "SE",
    "SSE",
    "S",
    "SSW",
    "SW",
    "WSW",
    "W",
    "WNW",
    "NW",
    "NNW",
)
COMPASS_SECTOR_DEG: Final[float] = 360.0 / len(COMPASS_POINTS)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return great-circle distance between two coordinate pairs [km]."""

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance(a: Location | None, b: Location | None) -> float:
    """Return great-circle distance between two locations [km].

    Either side missing yields ``UNREACHABLE_KM`` so callers can rank stations
    without a position last instead of special casing them.
    """

    if a is None or b is None:
        return UNREACHABLE_KM
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def bearing(a: Location, b: Location) -> float:
    """Return initial compass bearing from ``a`` towards ``b`` in [0, 360) degrees."""

    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlon = math.radians(b.longitude - a.longitude)

    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def to_local_cartesian(point: Location, reference: Location) -> tuple[float, float]:
    """Project ``point`` onto a flat plane centred on ``reference`` [km].

    x grows eastwards, y northwards. Small-angle approximation, only meaningful
    for spans of a few tens of kilometres.
    """

    dlat = math.radians(point.latitude - reference.latitude)
    dlon = math.radians(point.longitude - reference.longitude)
    x = EARTH_RADIUS_KM * dlon * math.cos(math.radians(reference.latitude))
    y = EARTH_RADIUS_KM * dlat
    return x, y


def cardinal(degrees: float) -> str:
    """Return the nearest of the 16 compass labels for ``degrees``."""

    # half-up so 11.25 lands on NNE
    index = math.floor((degrees % 360.0) / COMPASS_SECTOR_DEG + 0.5) % len(COMPASS_POINTS)
    return COMPASS_POINTS[index]


def distances_for_points(
    reference: tuple[float, float],
    points: Sequence[tuple[str, float, float]] | Iterable[tuple[str, float, float]],
) -> list[tuple[str, float]]:
    """Return ``(id, km)`` pairs for ``(id, lat, lon)`` points against ``reference``.

    Kept free of project imports beyond this module so it can run inside a
    worker process.
    """

    ref_lat, ref_lon = reference
    return [(point_id, haversine_km(ref_lat, ref_lon, lat, lon)) for point_id, lat, lon in points]


__all__ = [
    "EARTH_RADIUS_KM",
    "UNREACHABLE_KM",
    "COMPASS_POINTS",
    "haversine_km",
    "distance",
    "bearing",
    "to_local_cartesian",
    "cardinal",
    "distances_for_points",
]
