"""Short-horizon rain arrival estimate from station rainfall and wind vectors."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Final, Literal

from .geo import bearing, cardinal, distance, to_local_cartesian
from .state import AggregatedSnapshot, Location, Station

logger = logging.getLogger("rainornot.hub.nowcast.prediction")

PREDICTION_WINDOW_MINUTES: Final[float] = 15.0
VERY_CLOSE_MINUTES: Final[int] = 5
PREDICTION_RAIN_THRESHOLD_MM: Final[float] = 3.0
COINCIDENT_KM: Final[float] = 1.0e-9
# absorbs float noise from the planar projection at the window boundary
ETA_TOLERANCE_MINUTES: Final[float] = 1.0e-6

PredictionKind = Literal[
    "no_data",
    "no_rain",
    "elsewhere",
    "imminent",
    "approaching",
    "not_approaching",
]

NO_DATA_MESSAGE: Final[str] = "No weather station data available."
NO_RAIN_MESSAGE: Final[str] = "No significant rainfall detected at any weather station. You should stay dry."
ELSEWHERE_MESSAGE: Final[str] = "Significant rain detected elsewhere, not an immediate threat."


@dataclass(frozen=True, slots=True)
class RainThreat:
    """Rainy station whose wind carries the rain towards the reference point."""

    station: Station
    eta_minutes: int
    eta_exact_minutes: float
    distance_km: float
    closing_speed_kmh: float
    bearing_deg: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "stationId": self.station.id,
            "stationName": self.station.name,
            "etaMinutes": self.eta_minutes,
            "distanceKm": round(self.distance_km, 3),
            "closingSpeedKmh": round(self.closing_speed_kmh, 2),
            "bearingDeg": round(self.bearing_deg, 1),
            "cardinal": cardinal(self.bearing_deg),
        }


@dataclass(frozen=True, slots=True)
class RainPrediction:
    kind: PredictionKind
    message: str
    threat: RainThreat | None = None

    @property
    def rain_expected(self) -> bool:
        return self.kind in ("imminent", "approaching")


@dataclass(frozen=True, slots=True)
class NearestStationReading:
    """Latest readings at the station closest to the reference point."""

    station: Station
    distance_km: float
    bearing_deg: float
    rainfall: float
    wind_speed: float | None
    wind_direction: float | None

    @property
    def wind_cardinal(self) -> str | None:
        if self.wind_direction is None:
            return None
        return cardinal(self.wind_direction)


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""

    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)


def _evaluate_candidate(
    station: Station,
    reference: Location,
    snapshot: AggregatedSnapshot,
    window_minutes: float,
) -> RainThreat | None:
    assert station.location is not None
    vector = snapshot.wind_vectors[station.id]
    station_x, station_y = to_local_cartesian(station.location, reference)
    # reference sits at the origin
    to_ref_x = -station_x
    to_ref_y = -station_y
    distance_km = math.hypot(to_ref_x, to_ref_y)
    heading = bearing(reference, station.location)

    if distance_km < COINCIDENT_KM:
        return RainThreat(
            station=station,
            eta_minutes=0,
            eta_exact_minutes=0.0,
            distance_km=distance_km,
            closing_speed_kmh=vector.magnitude,
            bearing_deg=heading,
        )

    # vectors decompose compass degrees as (cos, sin) against an x-east, y-north plane
    dot = vector.velocity_x * to_ref_x + vector.velocity_y * to_ref_y
    if dot <= 0.0:
        return None

    closing_speed = dot / distance_km
    eta = (distance_km / closing_speed) * 60.0
    if eta > window_minutes + ETA_TOLERANCE_MINUTES:
        return None
    return RainThreat(
        station=station,
        eta_minutes=round_half_away(eta),
        eta_exact_minutes=eta,
        distance_km=distance_km,
        closing_speed_kmh=closing_speed,
        bearing_deg=heading,
    )


def find_threats(
    reference: Location,
    snapshot: AggregatedSnapshot,
    *,
    threshold_mm: float = PREDICTION_RAIN_THRESHOLD_MM,
    window_minutes: float = PREDICTION_WINDOW_MINUTES,
) -> tuple[int, list[RainThreat]]:
    """Return the number of rainy candidates and the threats among them, most urgent first."""

    candidates = [
        station
        for station in snapshot.stations
        if station.location is not None
        and snapshot.rainfall.get(station.id, 0.0) >= threshold_mm
        and station.id in snapshot.wind_vectors
        and snapshot.wind_vectors[station.id].magnitude > 0.0
    ]
    threats: list[RainThreat] = []
    for station in candidates:
        threat = _evaluate_candidate(station, reference, snapshot, window_minutes)
        if threat is not None:
            threats.append(threat)
    threats.sort(key=lambda item: (item.eta_minutes, item.distance_km))
    return len(candidates), threats


def predict_rain(
    reference: Location,
    snapshot: AggregatedSnapshot,
    *,
    threshold_mm: float = PREDICTION_RAIN_THRESHOLD_MM,
    window_minutes: float = PREDICTION_WINDOW_MINUTES,
    very_close_minutes: int = VERY_CLOSE_MINUTES,
) -> RainPrediction:
    """Estimate whether rain reaches ``reference`` within ``window_minutes``.

    Each rainy station with wind is projected onto the local plane; the dot
    product of its wind vector with the station-to-reference vector gives the
    closing speed, and the nearest arrival inside the window wins.
    """

    start = time.perf_counter()
    try:
        if not snapshot.stations:
            return RainPrediction(kind="no_data", message=NO_DATA_MESSAGE)
        if not snapshot.significant_rain_detected:
            return RainPrediction(kind="no_rain", message=NO_RAIN_MESSAGE)

        candidate_count, threats = find_threats(
            reference,
            snapshot,
            threshold_mm=threshold_mm,
            window_minutes=window_minutes,
        )
        if candidate_count == 0:
            return RainPrediction(kind="elsewhere", message=ELSEWHERE_MESSAGE)

        if not threats:
            window = round_half_away(window_minutes)
            return RainPrediction(
                kind="not_approaching",
                message=(
                    "Significant rain is detected, but current wind patterns suggest it is not "
                    f"heading towards your location within the next {window} minutes."
                ),
            )

        closest = threats[0]
        name = closest.station.name
        if closest.eta_minutes <= very_close_minutes:
            return RainPrediction(
                kind="imminent",
                message=(
                    f"Rain from {name} is very close and could arrive within "
                    f"{closest.eta_minutes} minutes. Take cover soon!"
                ),
                threat=closest,
            )
        return RainPrediction(
            kind="approaching",
            message=f"Rain from {name} is moving your way and could arrive in about {closest.eta_minutes} minutes.",
            threat=closest,
        )
    finally:
        logger.debug("Rain prediction calculation: %.1f ms", (time.perf_counter() - start) * 1000.0)


def nearest_station_reading(reference: Location, snapshot: AggregatedSnapshot) -> NearestStationReading | None:
    """Return readings for the located station closest to ``reference``."""

    closest: Station | None = None
    closest_km = math.inf
    for station in snapshot.stations:
        if station.location is None:
            continue
        km = distance(reference, station.location)
        if km < closest_km:
            closest = station
            closest_km = km
    if closest is None or closest.location is None:
        return None
    return NearestStationReading(
        station=closest,
        distance_km=closest_km,
        bearing_deg=bearing(reference, closest.location),
        rainfall=snapshot.rainfall.get(closest.id, 0.0),
        wind_speed=snapshot.wind_speed.get(closest.id),
        wind_direction=snapshot.wind_direction.get(closest.id),
    )


__all__ = [
    "PREDICTION_WINDOW_MINUTES",
    "VERY_CLOSE_MINUTES",
    "PREDICTION_RAIN_THRESHOLD_MM",
    "PredictionKind",
    "RainThreat",
    "RainPrediction",
    "NearestStationReading",
    "round_half_away",
    "find_threats",
    "predict_rain",
    "nearest_station_reading",
]
