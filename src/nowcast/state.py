"""Domain records shared by the acquisition service, the filter and the predictor."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger("rainornot.hub.nowcast")


@dataclass(frozen=True, slots=True)
class Location:
    """Point on the globe in decimal degrees."""

    latitude: float
    longitude: float

    def to_dict(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None) -> Location | None:
        if not raw:
            return None
        return cls(latitude=float(raw["latitude"]), longitude=float(raw["longitude"]))


@dataclass(slots=True)
class Station:
    """Weather station as reported by one or more feeds.

    Attributes:
        id: Stable station identifier shared across feeds.
        device_id: Upstream device identifier.
        name: Human readable station name.
        location: Label location, ``None`` when no feed supplied one.
    """

    id: str
    device_id: str
    name: str
    location: Location | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "deviceId": self.device_id, "name": self.name}
        if self.location is not None:
            payload["labelLocation"] = self.location.to_dict()
        return payload

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Station:
        return cls(
            id=str(raw["id"]),
            device_id=str(raw.get("deviceId") or ""),
            name=str(raw.get("name") or raw["id"]),
            location=Location.from_dict(raw.get("labelLocation")),
        )


@dataclass(frozen=True, slots=True)
class WindVector:
    """Wind velocity on the local plane.

    Attributes:
        velocity_x: First planar component [km/h].
        velocity_y: Second planar component [km/h].
        magnitude: Speed [km/h], never negative.
        direction_deg: Direction the air travels towards [deg].
    """

    velocity_x: float
    velocity_y: float
    magnitude: float
    direction_deg: float

    def to_dict(self) -> dict[str, float]:
        return {
            "velocityX": self.velocity_x,
            "velocityY": self.velocity_y,
            "magnitude": self.magnitude,
            "directionDeg": self.direction_deg,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> WindVector:
        return cls(
            velocity_x=float(raw["velocityX"]),
            velocity_y=float(raw["velocityY"]),
            magnitude=float(raw["magnitude"]),
            direction_deg=float(raw["directionDeg"]),
        )


@dataclass(frozen=True, slots=True)
class AggregatedSnapshot:
    """Merged, proximity-filtered view of the latest readings of every feed."""

    stations: tuple[Station, ...]
    rainfall: dict[str, float]
    wind_speed: dict[str, float]
    wind_direction: dict[str, float]
    wind_vectors: dict[str, WindVector]
    significant_rain_detected: bool
    timestamp: str
    rainfall_unit: str = "mm"
    wind_speed_unit: str = "knots"
    wind_direction_unit: str = "degrees"

    def station(self, station_id: str) -> Station | None:
        for station in self.stations:
            if station.id == station_id:
                return station
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stations": [station.to_dict() for station in self.stations],
            "rainfallMap": dict(self.rainfall),
            "windSpeedMap": dict(self.wind_speed),
            "windDirectionMap": dict(self.wind_direction),
            "windVectors": {key: vector.to_dict() for key, vector in self.wind_vectors.items()},
            "significantRainDetected": self.significant_rain_detected,
            "timestamp": self.timestamp,
            "rainfallUnit": self.rainfall_unit,
            "windSpeedUnit": self.wind_speed_unit,
            "windDirectionUnit": self.wind_direction_unit,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> AggregatedSnapshot:
        return cls(
            stations=tuple(Station.from_dict(item) for item in raw["stations"]),
            rainfall={str(k): float(v) for k, v in raw["rainfallMap"].items()},
            wind_speed={str(k): float(v) for k, v in raw["windSpeedMap"].items()},
            wind_direction={str(k): float(v) for k, v in raw["windDirectionMap"].items()},
            wind_vectors={str(k): WindVector.from_dict(v) for k, v in raw["windVectors"].items()},
            significant_rain_detected=bool(raw["significantRainDetected"]),
            timestamp=str(raw["timestamp"]),
            rainfall_unit=str(raw.get("rainfallUnit") or "mm"),
            wind_speed_unit=str(raw.get("windSpeedUnit") or "knots"),
            wind_direction_unit=str(raw.get("windDirectionUnit") or "degrees"),
        )


class ProximityConfig(BaseModel):
    """Bounds on which stations take part in a nowcast."""

    radius_km: float = Field(default=15.0, ge=0.0, description="Inclusion radius around the reference point")
    max_stations: int = Field(default=20, ge=1, description="Cap on the ranked station list")
    min_stations: int = Field(default=5, ge=0, description="Floor that may override the radius")

    @model_validator(mode="after")
    def clamp_min_stations(self) -> ProximityConfig:
        if self.min_stations > self.max_stations:
            logger.warning(
                "min_stations=%s exceeds max_stations=%s; clamping",
                self.min_stations,
                self.max_stations,
            )
            self.min_stations = self.max_stations
        return self


@dataclass(slots=True)
class FeedBatch:
    """Latest reading batch of a single upstream feed."""

    feed: str
    stations: list[Station] = field(default_factory=list)
    values: dict[str, float] = field(default_factory=dict)
    timestamp: str | None = None
    reading_type: str | None = None
    reading_unit: str | None = None


__all__ = [
    "Location",
    "Station",
    "WindVector",
    "AggregatedSnapshot",
    "ProximityConfig",
    "FeedBatch",
]
