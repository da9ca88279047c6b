from __future__ import annotations

import logging
from dataclasses import dataclass

from config import settings
from nowcast.prediction import NearestStationReading, RainPrediction, nearest_station_reading, predict_rain
from nowcast.state import AggregatedSnapshot, Location, ProximityConfig
from services.weather import WeatherService

logger = logging.getLogger("rainornot.hub.nowcast_service")


class LocationUnavailable(ValueError):
    """Raised when a nowcast is requested without a reference location."""


@dataclass(frozen=True, slots=True)
class NowcastReport:
    location: Location
    config: ProximityConfig
    snapshot: AggregatedSnapshot
    prediction: RainPrediction
    nearest: NearestStationReading | None


def default_proximity() -> ProximityConfig:
    return ProximityConfig(
        radius_km=settings.rain_radius_km,
        max_stations=settings.rain_max_stations,
        min_stations=settings.rain_min_stations,
    )


def require_location(lat: float | None, lon: float | None) -> Location:
    if lat is None or lon is None:
        raise LocationUnavailable("Location is required to predict rain; provide both lat and lon.")
    return Location(latitude=lat, longitude=lon)


class NowcastService:
    """Answers "will it rain here soon" for a reference point."""

    def __init__(self, weather: WeatherService) -> None:
        self._weather = weather
        if settings.acquisition_rain_threshold_mm != settings.prediction_rain_threshold_mm:
            logger.warning(
                "Acquisition rain threshold (%.1f mm) differs from prediction threshold (%.1f mm); "
                "wind is fetched for rain that cannot become a threat",
                settings.acquisition_rain_threshold_mm,
                settings.prediction_rain_threshold_mm,
            )

    @property
    def weather(self) -> WeatherService:
        return self._weather

    async def nowcast(
        self,
        location: Location | None,
        config: ProximityConfig | None = None,
        *,
        force_refresh: bool = False,
    ) -> NowcastReport:
        if location is None:
            raise LocationUnavailable("Location is required to predict rain; provide both lat and lon.")
        proximity = config or default_proximity()
        snapshot = await self._weather.get_snapshot(location, proximity, force_refresh=force_refresh)
        prediction = predict_rain(
            location,
            snapshot,
            threshold_mm=settings.prediction_rain_threshold_mm,
            window_minutes=settings.prediction_window_minutes,
            very_close_minutes=settings.very_close_minutes,
        )
        logger.info("Nowcast for %.4f,%.4f: %s", location.latitude, location.longitude, prediction.kind)
        return NowcastReport(
            location=location,
            config=proximity,
            snapshot=snapshot,
            prediction=prediction,
            nearest=nearest_station_reading(location, snapshot),
        )


__all__ = ["LocationUnavailable", "NowcastReport", "NowcastService", "default_proximity", "require_location"]
