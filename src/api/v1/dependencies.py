from __future__ import annotations

from fastapi import HTTPException, Query, Request, status

from config import settings
from nowcast.state import ProximityConfig
from services.distance_pool import DistanceEngine
from services.nowcast import NowcastService
from services.weather import WeatherService


def get_weather_service(request: Request) -> WeatherService:
    service = getattr(request.app.state, "weather_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Weather service not ready")
    return service


def get_nowcast_service(request: Request) -> NowcastService:
    service = getattr(request.app.state, "nowcast_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Nowcast service not ready")
    return service


def get_distance_engine(request: Request) -> DistanceEngine:
    return get_weather_service(request).engine


def get_proximity_config(
    radius_km: float | None = Query(None, ge=0.0, description="Inclusion radius in kilometers"),
    max_stations: int | None = Query(None, ge=1, description="Maximum number of stations to keep"),
    min_stations: int | None = Query(None, ge=0, description="Minimum number of stations to keep"),
) -> ProximityConfig:
    return ProximityConfig(
        radius_km=settings.rain_radius_km if radius_km is None else radius_km,
        max_stations=settings.rain_max_stations if max_stations is None else max_stations,
        min_stations=settings.rain_min_stations if min_stations is None else min_stations,
    )
