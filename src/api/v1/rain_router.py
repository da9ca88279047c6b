from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from api.v1.dependencies import get_nowcast_service, get_proximity_config, get_weather_service
from nowcast.geo import cardinal
from nowcast.prediction import NearestStationReading, RainPrediction
from nowcast.state import ProximityConfig
from services.nowcast import LocationUnavailable, NowcastService, require_location
from services.weather import WeatherDataUnavailable, WeatherService

router = APIRouter(prefix="/rain", tags=["rain"])


class ProximityModel(BaseModel):
    radius_km: float
    max_stations: int
    min_stations: int


class NearestStationModel(BaseModel):
    id: str
    name: str
    distance_km: float = Field(description="Great-circle distance from the requested location in kilometers")
    bearing_deg: float = Field(description="Initial bearing from the requested location to the station")
    cardinal: str
    rainfall_mm: float
    wind_speed: float | None = None
    wind_direction_deg: float | None = None
    wind_cardinal: str | None = None


class PredictionModel(BaseModel):
    kind: str
    message: str
    rain_expected: bool
    station_id: str | None = None
    station_name: str | None = None
    eta_minutes: int | None = None
    distance_km: float | None = None
    closing_speed_kmh: float | None = None
    bearing_deg: float | None = None
    cardinal: str | None = None


class SnapshotSummary(BaseModel):
    timestamp: str
    station_count: int
    significant_rain_detected: bool
    max_rainfall_mm: float | None = None
    wind_vector_count: int = 0
    rainfall_unit: str
    wind_speed_unit: str
    wind_direction_unit: str


class NowcastResponse(BaseModel):
    location: dict[str, float]
    proximity: ProximityModel
    snapshot: SnapshotSummary
    nearest_station: NearestStationModel | None = None
    prediction: PredictionModel


class DistancePoolStatus(BaseModel):
    enabled: bool
    initialized: bool
    size: int
    backend: str | None = None
    last_strategy: str | None = None


class RainStatusResponse(BaseModel):
    stage: str
    last_error: str | None = None
    cache_expiry: str | None = Field(default=None, description="When the cached snapshot expires (UTC)")
    wind_vectors_expiry: str | None = None
    acquisition_threshold_mm: float
    distance_pool: DistancePoolStatus


def _prediction_model(prediction: RainPrediction) -> PredictionModel:
    model = PredictionModel(kind=prediction.kind, message=prediction.message, rain_expected=prediction.rain_expected)
    threat = prediction.threat
    if threat is not None:
        model.station_id = threat.station.id
        model.station_name = threat.station.name
        model.eta_minutes = threat.eta_minutes
        model.distance_km = round(threat.distance_km, 3)
        model.closing_speed_kmh = round(threat.closing_speed_kmh, 2)
        model.bearing_deg = round(threat.bearing_deg, 1)
        model.cardinal = cardinal(threat.bearing_deg)
    return model


def _nearest_model(reading: NearestStationReading | None) -> NearestStationModel | None:
    if reading is None:
        return None
    return NearestStationModel(
        id=reading.station.id,
        name=reading.station.name,
        distance_km=round(reading.distance_km, 3),
        bearing_deg=round(reading.bearing_deg, 1),
        cardinal=cardinal(reading.bearing_deg),
        rainfall_mm=reading.rainfall,
        wind_speed=reading.wind_speed,
        wind_direction_deg=reading.wind_direction,
        wind_cardinal=reading.wind_cardinal,
    )


@router.get("/nowcast", response_model=NowcastResponse)
async def get_nowcast(
    lat: float | None = Query(None, ge=-90.0, le=90.0),
    lon: float | None = Query(None, ge=-180.0, le=180.0),
    refresh: bool = Query(False, description="Bypass the cached snapshot"),
    config: ProximityConfig = Depends(get_proximity_config),
    service: NowcastService = Depends(get_nowcast_service),
):
    try:
        location = require_location(lat, lon)
        report = await service.nowcast(location, config, force_refresh=refresh)
    except LocationUnavailable as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except WeatherDataUnavailable as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    snapshot = report.snapshot
    return NowcastResponse(
        location=report.location.to_dict(),
        proximity=ProximityModel(**report.config.model_dump()),
        snapshot=SnapshotSummary(
            timestamp=snapshot.timestamp,
            station_count=len(snapshot.stations),
            significant_rain_detected=snapshot.significant_rain_detected,
            max_rainfall_mm=max(snapshot.rainfall.values()) if snapshot.rainfall else None,
            wind_vector_count=len(snapshot.wind_vectors),
            rainfall_unit=snapshot.rainfall_unit,
            wind_speed_unit=snapshot.wind_speed_unit,
            wind_direction_unit=snapshot.wind_direction_unit,
        ),
        nearest_station=_nearest_model(report.nearest),
        prediction=_prediction_model(report.prediction),
    )


@router.get("/snapshot")
async def get_snapshot(
    lat: float | None = Query(None, ge=-90.0, le=90.0),
    lon: float | None = Query(None, ge=-180.0, le=180.0),
    refresh: bool = Query(False, description="Bypass the cached snapshot"),
    config: ProximityConfig = Depends(get_proximity_config),
    service: WeatherService = Depends(get_weather_service),
) -> dict[str, Any]:
    try:
        location = require_location(lat, lon)
        snapshot = await service.get_snapshot(location, config, force_refresh=refresh)
    except LocationUnavailable as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except WeatherDataUnavailable as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return snapshot.to_dict()


@router.get("/wind-vectors")
async def get_wind_vectors(service: WeatherService = Depends(get_weather_service)) -> dict[str, Any]:
    record = service.wind_record
    vectors = record.get() if record is not None else None
    if vectors is None:
        raise HTTPException(status_code=404, detail="No wind vectors recorded")
    expiry = record.expiry() if record is not None else None
    return {
        "expiry": expiry.isoformat() if expiry else None,
        "windVectors": {key: vector.to_dict() for key, vector in vectors.items()},
    }


@router.get("/status", response_model=RainStatusResponse)
async def get_status(service: WeatherService = Depends(get_weather_service)):
    engine = service.engine
    pool = engine.pool
    cache_expiry = service.cache.expiry()
    wind_expiry = service.wind_record.expiry() if service.wind_record is not None else None
    return RainStatusResponse(
        stage=service.last_stage.value,
        last_error=service.last_error,
        cache_expiry=cache_expiry.isoformat() if cache_expiry else None,
        wind_vectors_expiry=wind_expiry.isoformat() if wind_expiry else None,
        acquisition_threshold_mm=service.rain_threshold_mm,
        distance_pool=DistancePoolStatus(
            enabled=pool is not None,
            initialized=pool.initialized if pool is not None else False,
            size=pool.size if pool is not None else 0,
            backend=pool.backend if pool is not None else None,
            last_strategy=engine.last_strategy,
        ),
    )
