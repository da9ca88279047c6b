import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from config import settings
from nowcast.state import AggregatedSnapshot, FeedBatch, Location, ProximityConfig, Station, WindVector
from nowcast.stations import filter_stations, merge_station_records
from nowcast.vectors import build_wind_vectors
from services.datagov import DataGovClient, UpstreamError
from services.distance_pool import DistanceEngine
from services.weather_cache import (
    SNAPSHOT_CACHE_KEY,
    WIND_VECTORS_KEY,
    TimeAlignedCache,
    VolatileStore,
)

logger = logging.getLogger("rainornot.hub.weather")

RAIN_ANALYSIS_LEVELS = (1.0, 2.0, 3.0)


class WeatherDataUnavailable(RuntimeError):
    """Raised when a fresh snapshot cannot be assembled from the upstream feeds."""


class AcquisitionStage(str, Enum):
    IDLE = "idle"
    FETCHING_RAINFALL = "fetching_rainfall"
    NO_SIGNIFICANT_RAIN = "no_significant_rain"
    FETCHING_WIND = "fetching_wind"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class CachedSnapshot:
    """Snapshot together with the reference and proximity bounds it was filtered for."""

    scope: dict[str, float] | None
    snapshot: AggregatedSnapshot

    def to_dict(self) -> dict[str, Any]:
        return {"scope": self.scope, "snapshot": self.snapshot.to_dict()}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "CachedSnapshot":
        return cls(scope=raw["scope"], snapshot=AggregatedSnapshot.from_dict(raw["snapshot"]))


def snapshot_scope(reference: Location | None, config: ProximityConfig) -> dict[str, float] | None:
    if reference is None:
        return None
    return {
        "latitude": reference.latitude,
        "longitude": reference.longitude,
        "radiusKm": config.radius_km,
        "maxStations": config.max_stations,
        "minStations": config.min_stations,
    }


def snapshot_cache(store: VolatileStore, *, align_minutes: int | None = None, clock=None) -> TimeAlignedCache[CachedSnapshot]:
    kwargs: dict[str, Any] = {"align_minutes": align_minutes or settings.weather_cache_align_minutes}
    if clock is not None:
        kwargs["clock"] = clock
    return TimeAlignedCache(
        store,
        SNAPSHOT_CACHE_KEY,
        encode=lambda entry: entry.to_dict(),
        decode=CachedSnapshot.from_dict,
        **kwargs,
    )


def wind_vector_record(store: VolatileStore, *, align_minutes: int | None = None, clock=None) -> TimeAlignedCache[dict[str, WindVector]]:
    kwargs: dict[str, Any] = {"align_minutes": align_minutes or settings.weather_cache_align_minutes}
    if clock is not None:
        kwargs["clock"] = clock
    return TimeAlignedCache(
        store,
        WIND_VECTORS_KEY,
        encode=lambda vectors: {key: vector.to_dict() for key, vector in vectors.items()},
        decode=lambda raw: {str(key): WindVector.from_dict(value) for key, value in raw.items()},
        **kwargs,
    )


def has_significant_rain(rainfall: dict[str, float], threshold_mm: float) -> bool:
    return any(value >= threshold_mm for value in rainfall.values())


def _log_rain_analysis(rainfall: dict[str, float]) -> None:
    if not rainfall:
        logger.info("Rainfall analysis: no readings in latest batch")
        return
    counts = ", ".join(
        f">={level:g}mm: {sum(1 for value in rainfall.values() if value >= level)}" for level in RAIN_ANALYSIS_LEVELS
    )
    logger.info(
        "Rainfall analysis: max %.1f mm across %s stations (%s)",
        max(rainfall.values()),
        len(rainfall),
        counts,
    )


class WeatherService:
    """Assembles proximity-filtered snapshots of the latest rainfall and wind readings.

    Wind feeds are only requested when some station reports rain at or above
    the acquisition threshold. Completed snapshots are cached until the next
    aligned clock boundary; failed cycles cache nothing.
    """

    def __init__(
        self,
        *,
        client: DataGovClient | None = None,
        cache: TimeAlignedCache[CachedSnapshot] | None = None,
        wind_record: TimeAlignedCache[dict[str, WindVector]] | None = None,
        engine: DistanceEngine | None = None,
        rain_threshold_mm: float | None = None,
    ) -> None:
        store = VolatileStore()
        self._client = client or DataGovClient()
        self._cache = cache or snapshot_cache(store)
        self._wind_record = wind_record
        if self._wind_record is None and settings.wind_vector_record_enabled:
            self._wind_record = wind_vector_record(store)
        self._engine = engine or DistanceEngine()
        self._threshold = settings.acquisition_rain_threshold_mm if rain_threshold_mm is None else rain_threshold_mm
        self._lock = asyncio.Lock()
        self._stage = AcquisitionStage.IDLE
        self._last_error: str | None = None

    @property
    def last_stage(self) -> AcquisitionStage:
        return self._stage

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def cache(self) -> TimeAlignedCache[CachedSnapshot]:
        return self._cache

    @property
    def wind_record(self) -> TimeAlignedCache[dict[str, WindVector]] | None:
        return self._wind_record

    @property
    def engine(self) -> DistanceEngine:
        return self._engine

    @property
    def rain_threshold_mm(self) -> float:
        return self._threshold

    async def close(self) -> None:
        await self._client.close()

    async def get_snapshot(
        self,
        reference: Location | None,
        config: ProximityConfig | None = None,
        *,
        force_refresh: bool = False,
    ) -> AggregatedSnapshot:
        proximity = config or ProximityConfig()
        scope = snapshot_scope(reference, proximity)
        if not force_refresh:
            cached = self._cached_for(scope)
            if cached is not None:
                logger.debug("Using cached snapshot from %s", cached.timestamp)
                self._stage = AcquisitionStage.DONE
                return cached

        async with self._lock:
            if not force_refresh:
                cached = self._cached_for(scope)
                if cached is not None:
                    self._stage = AcquisitionStage.DONE
                    return cached

            start = time.perf_counter()
            try:
                snapshot = await self._acquire(reference, proximity)
            except UpstreamError as exc:
                self._stage = AcquisitionStage.FAILED
                self._last_error = str(exc)
                logger.error("Weather acquisition failed on %s feed: %s", exc.feed, exc)
                raise WeatherDataUnavailable(f"Could not retrieve weather data: {exc}") from exc

            self._cache.put(CachedSnapshot(scope=scope, snapshot=snapshot))
            self._stage = AcquisitionStage.DONE
            self._last_error = None
            logger.info(
                "Weather snapshot ready: %s stations, significant rain %s (%.1f ms)",
                len(snapshot.stations),
                snapshot.significant_rain_detected,
                (time.perf_counter() - start) * 1000.0,
            )
            return snapshot

    def _cached_for(self, scope: dict[str, float] | None) -> AggregatedSnapshot | None:
        entry = self._cache.get()
        if entry is None:
            return None
        if entry.scope != scope:
            logger.debug("Cached snapshot was filtered for %s, requested %s; refreshing", entry.scope, scope)
            return None
        return entry.snapshot

    async def _acquire(self, reference: Location | None, config: ProximityConfig) -> AggregatedSnapshot:
        self._stage = AcquisitionStage.FETCHING_RAINFALL
        stage_start = time.perf_counter()
        rainfall = await self._client.fetch_latest("rainfall")
        logger.debug("Rainfall fetch: %.1f ms", (time.perf_counter() - stage_start) * 1000.0)
        _log_rain_analysis(rainfall.values)

        significant = has_significant_rain(rainfall.values, self._threshold)
        wind_speed: Optional[FeedBatch] = None
        wind_direction: Optional[FeedBatch] = None
        if significant:
            self._stage = AcquisitionStage.FETCHING_WIND
            stage_start = time.perf_counter()
            wind_speed, wind_direction = await asyncio.gather(
                self._client.fetch_latest("wind-speed"),
                self._client.fetch_latest("wind-direction"),
            )
            logger.debug("Wind fetch: %.1f ms", (time.perf_counter() - stage_start) * 1000.0)
        else:
            self._stage = AcquisitionStage.NO_SIGNIFICANT_RAIN
            logger.info("No rainfall at or above %.1f mm; skipping wind feeds", self._threshold)

        self._stage = AcquisitionStage.MERGING
        return await self._merge(rainfall, wind_speed, wind_direction, significant, reference, config)

    async def _merge(
        self,
        rainfall: FeedBatch,
        wind_speed: Optional[FeedBatch],
        wind_direction: Optional[FeedBatch],
        significant: bool,
        reference: Location | None,
        config: ProximityConfig,
    ) -> AggregatedSnapshot:
        feeds = [rainfall.stations]
        if wind_speed is not None:
            feeds.append(wind_speed.stations)
        if wind_direction is not None:
            feeds.append(wind_direction.stations)
        stations = merge_station_records(feeds)

        speed_map = dict(wind_speed.values) if wind_speed is not None else {}
        direction_map = dict(wind_direction.values) if wind_direction is not None else {}
        vectors = build_wind_vectors(speed_map, direction_map)
        # a rainy cycle replaces the record even when every station is calm
        if self._wind_record is not None and significant:
            self._wind_record.put(vectors)

        selected: list[Station] = stations
        rainfall_map = dict(rainfall.values)
        if reference is not None:
            distances = await self._engine.distances(stations, reference)
            selected = filter_stations(stations, reference, config, distances)
            kept = {station.id for station in selected}
            rainfall_map = {key: value for key, value in rainfall_map.items() if key in kept}
            speed_map = {key: value for key, value in speed_map.items() if key in kept}
            direction_map = {key: value for key, value in direction_map.items() if key in kept}
            vectors = {key: value for key, value in vectors.items() if key in kept}

        timestamp = rainfall.timestamp or datetime.now(timezone.utc).isoformat()
        return AggregatedSnapshot(
            stations=tuple(selected),
            rainfall=rainfall_map,
            wind_speed=speed_map,
            wind_direction=direction_map,
            wind_vectors=vectors,
            significant_rain_detected=significant,
            timestamp=timestamp,
            rainfall_unit=rainfall.reading_unit or "mm",
            wind_speed_unit=(wind_speed.reading_unit if wind_speed is not None else None) or "knots",
            wind_direction_unit=(wind_direction.reading_unit if wind_direction is not None else None) or "degrees",
        )


__all__ = [
    "AcquisitionStage",
    "CachedSnapshot",
    "WeatherDataUnavailable",
    "WeatherService",
    "has_significant_rain",
    "snapshot_cache",
    "snapshot_scope",
    "wind_vector_record",
]
