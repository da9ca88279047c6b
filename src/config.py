from pathlib import Path
from typing import List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Load .env next to the repository root and accept env keys in any case
    _env_file = Path(__file__).resolve().parent.parent / ".env"
    model_config = SettingsConfigDict(env_file=str(_env_file), extra="ignore", case_sensitive=False)

    app_name: str = "Rain or Not Hub"
    app_version: str = "0.1.0"
    debug: bool = False
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    port: int = 8000

    # data.gov.sg real-time API
    datagov_base_url: str = Field(
        default="https://api-open.data.gov.sg/v2/real-time/api",
        description="Base URL for the rainfall, wind-speed and wind-direction feeds.",
    )
    data_gov_api_key: str | None = Field(
        default=None,
        description="Optional key sent as x-api-key. Without it upstream rate limits are stricter.",
    )
    weather_user_agent: str = Field(
        default="RainOrNotHub/0.1.0 (support@example.com)",
        description="User-Agent sent to the upstream weather provider.",
    )
    weather_request_timeout: float = Field(default=10.0, ge=1.0, description="Timeout in seconds for feed HTTP calls")

    # Proximity filter defaults
    rain_radius_km: float = Field(default=15.0, ge=0.0, description="Only stations within this radius are processed")
    rain_max_stations: int = Field(default=20, ge=1, description="Limit processing to the closest N stations")
    rain_min_stations: int = Field(default=5, ge=0, description="Always keep at least N stations for reliability")

    # Rain thresholds, acquisition gate and prediction candidate bar
    acquisition_rain_threshold_mm: float = Field(
        default=1.0,
        ge=0.0,
        description="Rainfall at any station at or above this value triggers the wind fetch.",
    )
    prediction_rain_threshold_mm: float = Field(
        default=3.0,
        ge=0.0,
        description="Rainfall a station needs before its wind is considered a threat.",
    )
    prediction_window_minutes: float = Field(default=15.0, gt=0.0, description="Arrival horizon for a threat")
    very_close_minutes: int = Field(default=5, ge=0, description="ETA at or below which rain counts as very close")

    # Snapshot cache
    weather_cache_align_minutes: int = Field(
        default=5,
        ge=1,
        le=60,
        description="Cached snapshots expire at the next multiple of this many wall-clock minutes.",
    )
    wind_vector_record_enabled: bool = Field(
        default=True,
        description="Keep the latest wind-vector map as a separate debugging record.",
    )

    # Distance worker pool
    distance_pool_enabled: bool = Field(default=True, description="Start the distance worker pool on startup.")
    distance_pool_max_workers: int = Field(default=8, ge=1, le=64, description="Upper bound on pool size.")
    distance_parallel_threshold: int = Field(
        default=20,
        ge=0,
        description="Inputs of at most this many stations are computed inline.",
    )
    distance_request_timeout: float = Field(default=10.0, gt=0.0, description="Seconds a shard may take before fallback.")
    distance_worker_backend: Literal["process", "thread"] = Field(
        default="process",
        description="Executor type backing each worker lane.",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def normalize_cors(cls, v):
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("["):
                import json
                return json.loads(s)
            if s in ("", "*"):
                return ["*"]
            return [p.strip() for p in s.split(",")]
        return v

    @field_validator("data_gov_api_key", mode="before")
    @classmethod
    def blank_key_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

settings = Settings()
