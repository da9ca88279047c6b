
import sys
from pathlib import Path
from typing import Any, Callable, Dict

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from config import settings  # noqa: E402
from main import create_app  # noqa: E402
from nowcast.state import Location, Station  # noqa: E402

BASE_URL = "https://api.test/v2/real-time/api"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings_override() -> Callable[..., None]:
    original: Dict[str, Any] = {}

    def _apply(**overrides: Any) -> None:
        for key, value in overrides.items():
            if key not in original:
                original[key] = getattr(settings, key)
            setattr(settings, key, value)

    yield _apply

    for key, value in original.items():
        setattr(settings, key, value)


@pytest.fixture
def upstream(settings_override: Callable[..., None]) -> str:
    settings_override(datagov_base_url=BASE_URL, data_gov_api_key="test-key")
    return BASE_URL


@pytest.fixture
def client(upstream: str, settings_override: Callable[..., None]) -> TestClient:
    settings_override(distance_worker_backend="thread", distance_pool_max_workers=2)
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


def make_station(station_id: str, lat: float | None, lon: float | None, name: str | None = None) -> Station:
    location = Location(latitude=lat, longitude=lon) if lat is not None and lon is not None else None
    return Station(id=station_id, device_id=station_id, name=name or station_id, location=location)


def station_record(station_id: str, lat: float, lon: float, name: str | None = None, key: str = "labelLocation") -> dict[str, Any]:
    return {
        "id": station_id,
        "deviceId": station_id,
        "name": name or station_id,
        key: {"latitude": lat, "longitude": lon},
    }


def envelope(
    stations: list[dict[str, Any]],
    values: dict[str, float],
    *,
    timestamp: str = "2025-01-01T10:00:00+08:00",
    reading_type: str = "TB1 Rainfall 5 Minute Total F",
    reading_unit: str = "mm",
) -> dict[str, Any]:
    return {
        "code": 0,
        "errorMsg": "",
        "data": {
            "stations": stations,
            "readings": [
                {
                    "timestamp": timestamp,
                    "data": [{"stationId": key, "value": value} for key, value in values.items()],
                }
            ],
            "readingType": reading_type,
            "readingUnit": reading_unit,
            "paginationToken": None,
        },
    }
