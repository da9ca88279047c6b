from datetime import datetime, timezone

import httpx
import pytest

from conftest import BASE_URL, envelope, station_record
from nowcast.state import Location, ProximityConfig
from nowcast.vectors import to_wind_vector
from services.datagov import DataGovClient, UpstreamError, parse_envelope
from services.distance_pool import DistanceEngine
from services.weather import (
    AcquisitionStage,
    WeatherDataUnavailable,
    WeatherService,
    snapshot_cache,
    snapshot_scope,
    wind_vector_record,
)
from services.weather_cache import VolatileStore

REFERENCE = Location(latitude=1.3521, longitude=103.8198)
RAINFALL_URL = f"{BASE_URL}/rainfall"
SPEED_URL = f"{BASE_URL}/wind-speed"
DIRECTION_URL = f"{BASE_URL}/wind-direction"


class _Clock:
    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


def _service(clock: _Clock | None = None) -> WeatherService:
    store = VolatileStore()
    clock = clock or _Clock(datetime(2025, 1, 1, 2, 1, tzinfo=timezone.utc))
    return WeatherService(
        client=DataGovClient(base_url=BASE_URL, api_key="test-key"),
        cache=snapshot_cache(store, clock=clock),
        wind_record=wind_vector_record(store, clock=clock),
        engine=DistanceEngine(None),
        rain_threshold_mm=1.0,
    )


def _rain_stations() -> list[dict]:
    return [
        station_record("S24", 1.3678, 103.9826, name="Upper Changi Road North"),
        station_record("S43", 1.3399, 103.8878, name="Kim Chuan Road"),
        {"id": "S50", "deviceId": "S50", "name": "Clementi Road"},
    ]


@pytest.mark.anyio
async def test_dry_batch_skips_wind_feeds(respx_mock) -> None:
    rainfall = respx_mock.get(RAINFALL_URL).mock(
        return_value=httpx.Response(200, json=envelope(_rain_stations(), {"S24": 0.2, "S43": 0.0, "S50": 0.9}))
    )
    service = _service()

    snapshot = await service.get_snapshot(REFERENCE, ProximityConfig(radius_km=50.0, min_stations=0))

    assert rainfall.call_count == 1
    assert snapshot.significant_rain_detected is False
    assert snapshot.wind_speed == {}
    assert snapshot.wind_direction == {}
    assert snapshot.wind_vectors == {}
    assert service.last_stage is AcquisitionStage.DONE
    assert service.cache.get().snapshot == snapshot
    assert service.wind_record.get() is None
    await service.close()


@pytest.mark.anyio
async def test_rainy_batch_fetches_wind_once_each(respx_mock) -> None:
    respx_mock.get(RAINFALL_URL).mock(
        return_value=httpx.Response(200, json=envelope(_rain_stations(), {"S24": 5.0, "S43": 0.0, "S50": 0.4}))
    )
    speed = respx_mock.get(SPEED_URL).mock(
        return_value=httpx.Response(
            200,
            json=envelope(
                [station_record("S50", 1.3337, 103.7768, key="location"), station_record("S24", 9.0, 9.0)],
                {"S24": 10.0, "S50": 4.0},
                reading_unit="knots",
            ),
        )
    )
    direction = respx_mock.get(DIRECTION_URL).mock(
        return_value=httpx.Response(
            200,
            json=envelope(
                [station_record("S50", 2.0, 2.0)],
                {"S24": 90.0, "S50": 180.0},
                reading_unit="degrees",
            ),
        )
    )
    service = _service()

    snapshot = await service.get_snapshot(None)

    assert speed.call_count == 1
    assert direction.call_count == 1
    assert speed.calls.last.request.headers["x-api-key"] == "test-key"
    by_id = {station.id: station for station in snapshot.stations}
    assert by_id["S24"].location == Location(latitude=1.3678, longitude=103.9826)
    assert by_id["S50"].location == Location(latitude=1.3337, longitude=103.7768)
    assert snapshot.significant_rain_detected is True
    assert set(snapshot.wind_vectors) == {"S24", "S50"}
    assert snapshot.wind_vectors["S24"].velocity_y == pytest.approx(-18.52)
    assert snapshot.wind_speed_unit == "knots"
    assert snapshot.timestamp == "2025-01-01T10:00:00+08:00"
    assert set(service.wind_record.get()) == {"S24", "S50"}
    await service.close()


@pytest.mark.anyio
async def test_reference_filters_and_rekeys_maps(respx_mock) -> None:
    far = station_record("S99", 1.9, 103.8198, name="Far Away")
    respx_mock.get(RAINFALL_URL).mock(
        return_value=httpx.Response(200, json=envelope(_rain_stations() + [far], {"S24": 2.0, "S43": 3.0, "S99": 8.0}))
    )
    respx_mock.get(SPEED_URL).mock(return_value=httpx.Response(200, json=envelope([], {"S43": 5.0, "S99": 6.0})))
    respx_mock.get(DIRECTION_URL).mock(return_value=httpx.Response(200, json=envelope([], {"S43": 0.0, "S99": 0.0})))
    service = _service()

    snapshot = await service.get_snapshot(REFERENCE, ProximityConfig(radius_km=20.0, max_stations=20, min_stations=0))

    assert [station.id for station in snapshot.stations] == ["S43", "S24"]
    assert set(snapshot.rainfall) == {"S24", "S43"}
    assert set(snapshot.wind_speed) == {"S43"}
    assert set(snapshot.wind_vectors) == {"S43"}
    await service.close()


@pytest.mark.anyio
async def test_cached_snapshot_avoids_network(respx_mock) -> None:
    rainfall = respx_mock.get(RAINFALL_URL).mock(
        return_value=httpx.Response(200, json=envelope(_rain_stations(), {"S24": 0.0}))
    )
    service = _service()

    first = await service.get_snapshot(REFERENCE)
    second = await service.get_snapshot(REFERENCE)
    third = await service.get_snapshot(REFERENCE, force_refresh=True)

    assert first == second == third
    assert rainfall.call_count == 2
    await service.close()


@pytest.mark.anyio
async def test_cache_expires_on_boundary(respx_mock) -> None:
    rainfall = respx_mock.get(RAINFALL_URL).mock(
        return_value=httpx.Response(200, json=envelope(_rain_stations(), {"S24": 0.0}))
    )
    clock = _Clock(datetime(2025, 1, 1, 2, 2, 30, tzinfo=timezone.utc))
    service = _service(clock)

    await service.get_snapshot(REFERENCE)
    clock.moment = datetime(2025, 1, 1, 2, 4, 59, tzinfo=timezone.utc)
    await service.get_snapshot(REFERENCE)
    clock.moment = datetime(2025, 1, 1, 2, 5, 1, tzinfo=timezone.utc)
    await service.get_snapshot(REFERENCE)

    assert rainfall.call_count == 2
    await service.close()


@pytest.mark.anyio
async def test_cache_is_scoped_to_reference_and_bounds(respx_mock) -> None:
    rainfall = respx_mock.get(RAINFALL_URL).mock(
        return_value=httpx.Response(200, json=envelope(_rain_stations(), {"S24": 0.0, "S43": 0.0}))
    )
    changi = Location(latitude=1.3678, longitude=103.9826)
    service = _service()

    near = await service.get_snapshot(REFERENCE, ProximityConfig(radius_km=10.0, min_stations=0))
    repeat = await service.get_snapshot(REFERENCE, ProximityConfig(radius_km=10.0, min_stations=0))
    assert rainfall.call_count == 1
    assert repeat == near
    assert [station.id for station in near.stations] == ["S43"]

    wide = await service.get_snapshot(REFERENCE, ProximityConfig(radius_km=50.0, min_stations=0))
    assert rainfall.call_count == 2
    assert [station.id for station in wide.stations] == ["S43", "S24"]

    moved = await service.get_snapshot(changi, ProximityConfig(radius_km=2.0, min_stations=0))
    assert rainfall.call_count == 3
    assert [station.id for station in moved.stations] == ["S24"]
    assert service.cache.get().scope == snapshot_scope(changi, ProximityConfig(radius_km=2.0, min_stations=0))
    await service.close()


@pytest.mark.anyio
async def test_unfiltered_snapshot_is_not_reused_for_a_location(respx_mock) -> None:
    rainfall = respx_mock.get(RAINFALL_URL).mock(
        return_value=httpx.Response(200, json=envelope(_rain_stations(), {"S24": 0.0}))
    )
    service = _service()

    everything = await service.get_snapshot(None)
    nearby = await service.get_snapshot(REFERENCE, ProximityConfig(radius_km=10.0, min_stations=0))

    assert rainfall.call_count == 2
    assert len(everything.stations) == 3
    assert [station.id for station in nearby.stations] == ["S43"]
    await service.close()


@pytest.mark.anyio
async def test_calm_rainy_cycle_replaces_wind_record(respx_mock) -> None:
    respx_mock.get(RAINFALL_URL).mock(
        return_value=httpx.Response(200, json=envelope(_rain_stations(), {"S24": 5.0}))
    )
    respx_mock.get(SPEED_URL).mock(return_value=httpx.Response(200, json=envelope([], {"S24": 0.0, "S43": 0.0})))
    respx_mock.get(DIRECTION_URL).mock(return_value=httpx.Response(200, json=envelope([], {"S24": 90.0, "S43": 180.0})))
    service = _service()
    service.wind_record.put({"S24": to_wind_vector(10.0, 90.0)})

    snapshot = await service.get_snapshot(None)

    assert snapshot.significant_rain_detected is True
    assert snapshot.wind_vectors == {}
    assert service.wind_record.get() == {}
    await service.close()


@pytest.mark.anyio
async def test_dry_cycle_keeps_previous_wind_record(respx_mock) -> None:
    respx_mock.get(RAINFALL_URL).mock(
        return_value=httpx.Response(200, json=envelope(_rain_stations(), {"S24": 0.1}))
    )
    service = _service()
    service.wind_record.put({"S24": to_wind_vector(10.0, 90.0)})

    await service.get_snapshot(None)

    assert set(service.wind_record.get()) == {"S24"}
    await service.close()


@pytest.mark.anyio
async def test_rainfall_error_code_fails_cycle(respx_mock) -> None:
    respx_mock.get(RAINFALL_URL).mock(
        return_value=httpx.Response(200, json={"code": 17, "errorMsg": "Invalid request", "data": None})
    )
    service = _service()

    with pytest.raises(WeatherDataUnavailable) as excinfo:
        await service.get_snapshot(REFERENCE)

    assert str(excinfo.value) == "Could not retrieve weather data: Invalid request"
    assert isinstance(excinfo.value.__cause__, UpstreamError)
    assert service.last_stage is AcquisitionStage.FAILED
    assert service.cache.get() is None
    await service.close()


@pytest.mark.anyio
async def test_wind_failure_fails_cycle(respx_mock) -> None:
    respx_mock.get(RAINFALL_URL).mock(
        return_value=httpx.Response(200, json=envelope(_rain_stations(), {"S24": 4.0}))
    )
    respx_mock.get(SPEED_URL).mock(return_value=httpx.Response(200, json=envelope([], {"S24": 3.0})))
    respx_mock.get(DIRECTION_URL).mock(return_value=httpx.Response(500, json={"code": 1, "errorMsg": None}))
    service = _service()

    with pytest.raises(WeatherDataUnavailable) as excinfo:
        await service.get_snapshot(REFERENCE)

    assert "Wind direction API returned an error without a message." in str(excinfo.value)
    assert service.cache.get() is None
    await service.close()


@pytest.mark.anyio
async def test_transport_error_is_wrapped(respx_mock) -> None:
    respx_mock.get(RAINFALL_URL).mock(side_effect=httpx.ConnectError)
    service = _service()

    with pytest.raises(WeatherDataUnavailable):
        await service.get_snapshot(REFERENCE)
    await service.close()


@pytest.mark.anyio
async def test_empty_station_set_succeeds(respx_mock) -> None:
    respx_mock.get(RAINFALL_URL).mock(return_value=httpx.Response(200, json=envelope([], {})))
    service = _service()

    snapshot = await service.get_snapshot(REFERENCE)

    assert snapshot.stations == ()
    assert snapshot.significant_rain_detected is False
    await service.close()


def test_parse_envelope_uses_first_reading_only() -> None:
    payload = envelope([station_record("S1", 1.0, 103.0)], {"S1": 1.5})
    payload["data"]["readings"].append({"timestamp": "older", "data": [{"stationId": "S1", "value": 99.0}]})

    batch = parse_envelope("rainfall", payload)

    assert batch.values == {"S1": 1.5}
    assert batch.timestamp == "2025-01-01T10:00:00+08:00"
    assert batch.stations[0].location == Location(latitude=1.0, longitude=103.0)


def test_parse_envelope_without_message() -> None:
    with pytest.raises(UpstreamError) as excinfo:
        parse_envelope("wind-speed", {"code": 4, "data": None})
    assert str(excinfo.value) == "Wind speed API returned an error without a message."
    assert excinfo.value.feed == "wind-speed"
