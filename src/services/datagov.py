from __future__ import annotations

import logging
from typing import Any, Literal, Optional

import httpx

from config import settings
from nowcast.state import FeedBatch, Location, Station

logger = logging.getLogger("rainornot.hub.datagov")

Feed = Literal["rainfall", "wind-speed", "wind-direction"]
FEEDS: tuple[Feed, ...] = ("rainfall", "wind-speed", "wind-direction")


class UpstreamError(RuntimeError):
    """Raised when a data.gov.sg feed errors, returns a non-zero code or cannot be reached."""

    def __init__(self, feed: str, message: str) -> None:
        super().__init__(message)
        self.feed = feed


class DataGovClient:
    """Reads the latest batch of the real-time weather feeds."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._base_url = (base_url or settings.datagov_base_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.data_gov_api_key
        self._timeout = timeout or settings.weather_request_timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "User-Agent": settings.weather_user_agent,
                "Accept": "application/json",
            }
            if self._api_key:
                headers["x-api-key"] = self._api_key
                logger.info("Using authenticated data.gov.sg requests")
            else:
                logger.warning("No data.gov.sg API key configured; unauthenticated requests may be rate limited")
            self._client = httpx.AsyncClient(headers=headers, timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def feed_url(self, feed: Feed) -> str:
        return f"{self._base_url}/{feed}"

    async def fetch_latest(self, feed: Feed) -> FeedBatch:
        client = await self._get_client()
        url = self.feed_url(feed)
        logger.debug("Fetching %s feed from %s", feed, url)
        try:
            response = await client.get(url)
        except httpx.HTTPError as exc:
            raise UpstreamError(feed, f"{_label(feed)} request failed: {exc}") from exc

        try:
            envelope = response.json()
        except ValueError as exc:
            if response.is_error:
                raise UpstreamError(feed, f"{_label(feed)} API returned HTTP {response.status_code}") from exc
            raise UpstreamError(feed, f"{_label(feed)} API returned a malformed body") from exc

        return parse_envelope(feed, envelope, status_code=response.status_code)


def _label(feed: str) -> str:
    return feed.replace("-", " ").capitalize()


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_station(raw: Any) -> Optional[Station]:
    if not isinstance(raw, dict):
        return None
    station_id = raw.get("id")
    if not station_id:
        return None
    location: Location | None = None
    location_data = raw.get("labelLocation") or raw.get("location")
    if isinstance(location_data, dict):
        lat = _to_float(location_data.get("latitude"))
        lon = _to_float(location_data.get("longitude"))
        if lat is not None and lon is not None:
            location = Location(latitude=lat, longitude=lon)
    return Station(
        id=str(station_id),
        device_id=str(raw.get("deviceId") or ""),
        name=str(raw.get("name") or station_id),
        location=location,
    )


def parse_envelope(feed: str, envelope: Any, *, status_code: int = 200) -> FeedBatch:
    """Turn a ``{code, errorMsg, data}`` envelope into the feed's latest batch.

    Only ``readings[0]`` is used; pagination tokens are ignored.
    """

    if not isinstance(envelope, dict):
        raise UpstreamError(feed, f"{_label(feed)} API returned a malformed body")
    code = envelope.get("code")
    data = envelope.get("data")
    if code != 0 or not isinstance(data, dict):
        message = envelope.get("errorMsg") or f"{_label(feed)} API returned an error without a message."
        raise UpstreamError(feed, str(message))
    if status_code >= 400:
        raise UpstreamError(feed, f"{_label(feed)} API returned HTTP {status_code}")

    stations: list[Station] = []
    for raw_station in data.get("stations") or []:
        station = parse_station(raw_station)
        if station is not None:
            stations.append(station)

    values: dict[str, float] = {}
    timestamp: Optional[str] = None
    readings = data.get("readings") or []
    latest = readings[0] if readings and isinstance(readings[0], dict) else None
    if latest is not None:
        timestamp = latest.get("timestamp")
        for item in latest.get("data") or []:
            if not isinstance(item, dict):
                continue
            station_id = item.get("stationId")
            value = _to_float(item.get("value"))
            if station_id and value is not None:
                values[str(station_id)] = value

    return FeedBatch(
        feed=feed,
        stations=stations,
        values=values,
        timestamp=timestamp,
        reading_type=data.get("readingType"),
        reading_unit=data.get("readingUnit"),
    )


__all__ = ["Feed", "FEEDS", "UpstreamError", "DataGovClient", "parse_station", "parse_envelope"]
