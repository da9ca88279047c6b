from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger("rainornot.hub.weather_cache")

SNAPSHOT_CACHE_KEY = "weatherDataCache"
WIND_VECTORS_KEY = "windVectorsCache"

T = TypeVar("T")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_aligned_expiry(now: datetime, minutes: int = 5) -> datetime:
    """Return the next ``minutes`` wall-clock boundary after ``now``, seconds zeroed.

    A time already on a boundary still moves a full step ahead.
    """

    step = now.minute % minutes
    expiry = now + timedelta(minutes=minutes - step)
    return expiry.replace(second=0, microsecond=0)


def _to_epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


class VolatileStore:
    """Thread-safe in-process string store keyed like browser local storage."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._entries: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._entries[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class TimeAlignedCache(Generic[T]):
    """Single-slot cache whose entry expires on the next aligned clock boundary.

    The record is stored as ``{"expiry": epoch_ms, "data": ...}`` under one
    key. Expired or unreadable records are removed on read and reported as a
    miss.
    """

    def __init__(
        self,
        store: VolatileStore,
        key: str,
        *,
        encode: Callable[[T], Any],
        decode: Callable[[Any], T],
        align_minutes: int = 5,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._key = key
        self._encode = encode
        self._decode = decode
        self._align_minutes = align_minutes
        self._clock = clock

    @property
    def key(self) -> str:
        return self._key

    def get(self) -> Optional[T]:
        raw = self._store.get(self._key)
        if raw is None:
            return None
        try:
            record = json.loads(raw)
            expiry_ms = int(record["expiry"])
            if _to_epoch_ms(self._clock()) > expiry_ms:
                self._store.remove(self._key)
                return None
            return self._decode(record["data"])
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Failed to read cache record %s: %s", self._key, exc)
            self._store.remove(self._key)
            return None

    def put(self, value: T) -> Optional[datetime]:
        expiry = next_aligned_expiry(self._clock(), self._align_minutes)
        try:
            payload = json.dumps({"expiry": _to_epoch_ms(expiry), "data": self._encode(value)})
        except (TypeError, ValueError) as exc:
            logger.error("Failed to write cache record %s: %s", self._key, exc)
            return None
        self._store.set(self._key, payload)
        return expiry

    def expiry(self) -> Optional[datetime]:
        raw = self._store.get(self._key)
        if raw is None:
            return None
        try:
            expiry_ms = int(json.loads(raw)["expiry"])
        except (ValueError, KeyError, TypeError):
            return None
        return datetime.fromtimestamp(expiry_ms / 1000.0, tz=timezone.utc)

    def clear(self) -> None:
        self._store.remove(self._key)


__all__ = [
    "SNAPSHOT_CACHE_KEY",
    "WIND_VECTORS_KEY",
    "next_aligned_expiry",
    "VolatileStore",
    "TimeAlignedCache",
]
