"""Station merging and proximity ranking."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Sequence

from .geo import distance
from .state import Location, ProximityConfig, Station

logger = logging.getLogger("rainornot.hub.nowcast.stations")


def merge_station_records(feeds: Iterable[Iterable[Station]]) -> list[Station]:
    """Union station records across feeds keyed by id.

    The first record seen for an id fixes its name and device id; a location
    is only filled in when the kept record has none yet.
    """

    merged: dict[str, Station] = {}
    for stations in feeds:
        for station in stations:
            existing = merged.get(station.id)
            if existing is None:
                merged[station.id] = Station(
                    id=station.id,
                    device_id=station.device_id,
                    name=station.name,
                    location=station.location,
                )
            elif existing.location is None and station.location is not None:
                existing.location = station.location
    return list(merged.values())


def rank_by_distance(
    stations: Sequence[Station],
    reference: Location,
    distances: Mapping[str, float] | None = None,
) -> list[tuple[Station, float]]:
    """Return located stations paired with their distance, nearest first.

    ``distances`` may hold precomputed values keyed by station id; missing ids
    are computed inline. Equal distances keep their input order.
    """

    ranked: list[tuple[Station, float]] = []
    for station in stations:
        if station.location is None:
            continue
        km = distances.get(station.id) if distances is not None else None
        if km is None:
            km = distance(reference, station.location)
        ranked.append((station, km))
    ranked.sort(key=lambda item: item[1])
    return ranked


def filter_stations(
    stations: Sequence[Station],
    reference: Location | None,
    config: ProximityConfig,
    distances: Mapping[str, float] | None = None,
) -> list[Station]:
    """Return the stations that take part in a nowcast for ``reference``.

    Stations within ``radius_km`` are kept nearest first up to
    ``max_stations``. When that leaves fewer than ``min_stations`` and the
    whole pool holds at least ``min_stations`` entries, the ``min_stations``
    closest located stations are used instead, whatever their distance.
    Without a reference every station is returned unchanged.
    """

    if reference is None:
        logger.debug("No reference location; keeping all %s stations", len(stations))
        return list(stations)

    ranked = rank_by_distance(stations, reference, distances)
    nearby = [station for station, km in ranked if km <= config.radius_km][: config.max_stations]

    if len(nearby) < config.min_stations and len(stations) >= config.min_stations:
        nearby = [station for station, _ in ranked[: config.min_stations]]
        logger.info("Expanded to %s closest stations (minimum required)", len(nearby))

    logger.info(
        "Filtered to %s nearby stations (radius %.1f km, max %s)",
        len(nearby),
        config.radius_km,
        config.max_stations,
    )
    return nearby


__all__ = ["merge_station_records", "rank_by_distance", "filter_stations"]
