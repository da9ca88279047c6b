"""Rain arrival nowcasting from station rainfall and wind vectors."""

from .state import AggregatedSnapshot, FeedBatch, Location, ProximityConfig, Station, WindVector
from .geo import bearing, cardinal, distance, to_local_cartesian
from .vectors import build_wind_vectors, to_wind_vector
from .stations import filter_stations, merge_station_records
from .prediction import NearestStationReading, RainPrediction, RainThreat, nearest_station_reading, predict_rain

__all__ = [
    "AggregatedSnapshot",
    "FeedBatch",
    "Location",
    "ProximityConfig",
    "Station",
    "WindVector",
    "distance",
    "bearing",
    "to_local_cartesian",
    "cardinal",
    "to_wind_vector",
    "build_wind_vectors",
    "merge_station_records",
    "filter_stations",
    "RainPrediction",
    "RainThreat",
    "NearestStationReading",
    "predict_rain",
    "nearest_station_reading",
]
