"""
Great-circle distance, used when the routing API omits a stop's distance.
"""
import math

from src.departures.models import Coordinate

# Mean Earth radius in meters (WGS84 approximate)
EARTH_RADIUS_M = 6_371_000.0


def haversine_distance_m(origin: Coordinate, lat: float, lon: float) -> float:
    """Distance in meters from origin to (lat, lon). Arguments in degrees."""
    lat1 = math.radians(origin.lat)
    lat2 = math.radians(lat)
    dlat = lat2 - lat1
    dlon = math.radians(lon - origin.lon)
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
