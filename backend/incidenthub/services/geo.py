from math import asin, cos, degrees, pi, radians, sin, sqrt
from typing import List, Tuple

EARTH_RADIUS_M = 6371000.0

Range = Tuple[float, float]


def haversine_m(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    """Great-circle distance in meters between two (lon, lat) points."""
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)
    a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * asin(sqrt(min(1.0, a)))


def bounding_ranges(lon: float, lat: float, radius_m: float) -> Tuple[Range, List[Range]]:
    """
    Latitude range and longitude range(s) enclosing every point within
    `radius_m` of (lon, lat) on the sphere.

    The box is what the (latitude, longitude) index can answer; callers still
    apply haversine_m to the candidates. Longitude is split in two ranges when
    the box crosses the antimeridian, and widened to the full circle when it
    reaches a pole.
    """
    angular = radius_m / EARTH_RADIUS_M
    lat_r = radians(lat)
    min_lat = lat_r - angular
    max_lat = lat_r + angular

    lat_range = (max(degrees(min_lat), -90.0), min(degrees(max_lat), 90.0))
    if min_lat <= -pi / 2 or max_lat >= pi / 2:
        return lat_range, [(-180.0, 180.0)]

    dlon = degrees(asin(min(1.0, sin(angular) / cos(lat_r))))
    min_lon = lon - dlon
    max_lon = lon + dlon
    if min_lon < -180.0:
        return lat_range, [(min_lon + 360.0, 180.0), (-180.0, max_lon)]
    if max_lon > 180.0:
        return lat_range, [(min_lon, 180.0), (-180.0, max_lon - 360.0)]
    return lat_range, [(min_lon, max_lon)]
