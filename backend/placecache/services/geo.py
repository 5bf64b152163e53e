"""Distance and bounding-box helpers for proximity queries"""
import math
from typing import Optional, Tuple
from geopy.distance import geodesic

from ..core.exceptions import InvalidQueryError

# Slightly under the shortest length of one degree of latitude (~110.57 km),
# so bounding boxes always contain the full circle.
METERS_PER_DEGREE = 110_000.0


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Geodesic distance between two points in meters"""
    return geodesic((lat1, lon1), (lat2, lon2)).meters


def bounding_box(lat: float, lon: float, radius_meters: float) -> Tuple[float, float, Optional[float], Optional[float]]:
    """
    Return (south, west, north, east) enclosing a circle.

    west/east are None when the box touches a pole or crosses the
    antimeridian; callers then skip the longitude filter.
    """
    lat_offset = radius_meters / METERS_PER_DEGREE
    south = max(lat - lat_offset, -90.0)
    north = min(lat + lat_offset, 90.0)

    cos_lat = math.cos(math.radians(max(abs(south), abs(north))))
    if cos_lat < 1e-6:
        return south, None, north, None

    lon_offset = radius_meters / (METERS_PER_DEGREE * cos_lat)
    west = lon - lon_offset
    east = lon + lon_offset
    if west < -180.0 or east > 180.0:
        return south, None, north, None

    return south, west, north, east


def bbox_filters(lat_column, lon_column, lat: float, lon: float, radius_meters: float) -> list:
    """SQL pre-filter for rows whose (lat, lon) columns fall inside the circle's bounding box"""
    south, west, north, east = bounding_box(lat, lon, radius_meters)
    filters = [lat_column.between(south, north)]
    if west is not None:
        filters.append(lon_column.between(west, east))
    return filters


def validate_query(center: Tuple[float, float], radius_meters: float) -> Tuple[float, float]:
    """Check a (longitude, latitude) centre and radius, returning (longitude, latitude) as floats"""
    try:
        lon, lat = float(center[0]), float(center[1])
    except (TypeError, ValueError, IndexError):
        raise InvalidQueryError(f"Center must be a (longitude, latitude) pair, got {center!r}")

    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidQueryError("Invalid coordinates")
    if lat < -90 or lat > 90 or lon < -180 or lon > 180:
        raise InvalidQueryError(f"Coordinates out of range: ({lat}, {lon})")
    if radius_meters is None or not math.isfinite(radius_meters) or radius_meters <= 0:
        raise InvalidQueryError(f"Radius must be a positive number of meters, got {radius_meters!r}")

    return lon, lat
