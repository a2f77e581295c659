"""
Geographic utility functions for distance, bearing, raster and tile math.

This module contains pure mathematical functions with no dependencies on
providers or services. All functions are stateless and can be tested independently.
"""

import math
from typing import List, Sequence, Tuple

EARTH_RADIUS_METERS = 6371000.0

# Approximate length of one degree of latitude. Used to turn metre tolerances
# into degree boxes for SQL pre-filters; it overstates longitude spans away
# from the equator, which only widens the box.
METERS_PER_DEGREE = 111320.0

# (origin_lon, pixel_width, row_rotation, origin_lat, column_rotation, pixel_height)
GeoTransform = Tuple[float, float, float, float, float, float]


def calculate_distance_meters(
    lat1: float, lon1: float, lat2: float, lon2: float
) -> float:
    """
    Calculate the distance between two points using Haversine formula.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in meters
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def calculate_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Initial bearing from the first point to the second.

    Returns:
        Bearing in degrees, 0 = north, clockwise, in [0, 360)
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlon = math.radians(lon2 - lon1)

    y = math.sin(dlon) * math.cos(lat2_rad)
    x = math.cos(lat1_rad) * math.sin(lat2_rad) - math.sin(lat1_rad) * math.cos(
        lat2_rad
    ) * math.cos(dlon)

    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def destination_point(
    lat: float, lon: float, bearing_degrees: float, distance_meters: float
) -> Tuple[float, float]:
    """
    Point reached travelling a great-circle distance along a bearing.

    Args:
        lat, lon: Starting point (degrees)
        bearing_degrees: Direction of travel, 0 = north, clockwise
        distance_meters: Distance to travel

    Returns:
        (lat, lon) of the destination, longitude normalized to [-180, 180)
    """
    angular = distance_meters / EARTH_RADIUS_METERS
    bearing = math.radians(bearing_degrees)
    lat1 = math.radians(lat)
    lon1 = math.radians(lon)

    lat2 = math.asin(
        math.sin(lat1) * math.cos(angular)
        + math.cos(lat1) * math.sin(angular) * math.cos(bearing)
    )
    lon2 = lon1 + math.atan2(
        math.sin(bearing) * math.sin(angular) * math.cos(lat1),
        math.cos(angular) - math.sin(lat1) * math.sin(lat2),
    )

    lon2_deg = (math.degrees(lon2) + 540.0) % 360.0 - 180.0
    return math.degrees(lat2), lon2_deg


def geo_to_pixel(lat: float, lon: float, geotransform: Sequence[float]) -> Tuple[int, int]:
    """
    Convert a coordinate to raster pixel indices (rotation terms ignored).

    Returns:
        (px, py) column and row, floored
    """
    origin_lon, pixel_width, _, origin_lat, _, pixel_height = geotransform
    px = math.floor((lon - origin_lon) / pixel_width)
    py = math.floor((lat - origin_lat) / pixel_height)
    return px, py


def pixel_to_geo(px: int, py: int, geotransform: Sequence[float]) -> Tuple[float, float]:
    """Coordinate (lat, lon) of the centre of a raster pixel."""
    origin_lon, pixel_width, _, origin_lat, _, pixel_height = geotransform
    lon = origin_lon + (px + 0.5) * pixel_width
    lat = origin_lat + (py + 0.5) * pixel_height
    return lat, lon


def meters_to_degrees(meters: float) -> float:
    """Convert a distance to degrees with the 1 degree = 111,320 m approximation."""
    return meters / METERS_PER_DEGREE


def bounding_box(
    lat: float, lon: float, radius_km: float
) -> Tuple[float, float, float, float]:
    """
    Degree box enclosing a circle of radius_km around a point.

    Returns:
        (min_lat, min_lon, max_lat, max_lon)
    """
    lat_delta = radius_km / 111.0
    cos_lat = max(math.cos(math.radians(lat)), 1e-6)
    lon_delta = radius_km / (111.0 * cos_lat)
    return lat - lat_delta, lon - lon_delta, lat + lat_delta, lon + lon_delta


def lon_to_tile_x(lon: float, zoom: int) -> int:
    """Slippy-map tile column containing a longitude."""
    n = 2 ** zoom
    x = math.floor((lon + 180.0) / 360.0 * n)
    return min(max(x, 0), n - 1)


def lat_to_tile_y(lat: float, zoom: int) -> int:
    """Slippy-map tile row containing a latitude (Web Mercator)."""
    n = 2 ** zoom
    lat_rad = math.radians(lat)
    y = math.floor(
        (1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n
    )
    return min(max(y, 0), n - 1)


def tiles_for_area(
    lat: float, lon: float, radius_km: float, zoom: int
) -> List[Tuple[int, int]]:
    """
    Tiles at a zoom level covering the bounding box of a circle.

    Returns:
        List of (x, y) tile indices, row by row
    """
    min_lat, min_lon, max_lat, max_lon = bounding_box(lat, lon, radius_km)
    min_x = lon_to_tile_x(min_lon, zoom)
    max_x = lon_to_tile_x(max_lon, zoom)
    # Tile rows grow southwards
    min_y = lat_to_tile_y(max_lat, zoom)
    max_y = lat_to_tile_y(min_lat, zoom)

    return [
        (x, y)
        for y in range(min_y, max_y + 1)
        for x in range(min_x, max_x + 1)
    ]


def path_length_meters(points: Sequence[Tuple[float, float]]) -> float:
    """Total length of a polyline of (lat, lon) points."""
    total = 0.0
    for (lat1, lon1), (lat2, lon2) in zip(points, points[1:]):
        total += calculate_distance_meters(lat1, lon1, lat2, lon2)
    return total


def interpolate(
    lat1: float, lon1: float, lat2: float, lon2: float, fraction: float
) -> Tuple[float, float]:
    """Linear interpolation between two points; fraction 0 gives the first."""
    return lat1 + (lat2 - lat1) * fraction, lon1 + (lon2 - lon1) * fraction
