import math
from typing import Optional, Sequence, Tuple
from ..models.domain import Coordinate

EARTH_RADIUS_METERS = 6371000.0
METERS_PER_DEGREE_LAT = 111320.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate the great circle distance between two points on earth in meters"""
    # Convert decimal degrees to radians
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])

    # Haversine formula
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.asin(min(1.0, math.sqrt(a)))

    return c * EARTH_RADIUS_METERS


def distance(a: Coordinate, b: Coordinate) -> float:
    """Distance in meters between two coordinates"""
    if a == b:
        return 0.0
    return haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def nearest_point_on_polyline(point: Coordinate, polyline: Sequence[Coordinate]) -> Coordinate:
    """
    Nearest polyline *vertex* to the point (not a projection onto the segment
    interior). Ties resolve to the first occurrence.
    """
    if not polyline:
        raise ValueError("Polyline must contain at least one coordinate")

    closest = polyline[0]
    min_distance = math.inf
    for vertex in polyline:
        d = distance(point, vertex)
        if d < min_distance:
            min_distance = d
            closest = vertex
    return closest


def min_distance_to_polyline(point: Coordinate, polyline: Sequence[Coordinate]) -> float:
    return distance(point, nearest_point_on_polyline(point, polyline))


def within_corridor(point: Coordinate, polyline: Sequence[Coordinate], radius_meters: float) -> bool:
    """True if the point lies within radius of any polyline vertex"""
    return any(distance(point, vertex) < radius_meters for vertex in polyline)


def interpolate(a: Coordinate, b: Coordinate, fraction: float) -> Coordinate:
    """Linear interpolation in lat/lng space; fine for sub-kilometre edges"""
    fraction = max(0.0, min(1.0, fraction))
    return Coordinate(
        latitude=a.latitude + (b.latitude - a.latitude) * fraction,
        longitude=a.longitude + (b.longitude - a.longitude) * fraction,
    )


def polyline_length(polyline: Sequence[Coordinate]) -> float:
    return sum(distance(polyline[i - 1], polyline[i]) for i in range(1, len(polyline)))


def point_along_polyline(polyline: Sequence[Coordinate], meters: float) -> Coordinate:
    """Coordinate found by walking the given distance along the polyline"""
    if not polyline:
        raise ValueError("Polyline must contain at least one coordinate")

    remaining = max(0.0, meters)
    for i in range(1, len(polyline)):
        edge = distance(polyline[i - 1], polyline[i])
        if edge > 0 and remaining <= edge:
            return interpolate(polyline[i - 1], polyline[i], remaining / edge)
        remaining -= edge
    return polyline[-1]


def point_in_polygon(point: Coordinate, polygon: Sequence[Coordinate]) -> bool:
    """Ray casting test on a lat/lng polygon"""
    inside = False
    n = len(polygon)
    if n < 3:
        return False

    x, y = point.longitude, point.latitude
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i].longitude, polygon[i].latitude
        xj, yj = polygon[j].longitude, polygon[j].latitude
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def polyline_intersects_polygon(polyline: Sequence[Coordinate], polygon: Sequence[Coordinate]) -> bool:
    return any(point_in_polygon(vertex, polygon) for vertex in polyline)


def bounding_box(
    polyline: Sequence[Coordinate], padding_meters: float = 0.0
) -> Optional[Tuple[float, float, float, float]]:
    """(min_lat, min_lng, max_lat, max_lng) padded by roughly padding_meters"""
    if not polyline:
        return None

    min_lat = min(c.latitude for c in polyline)
    max_lat = max(c.latitude for c in polyline)
    min_lng = min(c.longitude for c in polyline)
    max_lng = max(c.longitude for c in polyline)

    lat_pad = padding_meters / METERS_PER_DEGREE_LAT
    cos_lat = max(0.01, math.cos(math.radians((min_lat + max_lat) / 2)))
    lng_pad = padding_meters / (METERS_PER_DEGREE_LAT * cos_lat)
    return (min_lat - lat_pad, min_lng - lng_pad, max_lat + lat_pad, max_lng + lng_pad)
