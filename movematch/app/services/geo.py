"""
Geometry helpers for distance estimation.

Great-circle distances on a spherical Earth, used when the routing
service cannot provide a driving distance.
"""

import math
from typing import NamedTuple


EARTH_RADIUS_KM = 6371.0


class Coordinates(NamedTuple):
    """Signed decimal degrees."""
    lat: float
    lng: float


def is_finite_point(point: Coordinates) -> bool:
    return (
        point is not None
        and math.isfinite(point.lat)
        and math.isfinite(point.lng)
    )


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    # rounding can push a marginally above 1 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def point_distance(a: Coordinates, b: Coordinates) -> float:
    return haversine_distance(a.lat, a.lng, b.lat, b.lng)


def point_to_segment_distance(point: Coordinates, start: Coordinates, end: Coordinates) -> float:
    """
    Great-circle distance from ``point`` to the closest point of the segment
    ``start`` -> ``end``.

    The point is projected onto the segment in a local equirectangular frame
    centred on the segment, the projection parameter is clamped to [0, 1] and
    the geodesic distance to the resulting closest point is returned. A
    degenerate segment (start == end) reduces to point-to-point distance.
    """
    ref_lat = math.radians((start.lat + end.lat) / 2)
    scale = math.cos(ref_lat)

    # Local planar frame in degrees, longitudes shrunk by cos(latitude)
    seg_x = (end.lng - start.lng) * scale
    seg_y = end.lat - start.lat
    pt_x = (point.lng - start.lng) * scale
    pt_y = point.lat - start.lat

    seg_len_sq = seg_x * seg_x + seg_y * seg_y
    if seg_len_sq == 0.0:
        return point_distance(point, start)

    t = (pt_x * seg_x + pt_y * seg_y) / seg_len_sq
    t = min(1.0, max(0.0, t))

    closest = Coordinates(
        lat=start.lat + t * (end.lat - start.lat),
        lng=start.lng + t * (end.lng - start.lng),
    )
    return point_distance(point, closest)
