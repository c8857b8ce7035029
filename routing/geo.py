#Purpose: Straight-line geometry for tracking screens.
#Great-circle (haversine) distance between two (lat, lon) points,
#and the map region that keeps pickup, hospital and rider on screen.
#No state, no I/O. Every function here is total.

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Tuple

#internal coordinate type :(lat,lon)
LatLon = Tuple[float, float]

EARTH_RADIUS_KM = 6371.0

DEFAULT_PADDING_FACTOR = 1.5
DEFAULT_MIN_SPAN_DEGREES = 0.01


@dataclass(frozen=True)
class MapRegion:
    """
    Center + span in degrees, the shape map widgets take for their visible region.
    """
    latitude: float
    longitude: float
    latitude_delta: float
    longitude_delta: float


def distance(a: LatLon, b: LatLon) -> float:
    """
    Great-circle distance in kilometers.
    """
    lat1, lon1 = math.radians(a[0]), math.radians(a[1])
    lat2, lon2 = math.radians(b[0]), math.radians(b[1])

    d_lat = lat2 - lat1
    d_lon = lon2 - lon1

    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    #clamp: rounding can push h a hair above 1 for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def path_distance(points: Iterable[LatLon]) -> float:
    """
    Sum of leg distances along an ordered list of points.
    """
    points = list(points)
    return sum(distance(start, end) for start, end in zip(points, points[1:]))


def bounding_region(
        points: Iterable[LatLon],
        *,
        padding_factor: float = DEFAULT_PADDING_FACTOR,
        min_span: float = DEFAULT_MIN_SPAN_DEGREES,
        default_center: LatLon = (0.0, 0.0),
) -> MapRegion:
    """
    Region centered on the points' bounding box, span scaled by padding_factor
    and never smaller than min_span, so one point (or a cluster of identical
    points) still yields a usable zoom level.
    """
    points = list(points)
    if not points:
        return MapRegion(default_center[0], default_center[1], min_span, min_span)

    latitudes = [point[0] for point in points]
    longitudes = [point[1] for point in points]

    min_lat, max_lat = min(latitudes), max(latitudes)
    min_lon, max_lon = min(longitudes), max(longitudes)

    return MapRegion(
        latitude=(min_lat + max_lat) / 2,
        longitude=(min_lon + max_lon) / 2,
        latitude_delta=max(min_span, (max_lat - min_lat) * padding_factor),
        longitude_delta=max(min_span, (max_lon - min_lon) * padding_factor),
    )
