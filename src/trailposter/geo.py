"""geo.py

Shared geographic utilities used by the track parser and the map
renderer.
"""

from __future__ import annotations

from math import atan2, cos, floor, radians, sin, sqrt
from typing import List, Optional, Sequence, Tuple

import gpxpy.gpx

# Mean Earth radius in miles
EARTH_RADIUS_MI = 3958.8

# meters -> feet
FEET_PER_METER = 3.28084


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round like JavaScript's ``Math.round`` (ties go up, not to even)."""
    factor = 10 ** ndigits
    return floor(value * factor + 0.5) / factor


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in miles using the haversine formula.

    NaN inputs propagate to a NaN result.
    """
    d_lat = radians(lat2 - lat1)
    d_lng = radians(lng2 - lng1)
    a = (
        sin(d_lat / 2) ** 2
        + cos(radians(lat1)) * cos(radians(lat2)) * sin(d_lng / 2) ** 2
    )
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return EARTH_RADIUS_MI * c


def path_length_miles(points: Sequence[Tuple[float, float]]) -> float:
    """Sum of haversine distances between consecutive ``(lat, lng)`` points."""
    total = 0.0
    for (lat1, lng1), (lat2, lng2) in zip(points, points[1:]):
        total += haversine_miles(lat1, lng1, lat2, lng2)
    return total


def elevation_gain_m(elevations: Sequence[Optional[float]]) -> float:
    """Sum of positive deltas between consecutive known elevations.

    A segment where either end is unknown contributes nothing.
    """
    gain = 0.0
    for prev, cur in zip(elevations, elevations[1:]):
        if prev is not None and cur is not None and cur > prev:
            gain += cur - prev
    return gain


def extract_track_points(
    gpx: gpxpy.gpx.GPX,
) -> List[Tuple[float, float, Optional[float]]]:
    """Collect every track point as (lat, lng, ele) in document order.

    Route and waypoint elements are not track points and are skipped.
    """
    pts: List[Tuple[float, float, Optional[float]]] = []
    for track in gpx.tracks:
        for seg in track.segments:
            for p in seg.points:
                pts.append((p.latitude, p.longitude, p.elevation))
    return pts
