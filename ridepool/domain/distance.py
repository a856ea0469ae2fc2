"""
Distance calculation using the Haversine formula.

Assumption
----------
We use great-circle (Haversine) distance instead of a real routing engine
(OSRM / Google Maps) to keep the project self-contained.  A "route" is
only the ordered list of stop points of a trip; distance to a route is
the distance to the nearest straight leg between consecutive stops.

Complexity: O(1) per point distance, O(k) for a route of k stops.
"""

from __future__ import annotations

import math
from typing import Sequence

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def path_length_km(points: Sequence[tuple[float, float]]) -> float:
    """Sum of haversine hops along an ordered list of ``(lat, lng)``."""
    return sum(
        haversine_km(a[0], a[1], b[0], b[1])
        for a, b in zip(points, points[1:])
    )


def _segment_distance_km(
    point: tuple[float, float],
    start: tuple[float, float],
    end: tuple[float, float],
) -> float:
    # Local equirectangular projection around the query point; accurate
    # to well under 1 % for the few-km legs a pooled trip has.
    cos_lat = math.cos(math.radians(point[0]))

    def project(p: tuple[float, float]) -> tuple[float, float]:
        x = math.radians(p[1] - point[1]) * cos_lat * EARTH_RADIUS_KM
        y = math.radians(p[0] - point[0]) * EARTH_RADIUS_KM
        return x, y

    ax, ay = project(start)
    bx, by = project(end)
    dx, dy = bx - ax, by - ay
    seg_len_sq = dx * dx + dy * dy
    if seg_len_sq == 0:
        return haversine_km(point[0], point[1], start[0], start[1])

    t = max(0.0, min(1.0, -(ax * dx + ay * dy) / seg_len_sq))
    cx, cy = ax + t * dx, ay + t * dy
    return math.hypot(cx, cy)


def distance_to_route_km(
    point: tuple[float, float], stops: Sequence[tuple[float, float]]
) -> float:
    """Shortest distance from *point* to the polyline through *stops*."""
    if not stops:
        raise ValueError("route has no stops")
    if len(stops) == 1:
        return haversine_km(point[0], point[1], stops[0][0], stops[0][1])
    return min(
        _segment_distance_km(point, a, b) for a, b in zip(stops, stops[1:])
    )
