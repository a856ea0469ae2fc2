"""
Spatial pre-filtering and ranking helpers
=========================================

1. **Region tags** -- every stored point (ride pickup, pool destination,
   vehicle position) carries an H3 cell at ``h3_resolution`` (default 7,
   ~5.16 km² hexagons).  A radius query first narrows candidates to the
   cells covering the radius, then filters exactly with Haversine.
2. **Front-route test** -- a rider is on the pool's front route when
   picking them up on the way from the anchor's pickup to the pool
   destination adds no more than ``max_off_route_distance_km``.
3. **Driver match score** -- composite used to rank pools for a driver:

   ``max(0, 40 - 8 x pickup_km)``             pickup closeness
   ``+ 30 | 20 | max(0, 10 - km) | 0``         priority destination bonus
   ``+ 15 x current / max``                    fill ratio
   ``+ min(15, age_minutes)``                  aging, capped at 15

Complexity
----------
* Cell cover:  O(k²) cells for ring radius k = ceil(radius / edge) + 1
* Everything else: O(1) per candidate.
"""

from __future__ import annotations

import math
from typing import Optional

import h3

from .entities import Location

# Past this ring size the IN (...) list costs more than it saves.
MAX_COVER_RING = 25

PRIORITY_DESTINATION_RADIUS_KM = 2.0
ON_ROUTE_FACTOR = 1.3


def region_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def region_cells_within(
    lat: float, lng: float, radius_km: float, resolution: int = 7
) -> Optional[set[str]]:
    """H3 cells that together cover every point within *radius_km*.

    Returns ``None`` when the cover would be too large to be a useful
    pre-filter; callers then skip the cell filter.
    """
    edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
    # Adjacent centres are sqrt(3) x edge apart, so one ring per edge
    # length (+1 for the origin cell's own extent) is a safe over-cover.
    k = math.ceil(max(radius_km, 0.0) / edge_km) + 1
    if k > MAX_COVER_RING:
        return None
    return set(h3.grid_disk(region_cell(lat, lng, resolution), k))


def front_route_deviation_km(
    anchor_pickup: Location, candidate_pickup: Location, destination: Location
) -> float:
    """Extra distance caused by detouring via *candidate_pickup*."""
    direct = anchor_pickup.distance_km(destination)
    via = anchor_pickup.distance_km(candidate_pickup) + candidate_pickup.distance_km(
        destination
    )
    return max(0.0, via - direct)


def is_on_route_to(
    origin: Location, waypoint: Location, target: Location
) -> bool:
    """Triangle test: is *waypoint* roughly on the way from origin to target?"""
    return (
        origin.distance_km(waypoint) + waypoint.distance_km(target)
        < ON_ROUTE_FACTOR * origin.distance_km(target)
    )


def priority_bonus(
    driver_location: Location,
    pool_destination: Location,
    priority_destination: Optional[Location],
) -> tuple[float, bool, bool, Optional[float]]:
    """Return ``(bonus, is_priority, is_on_route, km_from_priority)``."""
    if priority_destination is None:
        return 0.0, False, False, None

    km_from_priority = pool_destination.distance_km(priority_destination)
    if km_from_priority <= PRIORITY_DESTINATION_RADIUS_KM:
        return 30.0, True, False, km_from_priority
    if is_on_route_to(driver_location, pool_destination, priority_destination):
        return 20.0, False, True, km_from_priority
    return max(0.0, 10.0 - km_from_priority), False, False, km_from_priority


def driver_match_score(
    pickup_distance_km: float,
    bonus: float,
    current_passengers: int,
    max_passengers: int,
    age_minutes: float,
) -> float:
    pickup_part = max(0.0, 40.0 - pickup_distance_km * 8)
    fill_part = (current_passengers / max_passengers) * 15 if max_passengers else 0.0
    aging_part = min(15.0, max(0.0, age_minutes))
    return pickup_part + bonus + fill_part + aging_part
