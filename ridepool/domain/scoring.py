"""
Pool Viability Scoring
======================

Scores how well two ride requests fit into one shared vehicle, on a
0-100 scale, from five independently computed factors:

===================  ===================================  =================
Factor               Shape                                Hard threshold
===================  ===================================  =================
Destination          linear decay to 0 at max distance     max_destination
Pickup               quadratic decay ``w x (1 - d/max)²``  max_pickup
Route overlap        linear from the floor to 100 %        min_overlap
Time alignment       linear decay to 0 at max minutes      max_time
Detour               penalty, linear up to full weight     max_detour
===================  ===================================  =================

The detour factor starts at its full weight and the penalty is subtracted
from it, so a perfect match (same pickup, same drop-off, same minute)
reaches 100 and the weights sum to 100.

Viability is a **soft score with a hard gate**: a pair is viable only when
the total clears ``min_viable_score`` *and* no individual threshold was
exceeded.  Every exceeded threshold adds a line to the rejection reason,
so a pair can score above the floor and still be rejected.

The functions here are pure: no I/O, deterministic for identical inputs,
safe to call concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .distance import path_length_km
from .entities import Ride, ScoringConfig

NOT_ON_FRONT_ROUTE = "One or both riders not on front route"
FIRST_MEMBER = "First member - auto-approved"


@dataclass(frozen=True)
class ScoreResult:
    total_score: float
    is_viable: bool
    breakdown: dict = field(default_factory=dict)
    rejection_reason: Optional[str] = None

    @classmethod
    def first_member(cls) -> ScoreResult:
        return cls(100.0, True, {}, None)


# ── Sub-scores ────────────────────────────────────────────────────────


def destination_proximity_score(
    distance_km: float, max_distance_km: float, weight: float
) -> float:
    if distance_km >= max_distance_km:
        return 0.0
    return max(0.0, weight * (1 - distance_km / max_distance_km))


def pickup_proximity_score(
    distance_km: float, max_distance_km: float, weight: float
) -> float:
    if distance_km >= max_distance_km:
        return 0.0
    return max(0.0, weight * (1 - distance_km / max_distance_km) ** 2)


def route_overlap_score(
    overlap_percent: float, min_overlap_percent: float, weight: float
) -> float:
    if overlap_percent < min_overlap_percent:
        return 0.0
    span = 100.0 - min_overlap_percent
    return max(0.0, weight * (overlap_percent - min_overlap_percent) / span)


def time_alignment_score(
    diff_minutes: float, max_diff_minutes: float, weight: float
) -> float:
    if diff_minutes >= max_diff_minutes:
        return 0.0
    return max(0.0, weight * (1 - diff_minutes / max_diff_minutes))


def detour_penalty(
    detour_percent: float, max_detour_percent: float, weight: float
) -> float:
    """Non-positive: 0 at no detour, ``-weight`` at or beyond the max."""
    ratio = min(1.0, max(0.0, detour_percent) / max_detour_percent)
    return -weight * ratio


# ── Geometry of a pair ────────────────────────────────────────────────


def _route_metrics(anchor: Ride, candidate: Ride) -> tuple[float, float]:
    """Return ``(overlap_percent, detour_percent)`` for the pooled path
    anchor-pickup -> candidate-pickup -> candidate-dropoff -> anchor-dropoff.
    """
    direct = anchor.pickup.distance_km(anchor.dropoff)
    pooled = path_length_km(
        [
            anchor.pickup.as_tuple(),
            candidate.pickup.as_tuple(),
            candidate.dropoff.as_tuple(),
            anchor.dropoff.as_tuple(),
        ]
    )
    if direct <= 0:
        # Degenerate anchor trip: only a zero-length pooled path overlaps.
        return (100.0, 0.0) if pooled <= 0 else (0.0, float("inf"))

    overlap = min(100.0, direct / pooled * 100) if pooled > 0 else 100.0
    detour = (pooled - direct) / direct * 100
    return overlap, detour


# ── Master scoring function ───────────────────────────────────────────


def score_pair(config: ScoringConfig, anchor: Ride, candidate: Ride) -> ScoreResult:
    """Score *candidate* against *anchor* (the pool's earliest member)."""
    if config.front_route_only and not (
        anchor.is_on_front_route and candidate.is_on_front_route
    ):
        return ScoreResult(0.0, False, {}, NOT_ON_FRONT_ROUTE)

    reasons: list[str] = []

    # 1. Destination proximity
    dest_km = anchor.dropoff.distance_km(candidate.dropoff)
    if dest_km > config.max_destination_distance_km:
        reasons.append(
            f"Destinations too far apart: {dest_km:.2f} km "
            f"(max: {config.max_destination_distance_km:.2f} km)"
        )
    dest_score = destination_proximity_score(
        dest_km,
        config.max_destination_distance_km,
        config.destination_proximity_weight,
    )

    # 2. Pickup proximity
    pickup_km = anchor.pickup.distance_km(candidate.pickup)
    if pickup_km > config.max_pickup_distance_km:
        reasons.append(
            f"Pickups too far apart: {pickup_km:.2f} km "
            f"(max: {config.max_pickup_distance_km:.2f} km)"
        )
    pickup_score = pickup_proximity_score(
        pickup_km, config.max_pickup_distance_km, config.pickup_proximity_weight
    )

    # 3. Route overlap / 5. detour share the pooled path
    overlap_pct, detour_pct = _route_metrics(anchor, candidate)
    if overlap_pct < config.min_route_overlap_percent:
        reasons.append(
            f"Insufficient route overlap: {overlap_pct:.1f}% "
            f"(min: {config.min_route_overlap_percent:.1f}%)"
        )
    overlap_score = route_overlap_score(
        overlap_pct, config.min_route_overlap_percent, config.route_overlap_weight
    )

    # 4. Time alignment (whole minutes)
    diff_minutes = round(
        abs((anchor.created_at - candidate.created_at).total_seconds()) / 60
    )
    if diff_minutes > config.max_time_difference_minutes:
        reasons.append(
            f"Requests too far apart in time: {diff_minutes} minutes "
            f"(max: {config.max_time_difference_minutes} minutes)"
        )
    time_score = time_alignment_score(
        diff_minutes,
        config.max_time_difference_minutes,
        config.time_alignment_weight,
    )

    if detour_pct > config.max_detour_percent:
        reasons.append(
            f"Excessive detour: {detour_pct:.1f}% "
            f"(max: {config.max_detour_percent:.1f}%)"
        )
    penalty = detour_penalty(
        detour_pct, config.max_detour_percent, config.detour_penalty_weight
    )
    detour_score = config.detour_penalty_weight + penalty

    total = max(
        0.0,
        min(
            100.0,
            dest_score + pickup_score + overlap_score + time_score + detour_score,
        ),
    )
    rejection = "\n".join(reasons) or None
    if rejection is None and total < config.min_viable_score:
        rejection = (
            f"Score below minimum: {total:.1f} "
            f"(min: {config.min_viable_score:.1f})"
        )

    breakdown = {
        "destination_proximity": {
            "score": round(dest_score, 2),
            "distance_km": round(dest_km, 2),
            "max_allowed_km": config.max_destination_distance_km,
        },
        "pickup_proximity": {
            "score": round(pickup_score, 2),
            "distance_km": round(pickup_km, 2),
            "max_allowed_km": config.max_pickup_distance_km,
        },
        "route_overlap": {
            "score": round(overlap_score, 2),
            "overlap_percent": round(overlap_pct, 1),
            "min_required_percent": config.min_route_overlap_percent,
        },
        "time_alignment": {
            "score": round(time_score, 2),
            "time_diff_minutes": diff_minutes,
            "max_allowed_minutes": config.max_time_difference_minutes,
        },
        "detour_penalty": {
            "score": round(detour_score, 2),
            "penalty": round(penalty, 2),
            "detour_percent": (
                round(detour_pct, 1) if detour_pct != float("inf") else None
            ),
            "max_allowed_percent": config.max_detour_percent,
        },
        "total_score": round(total, 2),
        "min_viable_score": config.min_viable_score,
        "config": {"name": config.name, "version": config.version},
    }

    return ScoreResult(
        total_score=round(total, 2),
        is_viable=total >= config.min_viable_score and not reasons,
        breakdown=breakdown,
        rejection_reason=rejection,
    )
