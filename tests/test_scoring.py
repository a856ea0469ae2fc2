"""Unit tests for pair viability scoring (no DB needed)."""

from __future__ import annotations

import math
from datetime import timedelta

import pytest

from ridepool.domain.distance import EARTH_RADIUS_KM
from ridepool.domain.entities import Location, Ride, ScoringConfig, utcnow
from ridepool.domain.exceptions import ConfigError
from ridepool.domain.scoring import (
    NOT_ON_FRONT_ROUTE,
    destination_proximity_score,
    detour_penalty,
    pickup_proximity_score,
    route_overlap_score,
    score_pair,
    time_alignment_score,
)

PICKUP = Location(23.7808, 90.4167)
DROPOFF = Location(23.8103, 90.4125)


def _north_of(point: Location, km: float) -> Location:
    return Location(point.latitude + math.degrees(km / EARTH_RADIUS_KM), point.longitude)


def _ride(pickup=PICKUP, dropoff=DROPOFF, **kwargs) -> Ride:
    kwargs.setdefault("created_at", utcnow())
    return Ride(pickup=pickup, dropoff=dropoff, **kwargs)


class TestScorePair:
    def test_identical_requests_score_100(self):
        now = utcnow()
        result = score_pair(
            ScoringConfig(), _ride(created_at=now), _ride(created_at=now)
        )
        assert result.total_score == 100.0
        assert result.is_viable
        assert result.rejection_reason is None

    def test_destinations_3km_apart_are_rejected(self):
        now = utcnow()
        result = score_pair(
            ScoringConfig(),
            _ride(created_at=now),
            _ride(dropoff=_north_of(DROPOFF, 3.0), created_at=now),
        )
        assert not result.is_viable
        assert result.total_score <= 70
        assert result.breakdown["destination_proximity"]["score"] == 0
        assert (
            "Destinations too far apart: 3.00 km (max: 2.00 km)"
            in result.rejection_reason
        )

    def test_off_front_route_scores_zero(self):
        result = score_pair(
            ScoringConfig(), _ride(), _ride(is_on_front_route=False)
        )
        assert result.total_score == 0.0
        assert not result.is_viable
        assert result.rejection_reason == NOT_ON_FRONT_ROUTE

    def test_front_route_gate_ignored_when_disabled(self):
        result = score_pair(
            ScoringConfig(front_route_only=False),
            _ride(),
            _ride(is_on_front_route=False),
        )
        assert result.is_viable

    def test_time_gap_beyond_max_is_rejected(self):
        now = utcnow()
        result = score_pair(
            ScoringConfig(),
            _ride(created_at=now),
            _ride(created_at=now + timedelta(minutes=12)),
        )
        assert not result.is_viable
        assert result.breakdown["time_alignment"]["time_diff_minutes"] == 12
        assert "Requests too far apart in time: 12 minutes" in result.rejection_reason

    def test_score_within_bounds(self):
        result = score_pair(
            ScoringConfig(),
            _ride(),
            _ride(pickup=_north_of(PICKUP, 4.0), dropoff=_north_of(DROPOFF, 1.5)),
        )
        assert 0.0 <= result.total_score <= 100.0

    def test_breakdown_names_config_version(self):
        result = score_pair(ScoringConfig(name="peak", version=3), _ride(), _ride())
        assert result.breakdown["config"] == {"name": "peak", "version": 3}

    def test_high_floor_rejects_with_score_reason(self):
        now = utcnow()
        result = score_pair(
            ScoringConfig(min_viable_score=99.0),
            _ride(created_at=now),
            _ride(pickup=_north_of(PICKUP, 1.0), created_at=now),
        )
        assert not result.is_viable
        assert result.rejection_reason.startswith("Score below minimum")


class TestSubScores:
    def test_destination_zero_at_max(self):
        assert destination_proximity_score(2.0, 2.0, 30) == 0.0
        assert destination_proximity_score(5.0, 2.0, 30) == 0.0

    def test_destination_full_weight_at_zero(self):
        assert destination_proximity_score(0.0, 2.0, 30) == 30.0

    def test_pickup_monotonically_decreasing(self):
        scores = [pickup_proximity_score(d, 5.0, 25) for d in (0, 1, 2, 3, 4, 5)]
        assert scores == sorted(scores, reverse=True)
        assert scores[0] == 25.0
        assert scores[-1] == 0.0

    def test_closer_pickup_never_lowers_total(self):
        now = utcnow()
        anchor = _ride(created_at=now)
        totals = [
            score_pair(
                ScoringConfig(),
                anchor,
                _ride(pickup=_north_of(PICKUP, -km), created_at=now),
            ).total_score
            for km in (6.0, 4.0, 2.0, 1.0, 0.5, 0.0)
        ]
        assert totals == sorted(totals)
        assert totals[-1] == 100.0

    def test_pickup_decay_is_quadratic(self):
        assert pickup_proximity_score(2.5, 5.0, 25) == pytest.approx(6.25)

    def test_overlap_below_floor_scores_zero(self):
        assert route_overlap_score(39.9, 40.0, 20) == 0.0
        assert route_overlap_score(100.0, 40.0, 20) == pytest.approx(20.0)

    def test_time_alignment_linear(self):
        assert time_alignment_score(5, 10, 15) == pytest.approx(7.5)
        assert time_alignment_score(10, 10, 15) == 0.0

    def test_detour_penalty_non_positive(self):
        assert detour_penalty(0.0, 30.0, 10) == 0.0
        assert detour_penalty(15.0, 30.0, 10) == pytest.approx(-5.0)
        assert detour_penalty(90.0, 30.0, 10) == -10.0
        assert detour_penalty(-5.0, 30.0, 10) == 0.0


class TestScoringConfig:
    def test_default_config_is_valid(self):
        ScoringConfig().validate()

    def test_weights_must_sum_to_100(self):
        with pytest.raises(ConfigError):
            ScoringConfig(destination_proximity_weight=50.0).validate()

    def test_thresholds_must_be_positive(self):
        with pytest.raises(ConfigError):
            ScoringConfig(max_pickup_distance_km=0).validate()

    def test_min_score_range(self):
        with pytest.raises(ConfigError):
            ScoringConfig(min_viable_score=120).validate()
