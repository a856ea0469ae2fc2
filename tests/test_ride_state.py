"""Unit tests for the ride and pool lifecycle state machines."""

import pytest

from ridepool.domain.entities import Ride
from ridepool.domain.enums import GenderRestriction, PoolStatus, RideStatus, genders_compatible
from ridepool.domain.exceptions import InvalidStateTransition
from ridepool.domain.pool_state import (
    derive_status,
    ensure_can_cancel,
    ensure_can_complete,
    ensure_can_start,
)


class TestRideStateMachine:
    def test_initial_status_is_creating_pool(self):
        assert Ride().status == RideStatus.CREATING_POOL

    # ── Valid transitions ─────────────────────────────────────────

    def test_creating_pool_to_in_pool(self):
        ride = Ride()
        ride.transition_to(RideStatus.IN_POOL)
        assert ride.status == RideStatus.IN_POOL

    def test_dynamic_join_goes_straight_to_started(self):
        ride = Ride()
        ride.transition_to(RideStatus.STARTED)
        assert ride.status == RideStatus.STARTED

    def test_full_happy_path(self):
        ride = Ride()
        for status in (
            RideStatus.IN_POOL,
            RideStatus.DRIVER_ASSIGNED,
            RideStatus.STARTED,
            RideStatus.COMPLETED,
        ):
            ride.transition_to(status)
        assert ride.status == RideStatus.COMPLETED

    def test_driver_assigned_to_cancelled(self):
        ride = Ride(status=RideStatus.DRIVER_ASSIGNED)
        ride.transition_to(RideStatus.CANCELLED)
        assert ride.status == RideStatus.CANCELLED

    # ── Invalid transitions ───────────────────────────────────────

    def test_in_pool_to_completed_fails(self):
        with pytest.raises(InvalidStateTransition):
            Ride(status=RideStatus.IN_POOL).transition_to(RideStatus.COMPLETED)

    def test_started_cannot_be_cancelled(self):
        with pytest.raises(InvalidStateTransition):
            Ride(status=RideStatus.STARTED).transition_to(RideStatus.CANCELLED)

    @pytest.mark.parametrize("terminal", [RideStatus.COMPLETED, RideStatus.CANCELLED])
    def test_terminal_states_are_final(self, terminal):
        ride = Ride(status=terminal)
        for status in RideStatus:
            with pytest.raises(InvalidStateTransition):
                ride.transition_to(status)


class TestPoolStatusDerivation:
    def test_below_minimum_waits_for_riders(self):
        assert (
            derive_status(PoolStatus.WAITING_FOR_RIDERS, 1, 2, False)
            == PoolStatus.WAITING_FOR_RIDERS
        )

    def test_minimum_without_driver(self):
        assert (
            derive_status(PoolStatus.WAITING_FOR_RIDERS, 2, 2, False)
            == PoolStatus.WAITING_FOR_DRIVER
        )

    def test_minimum_with_driver(self):
        assert (
            derive_status(PoolStatus.WAITING_FOR_DRIVER, 3, 2, True)
            == PoolStatus.READY_TO_START
        )

    def test_leave_moves_back_to_waiting_for_riders(self):
        assert (
            derive_status(PoolStatus.READY_TO_START, 1, 2, True)
            == PoolStatus.WAITING_FOR_RIDERS
        )

    @pytest.mark.parametrize("status", list(PoolStatus))
    @pytest.mark.parametrize("count,has_driver", [(0, False), (2, False), (3, True)])
    def test_second_derivation_is_a_no_op(self, status, count, has_driver):
        once = derive_status(status, count, 2, has_driver)
        assert derive_status(once, count, 2, has_driver) == once

    @pytest.mark.parametrize(
        "sticky", [PoolStatus.STARTED, PoolStatus.COMPLETED, PoolStatus.CANCELLED]
    )
    def test_sticky_states_never_change(self, sticky):
        assert derive_status(sticky, 0, 2, False) == sticky
        assert derive_status(sticky, 4, 2, True) == sticky


class TestPoolTransitions:
    def test_start_requires_ready(self):
        with pytest.raises(InvalidStateTransition):
            ensure_can_start(PoolStatus.WAITING_FOR_DRIVER, True)

    def test_start_requires_driver(self):
        with pytest.raises(InvalidStateTransition):
            ensure_can_start(PoolStatus.READY_TO_START, False)

    def test_start_ready_with_driver(self):
        ensure_can_start(PoolStatus.READY_TO_START, True)

    def test_complete_requires_started(self):
        ensure_can_complete(PoolStatus.STARTED)
        with pytest.raises(InvalidStateTransition):
            ensure_can_complete(PoolStatus.READY_TO_START)

    @pytest.mark.parametrize("status", [PoolStatus.STARTED, PoolStatus.COMPLETED])
    def test_cannot_cancel_after_start(self, status):
        with pytest.raises(InvalidStateTransition):
            ensure_can_cancel(status)

    def test_cancel_is_allowed_on_open_and_cancelled(self):
        ensure_can_cancel(PoolStatus.WAITING_FOR_RIDERS)
        ensure_can_cancel(PoolStatus.CANCELLED)


class TestGenderCompatibility:
    def test_any_matches_everything(self):
        assert genders_compatible(GenderRestriction.ANY, GenderRestriction.FEMALE_ONLY)
        assert genders_compatible(GenderRestriction.FEMALE_ONLY, GenderRestriction.ANY)

    def test_female_only_pair(self):
        assert genders_compatible(
            GenderRestriction.FEMALE_ONLY, GenderRestriction.FEMALE_ONLY
        )
