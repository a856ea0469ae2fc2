"""
Pool lifecycle state machine.

::

    WAITING_FOR_RIDERS <-> WAITING_FOR_DRIVER <-> READY_TO_START
                                                        |
                                                     STARTED -> COMPLETED
    (any open state) -> CANCELLED

Open states are *derived*: after every membership or driver change the
status is recomputed from the active member count and driver presence.
``STARTED``, ``COMPLETED`` and ``CANCELLED`` are sticky; only the explicit
start / complete / cancel operations move a pool into them.
"""

from __future__ import annotations

from .enums import STICKY_POOL_STATUSES, PoolStatus
from .exceptions import InvalidStateTransition


def derive_status(
    current: PoolStatus, active_count: int, min_to_start: int, has_driver: bool
) -> PoolStatus:
    """Status a pool should hold given its members and driver."""
    current = PoolStatus(current)
    if current in STICKY_POOL_STATUSES:
        return current
    if active_count >= min_to_start:
        return PoolStatus.READY_TO_START if has_driver else PoolStatus.WAITING_FOR_DRIVER
    return PoolStatus.WAITING_FOR_RIDERS


def ensure_can_start(status: PoolStatus, has_driver: bool) -> None:
    if PoolStatus(status) != PoolStatus.READY_TO_START:
        raise InvalidStateTransition(
            f"Cannot start a pool in status {PoolStatus(status).value}"
        )
    if not has_driver:
        raise InvalidStateTransition("Cannot start a pool without a driver")


def ensure_can_complete(status: PoolStatus) -> None:
    if PoolStatus(status) != PoolStatus.STARTED:
        raise InvalidStateTransition(
            f"Cannot complete a pool in status {PoolStatus(status).value}"
        )


def ensure_can_cancel(status: PoolStatus) -> None:
    """CANCELLED itself is allowed (the cascade is then a no-op)."""
    if PoolStatus(status) in (PoolStatus.STARTED, PoolStatus.COMPLETED):
        raise InvalidStateTransition(
            f"Cannot cancel a pool in status {PoolStatus(status).value}"
        )
