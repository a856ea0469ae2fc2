"""
Error taxonomy.

Every failure a public operation can surface derives from
``RidePoolError``.  A viability rejection is *not* an error: it is a
normal ``JoinResult`` with ``accepted=False``.
"""


class RidePoolError(Exception):
    """Base class for all domain errors."""


class ValidationError(RidePoolError):
    """Malformed input, rejected before touching the store.  Never retried."""


class NotFound(RidePoolError):
    """A referenced ride, pool, vehicle or user does not exist."""


class PermissionDenied(RidePoolError):
    """The caller does not own the resource it is acting on."""


class CapacityError(RidePoolError):
    """Pool full or incompatible (class / gender).  Try the next candidate."""


class ConcurrencyConflict(RidePoolError):
    """Lost a race (last seat, driver assignment, lock wait timed out).

    Callers should re-query and retry against a fresh candidate list
    rather than the same pool.
    """


class ConfigError(RidePoolError):
    """Referenced scoring config missing, inactive or inconsistent."""


class InvalidStateTransition(RidePoolError):
    """Raised when a status change violates a lifecycle state machine."""
