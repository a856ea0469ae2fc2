"""
Ownership checks consulted by every public operation.

Authentication happens upstream; operations receive an already
authenticated ``caller_id`` and ask the ``Authorizer`` whether that
caller may act on the resource.
"""

from __future__ import annotations

from typing import Iterable, Optional

from ridepool.domain.exceptions import PermissionDenied


class Authorizer:
    def ensure_owner(self, caller_id: int, owner_id: int, action: str) -> None:
        if caller_id != owner_id:
            raise PermissionDenied(f"User {caller_id} may not {action}")

    def ensure_any(
        self, caller_id: int, owner_ids: Iterable[Optional[int]], action: str
    ) -> None:
        if caller_id not in {o for o in owner_ids if o is not None}:
            raise PermissionDenied(f"User {caller_id} may not {action}")
