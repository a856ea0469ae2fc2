"""
Rider-facing notification sink.

Events are written to the ``notifications`` outbox inside the caller's
transaction, so a rolled-back operation never notifies anyone.  Delivery
(push, SMS) reads the outbox and is out of scope here.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.domain.enums import NotificationType
from ridepool.infrastructure.models import NotificationModel
from ridepool.infrastructure.repositories import NotificationRepository

logger = logging.getLogger(__name__)


class Notifier:
    async def notify(
        self,
        session: AsyncSession,
        user_id: int,
        title: str,
        message: str,
        type: NotificationType,
        metadata: Optional[dict] = None,
    ) -> None:
        await NotificationRepository(session).create(
            NotificationModel(
                user_id=user_id,
                title=title,
                message=message,
                type=NotificationType(type).value,
                payload=metadata or {},
            )
        )
        logger.debug("Queued %s notification for user %d", type, user_id)
