"""
Notification Service.

The tracking engine hands alerts to a NotificationSink and never looks at
delivery results. DatabaseNotificationSink stores them as in-app
notifications for the notification subsystem to fan out.
"""

import logging
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional, Dict, Any, List

from backend.app.core.reliability import CircuitOpenError, notification_circuit_breaker
from backend.app.models.notification import Notification, NotificationType

logger = logging.getLogger("shipment_tracking")


class NotificationService:

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        user_id: int,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        related_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Create a single notification."""
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            related_id=related_id,
            metadata_payload=metadata
        )
        db.add(notif)
        await db.flush() # Caller commits usually
        return notif

    @staticmethod
    async def list_for_related(db: AsyncSession, related_id: int) -> List[Notification]:
        """Notifications raised about one trip, oldest first."""
        result = await db.execute(
            select(Notification)
            .where(Notification.related_id == related_id)
            .order_by(Notification.id)
        )
        return list(result.scalars().all())


class NotificationSink:
    """
    Fire-and-forget alert target.

    Subclasses implement deliver(); notify() never raises, so a failing
    channel cannot break alert bookkeeping.
    """

    async def deliver(self, user_id: int, title: str, message: str, type: str, related_id: Optional[int]) -> None:
        raise NotImplementedError

    async def notify(self, user_id: int, title: str, message: str, type: str, related_id: Optional[int] = None) -> bool:
        try:
            await notification_circuit_breaker.call(self.deliver, user_id, title, message, type, related_id)
            return True
        except CircuitOpenError:
            logger.warning("Notification circuit open, alert dropped", extra={"user_id": user_id, "related_id": related_id})
        except Exception:
            logger.exception("Notification delivery failed", extra={"user_id": user_id, "related_id": related_id})
        return False


class DatabaseNotificationSink(NotificationSink):
    """Stores alerts as Notification rows in the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def deliver(self, user_id: int, title: str, message: str, type: str, related_id: Optional[int]) -> None:
        # a failed insert rolls back to this savepoint only
        async with self.db.begin_nested():
            await NotificationService.create_notification(
                self.db,
                user_id=user_id,
                title=title,
                message=message,
                type=NotificationType(type),
                related_id=related_id
            )
