"""In-app + email notifications sent by the payout pipeline."""
import asyncio
import logging
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.models.notification import Notification
from app.models.user import User
from app.schemas.payouts import (
    NotificationMetadata,
    PayoutActionRequiredMetadata,
    PayoutProcessedMetadata,
)
from app.services.email_service import EmailService

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    PAYOUT_PROCESSED = "PAYOUT_PROCESSED"
    PAYOUT_ACTION_REQUIRED = "PAYOUT_ACTION_REQUIRED"


_METADATA_FOR_TYPE = {
    NotificationType.PAYOUT_PROCESSED: PayoutProcessedMetadata,
    NotificationType.PAYOUT_ACTION_REQUIRED: PayoutActionRequiredMetadata,
}


class NotificationService:
    """Persists a notification for the user and mirrors it by email."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        send_email: bool = True,
        timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.send_email = send_email
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT_SECONDS

    async def notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        metadata: NotificationMetadata,
        campaign_id: Optional[str] = None,
    ) -> Notification:
        expected = _METADATA_FOR_TYPE[notification_type]
        if not isinstance(metadata, expected):
            raise TypeError(f"{notification_type.value} notifications take {expected.__name__}, got {type(metadata).__name__}")

        async with self.session_factory() as db:
            notification = Notification(
                user_id=user_id,
                notification_type=notification_type.value,
                title=title,
                message=message,
                payload=metadata.model_dump(mode="json"),
                campaign_id=campaign_id,
            )
            db.add(notification)
            await db.commit()
            user = await db.get(User, user_id)

        if self.send_email and user is not None:
            await asyncio.wait_for(
                asyncio.to_thread(
                    EmailService.send_notification_email,
                    user,
                    title,
                    message,
                    notification_type == NotificationType.PAYOUT_PROCESSED,
                ),
                timeout=self.timeout,
            )

        logger.info(f"{notification_type.value} notification sent to user {user_id}")
        return notification
