"""In-app notification fan-out used by the notification job handlers."""
import logging
import uuid
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.notification import Notification
from app.schemas.job import (
    BulkNotificationPayload,
    NotificationOptions,
    SingleNotificationPayload,
)

logger = logging.getLogger(__name__)

NOTIFICATION_CHUNK_SIZE = 500


class NotificationDeliveryError(Exception):
    """Raised when not a single notification of a job could be stored."""
    pass


def build_notification(
    user_id: uuid.UUID,
    title: str,
    message: str,
    type: str = "info",
    options: Optional[NotificationOptions] = None,
) -> Notification:
    options = options or NotificationOptions()
    return Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        priority=options.priority,
        action_url=options.action_url,
        action_text=options.action_text,
        expires_at=options.expires_at,
        read=False,
    )


def create_notification(db: AsyncSession, user_id: uuid.UUID, title: str, message: str, **kwargs) -> Notification:
    """Add a notification to the caller's transaction (no commit)."""
    notification = build_notification(user_id, title, message, **kwargs)
    db.add(notification)
    return notification


async def send_bulk_notification(
    payload: BulkNotificationPayload, session_factory: async_sessionmaker
) -> dict:
    """Insert one notification per recipient, NOTIFICATION_CHUNK_SIZE per transaction.

    A chunk that fails to commit is counted as failed and the rest carry on.
    """
    user_ids = list(dict.fromkeys(payload.user_ids))
    sent = 0
    failed = 0
    for start in range(0, len(user_ids), NOTIFICATION_CHUNK_SIZE):
        chunk = user_ids[start:start + NOTIFICATION_CHUNK_SIZE]
        async with session_factory() as db:
            db.add_all([
                build_notification(uid, payload.title, payload.message, payload.type, payload.options)
                for uid in chunk
            ])
            try:
                await db.commit()
                sent += len(chunk)
            except SQLAlchemyError as e:
                await db.rollback()
                failed += len(chunk)
                logger.error(f"Notification chunk {start}-{start + len(chunk) - 1} failed: {e}")

    result = {"sent": sent, "failed": failed, "total": len(user_ids)}
    if sent == 0:
        raise NotificationDeliveryError(f"No notifications were stored ({failed} failed)")
    logger.info(f"Bulk notification '{payload.title}': {sent}/{len(user_ids)} stored")
    return result


async def send_single_notification(
    payload: SingleNotificationPayload, session_factory: async_sessionmaker
) -> dict:
    async with session_factory() as db:
        notification = create_notification(
            db, payload.user_id, payload.title, payload.message,
            type=payload.type, options=payload.options,
        )
        await db.commit()
        await db.refresh(notification)
    return {"sent": 1, "failed": 0, "total": 1, "notification_id": str(notification.id)}
