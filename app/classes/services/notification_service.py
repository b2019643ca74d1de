"""
Notification Service - in-app notifications for class events.

Notifications are fire-and-forget: every write runs inside its own SAVEPOINT
and a failure is logged and tracked, never raised to the caller.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging_utils import log_suppressed_failure
from app.classes.models.notifications import Notification

logger = logging.getLogger(__name__)

SCHEDULE_UPDATE = "SCHEDULE_UPDATE"
CLASS_ENROLLMENT = "CLASS_ENROLLMENT"
CLASS_REMOVAL = "CLASS_REMOVAL"
MAIN_CLASS_APPROVED = "MAIN_CLASS_APPROVED"
MAIN_CLASS_REJECTED = "MAIN_CLASS_REJECTED"
MAIN_CLASS_REMOVED = "MAIN_CLASS_REMOVED"


async def notify(
    session: AsyncSession,
    notification_type: str,
    recipient_id: int,
    content: str,
    link: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
    sender_id: Optional[int] = None,
) -> Optional[Notification]:
    """
    Create an in-app notification.

    Returns:
        The notification, or None if it could not be stored
    """
    try:
        async with session.begin_nested():
            notification = Notification(
                receiver_id=recipient_id,
                sender_id=sender_id,
                type=notification_type,
                content=content,
                link=link,
                data=data or {},
            )
            session.add(notification)
            await session.flush()
    except Exception as e:
        log_suppressed_failure(
            "NotificationFailure",
            "notify",
            e,
            {"recipient_id": recipient_id, "type": notification_type},
        )
        return None

    logger.debug(f"Notification {notification_type} queued for user {recipient_id}")
    return notification


async def notify_many(
    session: AsyncSession,
    notification_type: str,
    recipient_ids: Iterable[int],
    content: str,
    link: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
    sender_id: Optional[int] = None,
) -> int:
    """Send the same notification to several users; returns how many were stored"""
    sent = 0
    for recipient_id in recipient_ids:
        notification = await notify(
            session, notification_type, recipient_id, content, link, data, sender_id
        )
        if notification is not None:
            sent += 1
    return sent
