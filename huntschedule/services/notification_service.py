"""
Notification service for user-facing request and claim events.

Notifications are fire-and-forget: notify() logs and swallows failures so a
broken notification never blocks an approval or a refund.
"""

from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from huntschedule.database.models import Notification
from huntschedule.utils.datetime_utils import isoformat_or_none
import json
import logging

logger = logging.getLogger(__name__)


def _format_notification(notification: Notification) -> Dict:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": json.loads(notification.data) if notification.data else None,
        "is_read": notification.is_read,
        "created_at": isoformat_or_none(notification.created_at),
    }


async def create_notification(
    session: AsyncSession,
    user_id: int,
    type: str,
    title: str,
    message: str,
    data: Optional[Dict] = None,
) -> Dict:
    """
    Create a single notification for a user.

    Args:
        session: Database session
        user_id: ID of the user to notify
        type: Notification type (NotificationType enum value)
        title: Notification title
        message: Notification message text
        data: Optional JSON metadata (dict will be serialized to JSON string)

    Returns:
        Dict containing the created notification data

    Raises:
        ValueError: If required fields are missing
    """
    if not user_id:
        raise ValueError("user_id is required")
    if not type:
        raise ValueError("type is required")
    if not title or not message:
        raise ValueError("title and message are required")

    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        data=json.dumps(data) if data is not None else None,
        is_read=False,
    )
    session.add(notification)
    await session.flush()
    await session.refresh(notification)
    logger.info(f"Notification {type} queued for user {user_id}")
    return _format_notification(notification)


async def notify(
    session: AsyncSession,
    user_id: int,
    type: str,
    title: str,
    message: str,
    data: Optional[Dict] = None,
) -> Optional[Dict]:
    """
    Create a notification, logging instead of raising on failure.

    The insert runs in a savepoint so a failed flush leaves the caller's
    transaction usable.
    """
    try:
        async with session.begin_nested():
            return await create_notification(session, user_id, type, title, message, data)
    except Exception as e:
        logger.warning(f"Failed to send {type} notification to user {user_id}: {e}")
        return None


async def get_user_notifications(
    session: AsyncSession, user_id: int, unread_only: bool = False, limit: int = 50
) -> List[Dict]:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    result = await session.execute(query.order_by(Notification.id.desc()).limit(limit))
    return [_format_notification(n) for n in result.scalars().all()]
