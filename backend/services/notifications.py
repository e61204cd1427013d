"""
Pull-based user notifications.

``notify_user`` is a best-effort side effect: it returns None instead of
raising when the write fails. Duplicate notifications for the same logical
event are expected (one per triggering change).
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

import models
from errors import NotFoundError
from repository import Repository

logger = logging.getLogger(__name__)


def notify_user(
    db: Session, recipient_id: int, message: str, task_id: Optional[int] = None
) -> Optional[models.Notification]:
    """
    Create a notification for a user.

    Args:
        db: Database session
        recipient_id: ID of the user to notify
        message: Notification text
        task_id: Related task (optional)

    Returns:
        Created Notification, or None if it could not be stored
    """
    logger.debug(f"Notifying user {recipient_id} (task={task_id}): {message}")
    try:
        return Repository(db).create(
            models.Notification(user_id=recipient_id, message=message, task_id=task_id, read=False)
        )
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to notify user {recipient_id}: {e}")
        return None


def list_notifications(db: Session, user_id: int) -> List[models.Notification]:
    return Repository(db).find_many(
        models.Notification,
        models.Notification.user_id == user_id,
        order_by=(models.Notification.created_at.desc(), models.Notification.id.desc()),
    )


def mark_as_read(db: Session, notification_id: int, user_id: int) -> models.Notification:
    """Flag one of the user's notifications as read."""
    repo = Repository(db)
    notification = repo.find_one(
        models.Notification,
        models.Notification.id == notification_id,
        models.Notification.user_id == user_id,
    )
    if notification is None:
        # Someone else's notification looks the same as a missing one
        raise NotFoundError("Notification not found")

    notification.read = True
    return repo.save(notification)


def clear_all(db: Session, user_id: int) -> int:
    """Delete every notification owned by the user. Returns the number removed."""
    deleted = Repository(db).delete_matching(models.Notification, models.Notification.user_id == user_id)
    logger.info(f"Cleared {deleted} notifications for user {user_id}")
    return deleted
