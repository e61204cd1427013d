"""
Activity log: append-only audit trail of task changes.

``log_activity`` is a best-effort side effect. It never raises; a failed write
is rolled back and reported to operators through the log.
"""

import logging
from typing import List

from sqlalchemy.orm import Session, joinedload

import models
from repository import Repository

logger = logging.getLogger(__name__)


class TaskAction:
    """Action labels written to the activity log."""

    TASK_CREATED = "Task Created"
    TASK_DELETED = "Task Deleted"
    STATUS_UPDATED = "Status Updated"
    ASSIGNED_CHANGED = "Assigned Changed"
    DUE_DATE_UPDATED = "DueDate Updated"
    TITLE_UPDATED = "Title Updated"
    DESCRIPTION_UPDATED = "Description Updated"
    FILE_UPLOADED = "File Uploaded"
    COMMENT_ADDED = "Comment Added"
    COMMENT_DELETED = "Comment Deleted"


def log_activity(db: Session, task_id: int, actor_id: int, action: str, details: str = "") -> None:
    """
    Append one activity log entry for a task.

    Args:
        db: Database session
        task_id: ID of the task the change applies to
        actor_id: ID of the user who made the change
        action: Action label (see TaskAction)
        details: Human-readable description of the change
    """
    logger.debug(f"Logging activity: task={task_id}, actor={actor_id}, action={action}")
    try:
        Repository(db).create(
            models.ActivityLog(task_id=task_id, user_id=actor_id, action=action, details=details or "")
        )
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to log activity '{action}' for task {task_id}: {e}")


def list_task_logs(db: Session, task_id: int) -> List[models.ActivityLog]:
    """Activity for one task, most recent first."""
    return Repository(db).find_many(
        models.ActivityLog,
        models.ActivityLog.task_id == task_id,
        order_by=(models.ActivityLog.created_at.desc(), models.ActivityLog.id.desc()),
        options=(joinedload(models.ActivityLog.user),),
    )


def list_user_logs(db: Session, user_id: int) -> List[models.ActivityLog]:
    """Activity performed by one user, most recent first."""
    return Repository(db).find_many(
        models.ActivityLog,
        models.ActivityLog.user_id == user_id,
        order_by=(models.ActivityLog.created_at.desc(), models.ActivityLog.id.desc()),
    )
