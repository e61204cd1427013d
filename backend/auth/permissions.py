"""
Task-level permission checking utilities.

This module provides pure predicates deciding whether a user may read or
modify a task or comment, plus ``require`` helpers that turn a denial into an
AuthorizationError.

Rules:
- Any authenticated user can read tasks
- Creator or assignee can update a task and upload attachments
- Only the creator can delete a task
- Comment author or a global admin can delete a comment
"""

import logging

from errors import AuthorizationError
from models import Comment, Task, User, UserRole

logger = logging.getLogger(__name__)


def is_admin(user: User) -> bool:
    return getattr(user, "role", UserRole.user.value) == UserRole.admin.value


def can_read_task(user: User, task: Task) -> bool:
    """Reading is open to every authenticated user."""
    return user is not None


def can_mutate_task(user: User, task: Task) -> bool:
    """
    Check if a user may update a task.

    Args:
        user: Acting user
        task: Task being modified

    Returns:
        True if the user created the task or is its assignee
    """
    if user.id == task.created_by_id:
        return True
    return task.assigned_to_id is not None and user.id == task.assigned_to_id


def can_delete_task(user: User, task: Task) -> bool:
    """Only the creator may delete; the assignee may not."""
    return user.id == task.created_by_id


def can_upload_attachment(user: User, task: Task) -> bool:
    return can_mutate_task(user, task)


def can_delete_comment(user: User, comment: Comment) -> bool:
    return user.id == comment.user_id or is_admin(user)


def require(allowed: bool, message: str) -> None:
    """
    Raise AuthorizationError unless ``allowed``.

    Example:
        >>> require(can_delete_task(user, task), "Only creator can delete this task")
    """
    if not allowed:
        logger.info(f"Authorization denied: {message}")
        raise AuthorizationError(message)


def require_admin(user: User) -> None:
    require(is_admin(user), "Admin only")
