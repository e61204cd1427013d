"""
Task mutation pipeline.

Every mutating operation follows the same sequence:

1. load the task (NotFoundError when absent)
2. check the actor against the policy in auth.permissions
3. apply and persist the primary change (failures propagate)
4. write activity log entries, then notifications

Steps 4 are best-effort: ``log_activity`` and ``notify_user`` swallow their
own failures, so a broken audit or notification write never rolls back or
fails the primary change. Side effects run in a fixed order because later
entries are computed from the post-save state.
"""

import logging
import math
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, selectinload

import models
import schemas
from auth.permissions import (
    can_delete_comment,
    can_delete_task,
    can_mutate_task,
    can_upload_attachment,
    require,
)
from errors import NotFoundError
from repository import Repository
from services.activity import TaskAction, log_activity
from services.notifications import notify_user
from time_utils import as_utc, day_bounds, to_iso, utc_now
from uploads import StoredFile

logger = logging.getLogger(__name__)

# Fields whose changes are audited, in the order they are checked
TRACKED_FIELDS = ("status", "assigned_to", "due_date", "title", "description")

# Request field name -> model attribute
PATCH_ATTRIBUTES = {
    "title": "title",
    "description": "description",
    "status": "status",
    "due_date": "due_date",
    "assigned_to": "assigned_to_id",
}

TASK_LOAD_OPTIONS = (
    joinedload(models.Task.creator),
    joinedload(models.Task.assignee),
    selectinload(models.Task.comments).joinedload(models.Comment.user),
)


def task_snapshot(task: models.Task) -> Dict[str, Optional[str]]:
    """String view of the tracked fields, used to diff before/after an update."""
    status = task.status.value if hasattr(task.status, "value") else task.status
    return {
        "status": status,
        "assigned_to": str(task.assigned_to_id) if task.assigned_to_id is not None else None,
        "due_date": to_iso(task.due_date),
        "title": task.title,
        "description": task.description or "",
    }


class TaskService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = Repository(db)

    # ============== Reads ==============

    def get(self, task_id: int) -> models.Task:
        task = self.repo.find_by_id(models.Task, task_id, options=TASK_LOAD_OPTIONS)
        if task is None:
            logger.info(f"Task {task_id} not found")
            raise NotFoundError("Task not found")
        return task

    def list(
        self,
        status: Optional[str] = None,
        title: Optional[str] = None,
        due_date: Optional[date] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[models.Task], int]:
        """
        List tasks with optional filters and page-based pagination.

        Args:
            status: Exact status match
            title: Case-insensitive substring of the title
            due_date: Tasks due on this calendar day (UTC)
            page: 1-based page number
            limit: Page size

        Returns:
            (tasks on the page, total matching tasks)
        """
        criteria = []
        if status:
            criteria.append(models.Task.status == models.TaskStatus(getattr(status, "value", status)))
        if title:
            criteria.append(func.lower(models.Task.title).contains(title.lower(), autoescape=True))
        if due_date:
            start, end = day_bounds(due_date)
            criteria.append(models.Task.due_date >= start)
            criteria.append(models.Task.due_date < end)

        tasks = self.repo.find_many(
            models.Task,
            *criteria,
            skip=(page - 1) * limit,
            limit=limit,
            order_by=(models.Task.created_at.desc(), models.Task.id.desc()),
            options=TASK_LOAD_OPTIONS,
        )
        total = self.repo.count_matching(models.Task, *criteria)
        logger.debug(f"Listed {len(tasks)} of {total} tasks (page={page}, limit={limit})")
        return tasks, total

    @staticmethod
    def page_count(total: int, limit: int) -> int:
        return math.ceil(total / limit) if limit else 0

    def list_assigned(self, actor: models.User) -> List[models.Task]:
        return self.repo.find_many(
            models.Task,
            models.Task.assigned_to_id == actor.id,
            order_by=(models.Task.created_at.desc(), models.Task.id.desc()),
            options=TASK_LOAD_OPTIONS,
        )

    def _require_user(self, user_id: int) -> models.User:
        user = self.repo.find_by_id(models.User, user_id)
        if user is None:
            logger.info(f"Assigned user {user_id} not found")
            raise NotFoundError(f"Assigned user with ID {user_id} not found")
        return user

    # ============== Mutations ==============

    def create(self, data: schemas.TaskCreate, actor: models.User) -> models.Task:
        logger.info(f"User {actor.id} creating task: {data.title}")

        if data.assigned_to is not None:
            self._require_user(data.assigned_to)

        # created_by always comes from the authenticated user, never the request
        task = self.repo.create(
            models.Task(
                title=data.title,
                description=data.description or "",
                status=models.TaskStatus.pending,
                due_date=as_utc(data.due_date),
                assigned_to_id=data.assigned_to,
                created_by_id=actor.id,
                attachments=[],
            )
        )

        log_activity(self.db, task.id, actor.id, TaskAction.TASK_CREATED, f'Task "{task.title}" created')
        if task.assigned_to_id is not None:
            notify_user(
                self.db,
                task.assigned_to_id,
                f"You have been assigned a new task: {task.title}",
                task.id,
            )

        logger.info(f"Task created successfully: id={task.id}")
        return self.get(task.id)

    def update(self, task_id: int, patch: Dict[str, Any], actor: models.User) -> models.Task:
        """
        Apply a partial update and audit each changed field.

        Args:
            task_id: Task to update
            patch: Fields explicitly sent by the client (exclude_unset dump of TaskUpdate)
            actor: Authenticated user

        Raises:
            NotFoundError: task (or new assignee) does not exist
            AuthorizationError: actor is neither creator nor assignee
        """
        logger.info(f"User {actor.id} updating task {task_id}: fields={sorted(patch)}")

        task = self.get(task_id)
        require(can_mutate_task(actor, task), "Not authorized to update this task")

        if patch.get("assigned_to") is not None:
            self._require_user(patch["assigned_to"])

        old = task_snapshot(task)

        changes = {}
        for field_name, value in patch.items():
            attribute = PATCH_ATTRIBUTES.get(field_name)
            if attribute is None:
                continue
            if field_name == "status":
                value = models.TaskStatus(value.value if hasattr(value, "value") else value)
            elif field_name == "description" and value is None:
                value = ""
            elif field_name == "due_date":
                value = as_utc(value)
            changes[attribute] = value

        task = self.repo.update_by_id(models.Task, task_id, changes)
        if task is None:
            raise NotFoundError("Task not found")
        new = task_snapshot(task)

        for field_name in TRACKED_FIELDS:
            if old[field_name] != new[field_name]:
                self._record_change(task, actor, field_name, old[field_name], new[field_name])

        logger.info(f"Task {task_id} updated successfully")
        return self.get(task_id)

    def _record_change(
        self,
        task: models.Task,
        actor: models.User,
        field_name: str,
        old_value: Optional[str],
        new_value: Optional[str],
    ) -> None:
        logger.debug(f"Task {task.id} field '{field_name}' changed: {old_value} -> {new_value}")

        if field_name == "status":
            log_activity(self.db, task.id, actor.id, TaskAction.STATUS_UPDATED, f"{old_value} → {new_value}")
            if task.assigned_to_id is not None:
                notify_user(
                    self.db,
                    task.assigned_to_id,
                    f'Task "{task.title}" status changed to {new_value}',
                    task.id,
                )
        elif field_name == "assigned_to":
            # Reassignment alone does not notify anyone
            log_activity(
                self.db,
                task.id,
                actor.id,
                TaskAction.ASSIGNED_CHANGED,
                f"{old_value or 'unassigned'} → {new_value or 'unassigned'}",
            )
        elif field_name == "due_date":
            log_activity(
                self.db,
                task.id,
                actor.id,
                TaskAction.DUE_DATE_UPDATED,
                f"{old_value or 'none'} → {new_value or 'none'}",
            )
            if task.assigned_to_id is not None:
                notify_user(self.db, task.assigned_to_id, f'Task "{task.title}" due date updated', task.id)
        elif field_name == "title":
            log_activity(self.db, task.id, actor.id, TaskAction.TITLE_UPDATED, "Title changed")
        elif field_name == "description":
            log_activity(self.db, task.id, actor.id, TaskAction.DESCRIPTION_UPDATED, "Description changed")

    def delete(self, task_id: int, actor: models.User) -> None:
        logger.info(f"User {actor.id} deleting task {task_id}")

        task = self.get(task_id)
        require(can_delete_task(actor, task), "Only creator can delete this task")

        title = task.title
        self.repo.delete(task)

        log_activity(self.db, task_id, actor.id, TaskAction.TASK_DELETED, f'Task "{title}" deleted')
        logger.info(f"Task {task_id} deleted by user {actor.id}")

    def add_attachment(self, task_id: int, actor: models.User, stored: StoredFile) -> models.Task:
        logger.info(f"User {actor.id} attaching {stored.filename} to task {task_id}")

        task = self.get(task_id)
        require(can_upload_attachment(actor, task), "Not authorized")

        # Reassign rather than append so the JSON column is flagged dirty
        task.attachments = [*(task.attachments or []), stored.web_path]
        self.repo.save(task)

        log_activity(self.db, task.id, actor.id, TaskAction.FILE_UPLOADED, stored.filename)

        message = f'A file was uploaded to task "{task.title}"'
        for recipient_id in self._other_participants(task, actor):
            notify_user(self.db, recipient_id, message, task.id)

        return self.get(task_id)

    def _other_participants(self, task: models.Task, actor: models.User) -> List[int]:
        """Creator then assignee, skipping the actor and duplicates."""
        recipients = []
        for user_id in (task.created_by_id, task.assigned_to_id):
            if user_id is not None and user_id != actor.id and user_id not in recipients:
                recipients.append(user_id)
        return recipients

    def add_comment(self, task_id: int, actor: models.User, text: str) -> models.Comment:
        # Any authenticated user may comment on any task
        logger.info(f"User {actor.id} commenting on task {task_id}")

        task = self.get(task_id)
        comment = self.repo.create(
            models.Comment(task_id=task.id, user_id=actor.id, text=text, created_at=utc_now())
        )

        log_activity(self.db, task.id, actor.id, TaskAction.COMMENT_ADDED, text)
        if task.created_by_id != actor.id:
            notify_user(self.db, task.created_by_id, f'New comment on your task "{task.title}"', task.id)
        if task.assigned_to_id is not None and task.assigned_to_id != actor.id:
            notify_user(self.db, task.assigned_to_id, f'New comment on task "{task.title}"', task.id)

        return comment

    def delete_comment(self, task_id: int, comment_id: int, actor: models.User) -> None:
        logger.info(f"User {actor.id} deleting comment {comment_id} on task {task_id}")

        comment = self.repo.find_one(
            models.Comment,
            models.Comment.id == comment_id,
            models.Comment.task_id == task_id,
        )
        if comment is None:
            logger.info(f"Comment {comment_id} not found on task {task_id}")
            raise NotFoundError("Comment not found")

        require(can_delete_comment(actor, comment), "Not authorized to delete this comment")

        text = comment.text or ""
        if not self.repo.delete_by_id(models.Comment, comment.id):
            raise NotFoundError("Comment not found")
        log_activity(self.db, task_id, actor.id, TaskAction.COMMENT_DELETED, text)

    # ============== Maintenance ==============

    def normalize_attachment_paths(self) -> int:
        """
        Rewrite legacy attachment paths (backslashes, missing leading slash)
        to the served ``/uploads/<file>`` form.

        Returns:
            Number of tasks changed
        """
        changed = 0
        for task in self.repo.find_many(models.Task):
            attachments = task.attachments or []
            fixed = [normalize_attachment_path(p) for p in attachments]
            if fixed != attachments:
                task.attachments = fixed
                self.repo.save(task)
                changed += 1
        logger.info(f"Normalized attachment paths on {changed} tasks")
        return changed


def normalize_attachment_path(path: str) -> str:
    path = path.replace("\\", "/")
    if path.startswith("uploads/"):
        path = "/" + path
    return path
