"""
Tests for the task HTTP endpoints (/api/tasks).

Tests cover:
- Authentication (401 without/with bad token)
- Create / get / update / delete with envelopes and status codes
- Listing with filters and pagination, and the "assigned to me" view
- Validation errors (422) and domain errors (403, 404) as envelopes
"""

import logging
from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models
from time_utils import utc_now
from tests.conftest import activity_for, auth_headers_for, create_auth_token, notifications_for

logger = logging.getLogger(__name__)


# ============== Authentication Tests (3 tests) ==============


def test_list_tasks_without_authentication(client: TestClient):
    """Test that listing tasks fails without a token (401)."""
    response = client.get("/api/tasks")

    assert response.status_code == 401, f"Expected 401, got {response.status_code}: {response.json()}"
    assert response.json() == {"success": False, "message": "Not authorized, no token"}
    logger.info("✓ Task list correctly rejected without authentication")


def test_invalid_token_rejected(client: TestClient):
    response = client.get("/api/tasks", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_expired_token_rejected(client: TestClient, creator: models.User):
    token = create_auth_token(creator, expires_delta=timedelta(minutes=-1))
    response = client.get("/api/tasks", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


# ============== Create Tests (4 tests) ==============


def test_create_task(client: TestClient, test_db: Session, creator: models.User, assignee: models.User):
    """Test creating a task with camelCase fields returns 201 and the populated task."""
    due = (utc_now() + timedelta(days=3)).isoformat()
    response = client.post(
        "/api/tasks",
        json={"title": "Ship release", "description": "v1.0", "dueDate": due, "assignedTo": assignee.id},
        headers=auth_headers_for(creator),
    )

    assert response.status_code == 201, f"Expected 201, got {response.status_code}: {response.json()}"
    body = response.json()
    assert body["success"] is True
    task = body["task"]
    assert task["title"] == "Ship release"
    assert task["status"] == "pending"
    assert task["created_by_id"] == creator.id
    assert task["assigned_to_id"] == assignee.id
    assert task["assignee"]["email"] == assignee.email
    assert task["creator"]["email"] == creator.email
    assert task["attachments"] == []
    assert task["comments"] == []

    assert [log.action for log in activity_for(test_db, task["id"])] == ["Task Created"]
    assert len(notifications_for(test_db, assignee.id)) == 1
    logger.info("✓ Task created with assignee notification")


def test_create_task_validation_errors(client: TestClient, creator: models.User):
    """Short title and past due date are rejected with field-level errors."""
    past = (utc_now() - timedelta(days=1)).isoformat()
    response = client.post(
        "/api/tasks",
        json={"title": "ab", "dueDate": past},
        headers=auth_headers_for(creator),
    )

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    fields = {error["field"] for error in body["errors"]}
    assert "title" in fields
    assert "dueDate" in fields or "due_date" in fields


def test_create_task_with_unknown_assignee(client: TestClient, creator: models.User):
    response = client.post(
        "/api/tasks",
        json={"title": "Orphan", "assignedTo": 9999},
        headers=auth_headers_for(creator),
    )
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Assigned user with ID 9999 not found"}


def test_create_task_ignores_client_supplied_creator(
    client: TestClient, creator: models.User, outsider: models.User
):
    response = client.post(
        "/api/tasks",
        json={"title": "Mine", "created_by_id": outsider.id},
        headers=auth_headers_for(creator),
    )
    assert response.status_code == 201
    assert response.json()["task"]["created_by_id"] == creator.id


# ============== Read Tests (5 tests) ==============


def test_get_task(client: TestClient, task: models.Task, outsider: models.User):
    """Any authenticated user can read a task."""
    response = client.get(f"/api/tasks/{task.id}", headers=auth_headers_for(outsider))

    assert response.status_code == 200
    assert response.json()["task"]["title"] == "Write report"


def test_get_missing_task(client: TestClient, creator: models.User):
    response = client.get("/api/tasks/4242", headers=auth_headers_for(creator))
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Task not found"}


def test_get_task_with_malformed_id(client: TestClient, creator: models.User):
    response = client.get("/api/tasks/not-a-number", headers=auth_headers_for(creator))
    assert response.status_code == 422
    assert response.json()["success"] is False


def test_list_tasks_pagination_and_filters(client: TestClient, creator: models.User):
    headers = auth_headers_for(creator)
    for i in range(3):
        client.post("/api/tasks", json={"title": f"Report {i}"}, headers=headers)
    client.post("/api/tasks", json={"title": "Groceries"}, headers=headers)

    response = client.get("/api/tasks", params={"title": "report", "page": 1, "limit": 2}, headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    assert body["page"] == 1
    assert body["pages"] == 2
    assert len(body["tasks"]) == 2

    response = client.get("/api/tasks", params={"status": "in-progress"}, headers=headers)
    assert response.json()["total"] == 0

    response = client.get("/api/tasks", params={"status": "bogus"}, headers=headers)
    assert response.status_code == 422
    logger.info("✓ Task listing filters and paginates")


def test_list_my_assigned_tasks(
    client: TestClient, task: models.Task, creator: models.User, assignee: models.User
):
    response = client.get("/api/tasks/me/assigned", headers=auth_headers_for(assignee))
    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert body["tasks"][0]["id"] == task.id

    response = client.get("/api/tasks/me/assigned", headers=auth_headers_for(creator))
    assert response.json()["count"] == 0


# ============== Update Tests (8 tests) ==============


def test_update_task_status(client: TestClient, test_db: Session, task: models.Task, assignee: models.User):
    response = client.put(
        f"/api/tasks/{task.id}",
        json={"status": "in-progress"},
        headers=auth_headers_for(assignee),
    )

    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    assert response.json()["task"]["status"] == "in-progress"
    logs = activity_for(test_db, task.id)
    assert [(log.action, log.details) for log in logs] == [("Status Updated", "pending → in-progress")]


def test_update_task_by_outsider(client: TestClient, test_db: Session, task: models.Task, outsider: models.User):
    response = client.put(
        f"/api/tasks/{task.id}",
        json={"title": "Hijacked"},
        headers=auth_headers_for(outsider),
    )

    assert response.status_code == 403
    assert response.json() == {"success": False, "message": "Not authorized to update this task"}
    assert activity_for(test_db, task.id) == []


def test_update_clears_assignee_with_explicit_null(
    client: TestClient, test_db: Session, task: models.Task, creator: models.User, assignee: models.User
):
    response = client.put(
        f"/api/tasks/{task.id}",
        json={"assignedTo": None},
        headers=auth_headers_for(creator),
    )

    assert response.status_code == 200
    assert response.json()["task"]["assigned_to_id"] is None
    assert [log.details for log in activity_for(test_db, task.id)] == [f"{assignee.id} → unassigned"]


def test_update_rejects_null_title(client: TestClient, task: models.Task, creator: models.User):
    response = client.put(f"/api/tasks/{task.id}", json={"title": None}, headers=auth_headers_for(creator))
    assert response.status_code == 422


def test_update_missing_task(client: TestClient, creator: models.User):
    response = client.put("/api/tasks/4242", json={"title": "Nothing"}, headers=auth_headers_for(creator))
    assert response.status_code == 404


def test_update_rejects_unknown_status(client: TestClient, test_db: Session, task: models.Task, creator: models.User):
    """Test that a status outside pending/in-progress/completed is rejected (422) and nothing changes."""
    task_id = task.id
    response = client.put(f"/api/tasks/{task_id}", json={"status": "done"}, headers=auth_headers_for(creator))

    assert response.status_code == 422, f"Expected 422, got {response.status_code}: {response.json()}"
    assert response.json()["message"] == "Validation failed"
    assert response.json()["errors"][0]["field"] == "status"

    test_db.expire_all()
    assert test_db.get(models.Task, task_id).status == models.TaskStatus.pending
    assert activity_for(test_db, task_id) == []
    logger.info("✓ Unknown status rejected without side effects")


def test_update_due_date_with_offset_is_stored_in_utc(
    client: TestClient, test_db: Session, task: models.Task, creator: models.User
):
    task_id = task.id
    response = client.put(
        f"/api/tasks/{task_id}",
        json={"dueDate": "2031-01-01T10:00:00+05:00"},
        headers=auth_headers_for(creator),
    )

    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    assert response.json()["task"]["due_date"].startswith("2031-01-01T05:00:00")
    assert [log.details for log in activity_for(test_db, task_id)] == ["none → 2031-01-01T05:00:00+00:00"]


def test_create_due_date_with_offset_is_stored_in_utc(client: TestClient, creator: models.User):
    response = client.post(
        "/api/tasks",
        json={"title": "Offset task", "dueDate": "2031-06-15T23:30:00-02:00"},
        headers=auth_headers_for(creator),
    )

    assert response.status_code == 201
    assert response.json()["task"]["due_date"].startswith("2031-06-16T01:30:00")


# ============== Delete Tests (3 tests) ==============


def test_delete_task_by_creator(client: TestClient, test_db: Session, task: models.Task, creator: models.User):
    task_id = task.id
    response = client.delete(f"/api/tasks/{task_id}", headers=auth_headers_for(creator))

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Task deleted successfully"}

    response = client.get(f"/api/tasks/{task_id}", headers=auth_headers_for(creator))
    assert response.status_code == 404

    # The deletion entry outlives the task
    assert [log.action for log in activity_for(test_db, task_id)] == ["Task Deleted"]
    logger.info("✓ Task deleted and deletion logged")


def test_delete_task_by_assignee(client: TestClient, task: models.Task, assignee: models.User):
    response = client.delete(f"/api/tasks/{task.id}", headers=auth_headers_for(assignee))
    assert response.status_code == 403
    assert response.json()["message"] == "Only creator can delete this task"


def test_delete_task_cascades_comments(
    client: TestClient, test_db: Session, task: models.Task, creator: models.User, outsider: models.User
):
    task_id = task.id
    client.post(f"/api/tasks/{task_id}/comment", json={"text": "First"}, headers=auth_headers_for(outsider))
    test_db.expire_all()
    assert test_db.query(models.Comment).filter(models.Comment.task_id == task_id).count() == 1

    response = client.delete(f"/api/tasks/{task_id}", headers=auth_headers_for(creator))
    assert response.status_code == 200

    test_db.expire_all()
    assert test_db.query(models.Comment).filter(models.Comment.task_id == task_id).count() == 0


# ============== Misc ==============


def test_health_and_root(client: TestClient):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["uptime"] >= 0

    response = client.get("/")
    assert response.json()["success"] is True
