"""
Test configuration and fixtures for Task Sphere tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client bound to the test database handle
- Authentication helpers (JWT token generation)
- Common fixtures for users and tasks
"""

import os
import sys
import logging
import tempfile
from datetime import timedelta
from typing import Generator, Dict

# Uploads go to a throwaway directory; must be set before config is imported
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="tasksphere-uploads-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Database
from main import app
import models
from auth.routes import auth_limiter
from auth.security import hash_password, create_access_token

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

# Shared by every fixture user
USER_PASSWORD = "Passw0rd"
_password_hash = hash_password(USER_PASSWORD)


@pytest.fixture(scope="function")
def test_database() -> Generator[Database, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    StaticPool keeps a single connection so every session sees the same data.
    """
    database = Database(
        SQLALCHEMY_TEST_DATABASE_URL,
        engine_options={"connect_args": {"check_same_thread": False}, "poolclass": StaticPool},
    )
    database.init()
    try:
        yield database
    finally:
        database.close()
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def test_db(test_database: Database) -> Generator[Session, None, None]:
    db = test_database.session()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def client(test_database: Database) -> Generator[TestClient, None, None]:
    """
    Create FastAPI test client using the test database handle.
    """
    app.state.db = test_database
    auth_limiter.reset()

    with TestClient(app) as test_client:
        yield test_client

    app.state.db = None


def make_user(db: Session, name: str, email: str, role: str = "user") -> models.User:
    user = models.User(name=name, email=email, password_hash=_password_hash, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created {role} user {email} with ID: {user.id}")
    return user


@pytest.fixture(scope="function")
def admin_user(test_db: Session) -> models.User:
    return make_user(test_db, "Admin User", "admin@test.com", role="admin")


@pytest.fixture(scope="function")
def creator(test_db: Session) -> models.User:
    return make_user(test_db, "Task Creator", "creator@test.com")


@pytest.fixture(scope="function")
def assignee(test_db: Session) -> models.User:
    return make_user(test_db, "Task Assignee", "assignee@test.com")


@pytest.fixture(scope="function")
def outsider(test_db: Session) -> models.User:
    return make_user(test_db, "Someone Else", "outsider@test.com")


def create_auth_token(user: models.User, expires_delta: timedelta = None) -> str:
    """
    Helper to create JWT access token for a user.
    """
    token_data = {
        "sub": str(user.id),
        "role": user.role,
        "email": user.email
    }
    return create_access_token(token_data, expires_delta)


def auth_headers_for(user: models.User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user)}"}


@pytest.fixture(scope="function")
def task(test_db: Session, creator: models.User, assignee: models.User) -> models.Task:
    """
    A pending task created by `creator` and assigned to `assignee`.
    """
    task = models.Task(
        title="Write report",
        description="Quarterly numbers",
        status=models.TaskStatus.pending,
        created_by_id=creator.id,
        assigned_to_id=assignee.id,
        attachments=[],
    )
    test_db.add(task)
    test_db.commit()
    test_db.refresh(task)
    logger.info(f"Created test task with ID: {task.id}")
    return task


def activity_for(db: Session, task_id: int) -> list:
    """Activity log entries for a task in insertion order."""
    db.expire_all()
    return (
        db.query(models.ActivityLog)
        .filter(models.ActivityLog.task_id == task_id)
        .order_by(models.ActivityLog.id)
        .all()
    )


def notifications_for(db: Session, user_id: int) -> list:
    db.expire_all()
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id)
        .order_by(models.Notification.id)
        .all()
    )
