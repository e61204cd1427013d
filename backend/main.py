from contextlib import asynccontextmanager
from datetime import date
from typing import Optional
import logging
import time

from fastapi import FastAPI, Depends, Query, UploadFile, File, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings, is_production_like
from database import Database, get_db
from errors import TaskSphereError, ValidationError
import models
import schemas
from time_utils import utc_now
from uploads import UploadStorage, UPLOAD_URL_PREFIX
from auth.routes import router as auth_router
from auth.dependencies import get_current_user, get_current_admin
from auth.permissions import can_read_task, require
from services.tasks import TaskService
from services import activity, notifications

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


# ============== Startup / Shutdown ==============

def ensure_admin_user(db_handle: Database) -> None:
    """
    Create the admin account named by ADMIN_EMAIL / ADMIN_PASSWORD if it is missing.

    In production-like environments the password must be at least 8
    characters; otherwise seeding is skipped with an error.
    """
    if not settings.admin_email or not settings.admin_password:
        return

    from auth.security import hash_password

    if is_production_like() and len(settings.admin_password.strip()) < 8:
        logger.error("❌ ADMIN_PASSWORD must be at least 8 characters long in production. Admin not created.")
        return

    db = db_handle.session()
    try:
        email = settings.admin_email.lower()
        if db.query(models.User).filter(models.User.email == email).first():
            logger.info(f"Admin user already exists (email: {email})")
            return

        db.add(models.User(
            name="Admin",
            email=email,
            role=models.UserRole.admin.value,
            password_hash=hash_password(settings.admin_password),
        ))
        db.commit()
        logger.info(f"✅ Admin user created: {email}")
    except Exception as e:
        logger.error(f"Failed to ensure admin user exists: {e}")
        db.rollback()
        # Don't fail startup - let the app run even if admin creation fails
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A handle attached before startup (tests) is used as-is and left open
    owns_db = getattr(app.state, "db", None) is None
    if owns_db:
        app.state.db = Database(settings.database_url)
    app.state.db.init()
    ensure_admin_user(app.state.db)
    logger.info("Task Sphere API started")

    yield

    if owns_db:
        app.state.db.close()
        app.state.db = None
    logger.info("Task Sphere API stopped")


app = FastAPI(
    title="Task Sphere API",
    description="Task management with assignments, comments, attachments, activity logs and notifications",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms:.1f}ms)")
    return response


# ============== Error Handlers ==============

def envelope_error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


@app.exception_handler(TaskSphereError)
async def domain_error_handler(request: Request, exc: TaskSphereError):
    extra = {"errors": exc.errors} if isinstance(exc, ValidationError) and exc.errors else {}
    return envelope_error(exc.status_code, exc.message, **extra)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    response = envelope_error(exc.status_code, str(exc.detail))
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err["loc"][1:]) or str(err["loc"][0]), "message": err["msg"]}
        for err in exc.errors()
    ]
    logger.info(f"Validation failed for {request.method} {request.url.path}: {errors}")
    return envelope_error(status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation failed", errors=errors)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return envelope_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# Register user/authentication router
app.include_router(auth_router)


# ============== File Upload Configuration ==============

upload_storage = UploadStorage(settings.upload_dir, settings.max_upload_bytes)
app.state.uploads = upload_storage

try:
    upload_storage.ensure_dir()
    app.mount(UPLOAD_URL_PREFIX, StaticFiles(directory=str(upload_storage.upload_dir)), name="uploads")
except (OSError, PermissionError) as e:
    # When the directory can't be created, skip serving uploads
    logger.warning(f"Could not create upload directory: {e}. File uploads will not work.")


def get_upload_storage(request: Request) -> UploadStorage:
    return request.app.state.uploads


def get_task_service(db: Session = Depends(get_db)) -> TaskService:
    return TaskService(db)


# ============== Health ==============

@app.get("/")
def root():
    return {"success": True, "message": "Welcome to Task Sphere API 🚀"}


@app.get("/api/health", response_model=schemas.HealthResponse)
def health_check():
    return {"ok": True, "uptime": time.monotonic() - STARTED_AT, "timestamp": utc_now()}


# ============== Tasks ==============

@app.post("/api/tasks", response_model=schemas.TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    task: schemas.TaskCreate,
    current_user: models.User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Create a new task owned by the current user."""
    created = service.create(task, current_user)
    return {"success": True, "task": created}


@app.get("/api/tasks", response_model=schemas.TaskListResponse)
def list_tasks(
    current_user: models.User = Depends(get_current_user),
    status_filter: Optional[models.TaskStatus] = Query(None, alias="status"),
    title: Optional[str] = Query(None, max_length=100, description="Case-insensitive title search"),
    due_date: Optional[date] = Query(None, alias="dueDate", description="Tasks due on this day"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    service: TaskService = Depends(get_task_service),
):
    """List tasks with status/title/due-date filters and pagination."""
    logger.debug(
        f"User {current_user.id} listing tasks: status={status_filter}, title={title}, "
        f"due_date={due_date}, page={page}, limit={limit}"
    )
    tasks, total = service.list(status=status_filter, title=title, due_date=due_date, page=page, limit=limit)
    return {
        "success": True,
        "total": total,
        "page": page,
        "pages": service.page_count(total, limit),
        "tasks": tasks,
    }


# Declared before /api/tasks/{task_id} so "me" isn't parsed as an id
@app.get("/api/tasks/me/assigned", response_model=schemas.TaskCountResponse)
def list_my_tasks(
    current_user: models.User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Tasks assigned to the current user."""
    tasks = service.list_assigned(current_user)
    return {"success": True, "count": len(tasks), "tasks": tasks}


@app.post("/api/tasks/admin/fix-attachments", response_model=schemas.FixAttachmentsResponse)
def fix_attachment_paths(
    admin: models.User = Depends(get_current_admin),
    service: TaskService = Depends(get_task_service),
):
    """Normalize legacy attachment paths (admin only)."""
    logger.info(f"Admin {admin.id} normalizing attachment paths")
    return {"success": True, "changed": service.normalize_attachment_paths()}


@app.get("/api/tasks/{task_id}", response_model=schemas.TaskResponse)
def get_task(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    task = service.get(task_id)
    require(can_read_task(current_user, task), "Not authorized")
    return {"success": True, "task": task}


@app.put("/api/tasks/{task_id}", response_model=schemas.TaskResponse)
def update_task(
    task_id: int,
    task_update: schemas.TaskUpdate,
    current_user: models.User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Update a task (creator or assignee)."""
    update_data = task_update.model_dump(exclude_unset=True)
    task = service.update(task_id, update_data, current_user)
    return {"success": True, "task": task}


@app.delete("/api/tasks/{task_id}", response_model=schemas.Envelope)
def delete_task(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Delete a task (creator only)."""
    service.delete(task_id, current_user)
    return {"success": True, "message": "Task deleted successfully"}


# ============== Attachments ==============

@app.post("/api/tasks/{task_id}/upload", response_model=schemas.UploadResponse)
async def upload_attachment(
    task_id: int,
    request: Request,
    file: Optional[UploadFile] = File(None),
    current_user: models.User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
    storage: UploadStorage = Depends(get_upload_storage),
):
    """Upload a .jpg/.jpeg/.png/.pdf file (max 2MB by default) to a task."""
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")

    logger.debug(f"Uploading attachment to task {task_id}: {file.filename}")

    # Extension and size are checked while storing, before the task is touched
    stored = await storage.save(file)
    try:
        task = service.add_attachment(task_id, current_user, stored)
    except Exception:
        storage.discard(stored)
        raise

    base_url = str(request.base_url).rstrip("/")
    return {
        "success": True,
        "message": "File uploaded",
        "file": stored.web_path,
        "file_url": f"{base_url}{stored.web_path}",
        "task": task,
    }


# ============== Comments ==============

@app.post("/api/tasks/{task_id}/comment", response_model=schemas.CommentAddedResponse)
def add_comment(
    task_id: int,
    comment: schemas.CommentCreate,
    current_user: models.User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    created = service.add_comment(task_id, current_user, comment.text)
    task = service.get(task_id)
    return {"success": True, "message": "Comment added", "comment": created, "comments": task.comments}


@app.delete("/api/tasks/{task_id}/comment/{comment_id}", response_model=schemas.Envelope)
def delete_comment(
    task_id: int,
    comment_id: int,
    current_user: models.User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Delete a comment (author or admin)."""
    service.delete_comment(task_id, comment_id, current_user)
    return {"success": True, "message": "Comment deleted"}


# ============== Activity Log ==============

@app.get("/api/activity/task/{task_id}", response_model=schemas.ActivityListResponse)
def get_task_logs(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Activity for a task, most recent first."""
    logs = activity.list_task_logs(db, task_id)
    return {"success": True, "count": len(logs), "logs": logs}


@app.get("/api/activity/me", response_model=schemas.ActivityListResponse)
def get_my_logs(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    logs = activity.list_user_logs(db, current_user.id)
    return {"success": True, "count": len(logs), "logs": logs}


# ============== Notifications ==============

@app.get("/api/notifications", response_model=schemas.NotificationListResponse)
def get_my_notifications(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = notifications.list_notifications(db, current_user.id)
    return {"success": True, "count": len(items), "notifications": items}


@app.put("/api/notifications/{notification_id}/read", response_model=schemas.NotificationResponse)
def mark_notification_read(
    notification_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = notifications.mark_as_read(db, notification_id, current_user.id)
    return {"success": True, "notification": notification}


@app.delete("/api/notifications/clear", response_model=schemas.Envelope)
def clear_notifications(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notifications.clear_all(db, current_user.id)
    return {"success": True, "message": "All notifications cleared"}


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting Task Sphere API on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)
