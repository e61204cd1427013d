import re
from pydantic import AliasChoices, BaseModel, EmailStr, Field, field_validator
from datetime import datetime
from typing import Optional, List

from models import TaskStatus, UserRole
from time_utils import as_utc, utc_now


PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


# User schemas
class UserSummary(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class User(UserSummary):
    role: UserRole
    created_at: datetime


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=100)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("Name must be between 2-50 characters")
        return value

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        if not PASSWORD_PATTERN.match(value):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, and one number"
            )
        return value


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()


# Comment schemas
class CommentCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=300)

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Comment text is required")
        return value


class Comment(BaseModel):
    id: int
    task_id: int
    user_id: Optional[int]
    user: Optional[UserSummary] = None
    text: str
    created_at: datetime

    class Config:
        from_attributes = True


# Task schemas
class TaskCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    due_date: Optional[datetime] = Field(None, validation_alias=AliasChoices("due_date", "dueDate"))
    assigned_to: Optional[int] = Field(None, validation_alias=AliasChoices("assigned_to", "assignedTo"))

    @field_validator("due_date")
    @classmethod
    def due_date_not_in_past(cls, value: Optional[datetime]) -> Optional[datetime]:
        value = as_utc(value)
        if value is not None and value < utc_now():
            raise ValueError("Due date cannot be in the past")
        return value


class TaskUpdate(BaseModel):
    """
    Partial update. Only fields present in the request body are applied;
    an explicit null clears due_date or assigned_to.
    """
    title: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    status: Optional[TaskStatus] = None
    due_date: Optional[datetime] = Field(None, validation_alias=AliasChoices("due_date", "dueDate"))
    assigned_to: Optional[int] = Field(None, validation_alias=AliasChoices("assigned_to", "assignedTo"))

    @field_validator("title", "status")
    @classmethod
    def not_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value

    @field_validator("due_date")
    @classmethod
    def due_date_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Stored as UTC; SQLite keeps only the wall-clock part
        return as_utc(value)


class Task(BaseModel):
    id: int
    title: str
    description: str = ""
    status: TaskStatus
    due_date: Optional[datetime] = None
    assigned_to_id: Optional[int] = None
    assignee: Optional[UserSummary] = None
    created_by_id: int
    creator: Optional[UserSummary] = None
    attachments: List[str] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Activity log schemas
class ActivityLog(BaseModel):
    id: int
    task_id: int
    user_id: Optional[int]
    user: Optional[UserSummary] = None
    action: str
    details: str
    created_at: datetime

    class Config:
        from_attributes = True


# Notification schemas
class Notification(BaseModel):
    id: int
    user_id: int
    message: str
    task_id: Optional[int] = None
    read: bool
    created_at: datetime

    class Config:
        from_attributes = True


# Response envelopes: every JSON body carries `success`
class Envelope(BaseModel):
    success: bool = True
    message: Optional[str] = None


class AuthResponse(Envelope):
    user: User
    token: str


class UserResponse(Envelope):
    user: User


class UserListResponse(Envelope):
    count: int
    users: List[User]


class TaskResponse(Envelope):
    task: Task


class TaskListResponse(Envelope):
    total: int
    page: int
    pages: int
    tasks: List[Task]


class TaskCountResponse(Envelope):
    count: int
    tasks: List[Task]


class UploadResponse(Envelope):
    file: str
    file_url: str
    task: Task


class CommentAddedResponse(Envelope):
    comment: Comment
    comments: List[Comment]


class FixAttachmentsResponse(Envelope):
    changed: int


class ActivityListResponse(Envelope):
    count: int
    logs: List[ActivityLog]


class NotificationResponse(Envelope):
    notification: Notification


class NotificationListResponse(Envelope):
    count: int
    notifications: List[Notification]


class HealthResponse(BaseModel):
    ok: bool
    uptime: float
    timestamp: datetime
