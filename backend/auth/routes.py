"""
User and authentication API endpoints.

This module provides REST API endpoints for:
- User registration
- Login
- Current user lookup
- Listing users (admin only)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

import schemas
from config import settings
from database import get_db
from models import User, UserRole
from rate_limit import RateLimiter
from repository import Repository
from auth.security import hash_password, verify_password, create_access_token
from auth.dependencies import get_current_user, get_current_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

auth_limiter = RateLimiter(settings.auth_rate_limit, settings.auth_rate_window_seconds, name="auth")


def issue_token(user: User) -> str:
    return create_access_token({"sub": str(user.id), "role": user.role, "email": user.email})


@router.post(
    "/register",
    response_model=schemas.AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_limiter)],
)
def register(request: schemas.RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new user account.

    Returns:
        Created user and an access token

    Raises:
        HTTPException: 400 if email already registered
    """
    logger.info(f"Registration attempt for email: {request.email}")
    repo = Repository(db)

    if repo.find_one(User, User.email == request.email):
        logger.info(f"Registration failed: email already exists: {request.email}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")

    user = repo.create(
        User(
            name=request.name,
            email=request.email,
            password_hash=hash_password(request.password),
            role=UserRole.user.value,
        )
    )

    logger.info(f"User registered successfully: {user.email} (ID: {user.id})")
    return {"success": True, "user": user, "token": issue_token(user)}


@router.post("/login", response_model=schemas.AuthResponse, dependencies=[Depends(auth_limiter)])
def login(request: schemas.LoginRequest, db: Session = Depends(get_db)):
    """
    Login with email and password.

    Raises:
        HTTPException: 401 if credentials invalid
    """
    logger.info(f"Login attempt for email: {request.email}")

    user = Repository(db).find_one(User, User.email == request.email)
    if not user or not verify_password(request.password, user.password_hash):
        logger.info(f"Login failed for email: {request.email}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    logger.info(f"User logged in successfully: {user.email} (ID: {user.id})")
    return {"success": True, "user": user, "token": issue_token(user)}


@router.get("/me", response_model=schemas.UserResponse)
def get_me(current_user: User = Depends(get_current_user)):
    """Get current authenticated user information."""
    logger.debug(f"Fetching user info for: {current_user.email}")
    return {"success": True, "user": current_user}


@router.get("", response_model=schemas.UserListResponse)
def list_users(admin: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    """List all users (admin only)."""
    logger.debug(f"Admin {admin.id} listing all users")
    users = Repository(db).find_many(User, order_by=(User.id,))
    return {"success": True, "count": len(users), "users": users}
