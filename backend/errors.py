"""
Domain error taxonomy.

Services raise these instead of HTTPException so they stay usable outside a
request; the handlers registered in main.py translate them into the JSON
envelope with the matching status code.
"""

from typing import Any, List, Optional


class TaskSphereError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TaskSphereError):
    """Malformed input rejected before reaching the store."""

    status_code = 400

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.errors = errors or []


class NotFoundError(TaskSphereError):
    status_code = 404


class AuthorizationError(TaskSphereError):
    status_code = 403


class PersistenceError(TaskSphereError):
    """The store was unavailable or rejected a write."""

    status_code = 500
