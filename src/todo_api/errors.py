"""
Domain errors raised by the todo service.

Each error carries a stable ``code`` used as the ``error`` field of API
responses and a message that is safe to show to end users. Messages never
mention who owns a record.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class TodoError(Exception):
    """Base class for all todo service errors."""

    code = "TodoError"
    status_code = 400
    headers: Optional[Dict[str, str]] = None

    def __init__(self, message: str, detail: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        """Convert the error into the JSON body returned by the API."""
        return {"error": self.code, "message": self.message, "detail": self.detail}


class TodoBadRequestError(TodoError):
    """Raised for malformed query parameters."""

    code = "BadRequest"
    status_code = 400


class TodoAuthenticationError(TodoError):
    """Raised when a request carries no valid credentials."""

    code = "NotAuthenticated"
    status_code = 401
    headers = {"WWW-Authenticate": "Basic"}


class TodoValidationError(TodoError):
    """Raised when input fails validation, e.g. an empty title."""

    code = "ValidationError"
    status_code = 422


class TodoNotFoundError(TodoError):
    """Raised when no todo exists with the requested id."""

    code = "NotFound"
    status_code = 404

    def __init__(self, todo_id: int) -> None:
        super().__init__("Todo not found")
        self.todo_id = todo_id


class TodoForbiddenError(TodoError):
    """Raised when a user tries to touch a todo that belongs to someone else."""

    code = "Forbidden"
    status_code = 403

    def __init__(self, todo_id: int) -> None:
        super().__init__("You can only access your own todos")
        self.todo_id = todo_id
