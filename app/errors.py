"""
Application error types.

Services raise these; main.py turns them into JSON error responses.
"""
from typing import Any, List, Optional


class AppError(Exception):
    """Base error carrying an HTTP status code and a client-facing message."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[List[dict]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or []

    def to_dict(self) -> dict:
        error_sources: List[Any] = self.details or [{"path": "", "message": self.message}]
        return {
            "success": False,
            "message": self.message,
            "errorSources": error_sources,
        }


class NotFoundError(AppError):
    """Referenced entity is absent or not owned by the caller."""
    status_code = 404


class InvalidInputError(AppError):
    """Malformed id, invalid category selection, bad parameter, etc."""
    status_code = 400


class ConflictError(AppError):
    status_code = 409


class UnauthorizedError(AppError):
    status_code = 401


class ForbiddenError(AppError):
    status_code = 403
