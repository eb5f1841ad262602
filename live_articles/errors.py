# live_articles/errors.py
from typing import Optional


class LiveArticlesError(Exception):
    """Base error; carries the HTTP status the API layer answers with."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(LiveArticlesError):
    status_code = 400


class ConflictError(ValidationError):
    """A unique name or email is already taken."""

    status_code = 409


class NotFoundError(LiveArticlesError):
    status_code = 404


class AuthError(LiveArticlesError):
    status_code = 401


class AuthorizationError(LiveArticlesError):
    status_code = 403


class DependencyError(LiveArticlesError):
    """Object storage failed."""

    status_code = 502
