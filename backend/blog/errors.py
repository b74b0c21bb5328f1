"""Domain errors raised by services.

Each error carries the HTTP status the API layer should answer with;
`main.py` turns them into JSON responses so services never import
FastAPI.
"""

from typing import Dict, Optional


class BlogError(Exception):
    status_code = 500

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors

    def to_dict(self) -> dict:
        body = {"detail": self.message, "status": self.status_code}
        if self.errors:
            body["errors"] = self.errors
        return body


class BadRequestError(BlogError):
    status_code = 400


class UnauthorizedError(BlogError):
    status_code = 401


class ForbiddenError(BlogError):
    status_code = 403


class NotFoundError(BlogError):
    status_code = 404


class ConflictError(BlogError):
    status_code = 409


class PayloadTooLargeError(BlogError):
    status_code = 413


class UnsupportedMediaError(BlogError):
    status_code = 415


class FieldValidationError(BadRequestError):
    """Input error tied to specific request fields, e.g. a taken title."""

    def __init__(self, errors: Dict[str, str]):
        super().__init__("invalid input", errors)

    @classmethod
    def single(cls, field: str, message: str) -> "FieldValidationError":
        return cls({field: message})
