"""
Service-level exceptions.

Services raise these; the HTTP layer turns each one into a JSON error
response carrying the matching status code.
"""

from typing import Optional


class ServiceError(Exception):
    """Base class for failures reported to API clients."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class ValidationError(ServiceError):
    """Malformed input or out-of-range value."""

    status_code = 400
    default_message = "Invalid request"


class UnauthorizedError(ServiceError):
    """Missing, invalid or expired credentials."""

    status_code = 401
    default_message = "Unauthorized request!"


class ForbiddenError(ServiceError):
    """Ownership violation or duplicate rating."""

    status_code = 403
    default_message = "Unauthorized request or book not found."


class NotFoundError(ServiceError):
    status_code = 404
    default_message = "Book not found!"


class ImageProcessingError(ServiceError):
    """Uploaded image could not be decoded or written to storage."""

    status_code = 400
    default_message = "Image could not be processed"


class StoreError(ServiceError):
    """Store failure that the caller must report as a server error."""

    status_code = 500
    default_message = "Database operation failed"
