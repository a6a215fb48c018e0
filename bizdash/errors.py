"""Error taxonomy shared by every router.

Each error carries the HTTP status it maps to and a stable ``error`` string
that is safe to show to clients. The exception handlers in ``main`` turn
them into the ``{"success": false, "error": ..., "details": [...]}``
envelope.
"""

from typing import Any, List, Optional


class ApiError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, error: Optional[str] = None, details: Optional[List[Any]] = None):
        self.error = error or self.default_message
        self.details = details
        super().__init__(self.error)


class ValidationError(ApiError):
    status_code = 400
    default_message = "Validation failed"


class AuthError(ApiError):
    status_code = 401
    default_message = "Authentication required"


class AccountLockedError(AuthError):
    status_code = 423
    default_message = (
        "Account is temporarily locked due to too many failed login attempts"
    )


class ForbiddenError(ApiError):
    status_code = 403
    default_message = "Insufficient permissions"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"


class PartialFailure(ApiError):
    """Batch operation where some rows were persisted and some were not."""

    status_code = 207
    default_message = "Partial failure"

    def __init__(self, data: dict, error: Optional[str] = None):
        super().__init__(error)
        self.data = data


class UpstreamError(ApiError):
    """The chat-completion provider failed or is not configured."""

    def __init__(self, error: Optional[str] = None, status_code: int = 500):
        super().__init__(error or "AI service error")
        self.status_code = status_code


class UnexpectedError(ApiError):
    status_code = 500
