"""
Application error taxonomy.

Every error rendered to a client carries a stable ``error`` code and a human
``message``. Internal detail stays in the server logs.
"""
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


class AppError(HTTPException):
    error_code = "ERROR"
    status_code_default = status.HTTP_400_BAD_REQUEST
    default_detail = "An error occurred"

    def __init__(
        self,
        detail: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(
            status_code=self.status_code_default,
            detail=detail or self.default_detail,
            headers=headers,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "message": self.detail}


class ValidationError(AppError):
    error_code = "VALIDATION_ERROR"
    default_detail = "Validation failed"

    def __init__(self, detail: Optional[str] = None, field: Optional[str] = None):
        super().__init__(detail)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.field:
            body["details"] = [{"field": self.field, "message": self.detail}]
        return body


class AuthError(AppError):
    error_code = "AUTH_ERROR"
    status_code_default = status.HTTP_401_UNAUTHORIZED
    default_detail = "Could not validate credentials"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class AuthorizationError(AppError):
    error_code = "AUTHORIZATION_ERROR"
    status_code_default = status.HTTP_403_FORBIDDEN
    default_detail = "Not enough permissions"


class NotFoundError(AuthorizationError):
    """Used in place of a 403 where confirming existence would leak ownership."""

    error_code = "NOT_FOUND"
    status_code_default = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found"


class ConflictError(AppError):
    error_code = "CONFLICT"
    default_detail = "Resource already exists"


class StorageError(AppError):
    error_code = "STORAGE_ERROR"
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "An internal server error occurred"


class RateLimitError(AppError):
    error_code = "RATE_LIMITED"
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Too many attempts. Please try again later."

    def __init__(self, retry_after: int, detail: Optional[str] = None):
        super().__init__(detail, headers={"Retry-After": str(retry_after)})
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["retryAfter"] = self.retry_after
        return body


_STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: "VALIDATION_ERROR",
    status.HTTP_401_UNAUTHORIZED: "AUTH_ERROR",
    status.HTTP_403_FORBIDDEN: "AUTHORIZATION_ERROR",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    status.HTTP_429_TOO_MANY_REQUESTS: "RATE_LIMITED",
}


def error_code_for_status(status_code: int) -> str:
    """Map a bare HTTP status (e.g. from Starlette routing) to an error code."""
    if status_code >= 500:
        return "INTERNAL_ERROR"
    return _STATUS_CODES.get(status_code, "ERROR")


def validation_details(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Flatten pydantic errors into ``{field, message}`` pairs without echoing input."""
    details = []
    for error in errors:
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        details.append({
            "field": ".".join(location) or "body",
            "message": error.get("msg", "Invalid value"),
        })
    return details
