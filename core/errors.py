"""
core/errors.py -- Stable error taxonomy shared by the service layer and the API.

Services raise ServiceError with one of the ErrorCode values below. The API
layer maps the code to an HTTP status via STATUS_BY_CODE and returns only the
code and a generic message -- the underlying cause (SQL error text, provider
responses, jose messages) stays in the server log via the exception chain.

Usage:
    raise ServiceError(ErrorCode.NOT_FOUND, "post not found")
    raise ServiceError(ErrorCode.INTERNAL, "query user failed") from exc
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_CURRENT_PASSWORD = "invalid_current_password"
    SAME_PASSWORD = "same_password"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"
    CONVERSION_FAILED = "conversion_failed"


STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.SAME_PASSWORD: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.INVALID_CURRENT_PASSWORD: 401,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.INTERNAL: 500,
    ErrorCode.CONVERSION_FAILED: 500,
}

# Client-facing messages. Internal codes get a generic message so nothing about
# the failing component leaks into the response body.
PUBLIC_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION: "Request validation failed.",
    ErrorCode.UNAUTHORIZED: "Authentication required.",
    ErrorCode.INVALID_CREDENTIALS: "Invalid username or password.",
    ErrorCode.INVALID_CURRENT_PASSWORD: "Current password is incorrect.",
    ErrorCode.SAME_PASSWORD: "New password must differ from the current password.",
    ErrorCode.NOT_FOUND: "Resource not found.",
    ErrorCode.CONFLICT: "Resource conflict.",
    ErrorCode.INTERNAL: "An unexpected error occurred.",
    ErrorCode.CONVERSION_FAILED: "An unexpected error occurred.",
}


class ServiceError(Exception):
    """A business-logic failure tagged with a stable ErrorCode.

    message is for logs and, for client-attributable codes, may be shown to
    the caller. Chain the low-level cause with `raise ... from exc`.
    """

    def __init__(self, code: ErrorCode, message: str = "") -> None:
        super().__init__(message or code.value)
        self.code = code
        self.message = message

    @property
    def status_code(self) -> int:
        return STATUS_BY_CODE[self.code]

    def __repr__(self) -> str:
        return f"ServiceError({self.code.value!r}, {self.message!r})"
