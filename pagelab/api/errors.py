"""Structured error taxonomy for the pagelab API.

Usage::

    from pagelab.api.errors import ErrorCode, error_response

    return JSONResponse(
        status_code=404,
        content=error_response(ErrorCode.NOT_FOUND, "Experiment not found"),
    )
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Canonical error codes for API responses.

    Clients should switch on ``error.code`` rather than the HTTP status.
    """

    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limit_exceeded"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    VALIDATION_ERROR = "validation_error"
    INTERNAL_ERROR = "internal_error"


def error_response(code: ErrorCode, message: str) -> dict:
    """Build ``{"success": false, "error": {"code", "message"}}``."""
    return {"success": False, "error": {"code": code.value, "message": message}}
