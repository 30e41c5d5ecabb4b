"""
API error types and the JSON response envelope.

Every response body is either
    {"status": "success", "data": ...}
or
    {"status": "error", "error": {"code": ..., "message": ..., "details": [...]}}
"""
from typing import Any, List, Optional

from fastapi import HTTPException, status


DEFAULT_ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "validation_error",
    429: "too_many_requests",
    500: "internal_error",
    503: "unavailable",
}


def error_code_for(status_code: int) -> str:
    return DEFAULT_ERROR_CODES.get(status_code, "error")


class ApiError(HTTPException):
    """HTTPException carrying a machine-readable code and optional details."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        code: Optional[str] = None,
        details: Optional[List[dict]] = None,
        headers: Optional[dict] = None,
    ):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code = code or error_code_for(status_code)
        self.details = details


class NotFound(ApiError):
    def __init__(self, what: str = "Resource"):
        super().__init__(f"{what} not found", status.HTTP_404_NOT_FOUND, "not_found")


class Unauthorized(ApiError):
    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(
            message,
            status.HTTP_401_UNAUTHORIZED,
            "unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


class Conflict(ApiError):
    def __init__(self, message: str):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, "conflict")


def success(data: Any = None) -> dict:
    return {"status": "success", "data": data if data is not None else {}}


def error(message: str, code: Optional[str] = None, details: Optional[List[dict]] = None) -> dict:
    body = {"code": code, "message": message}
    if details:
        body["details"] = details
    return {"status": "error", "error": body}
