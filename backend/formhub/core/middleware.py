"""
Request middleware.
Provides request_id injection, timing, admin CORS and global error handling.
"""
import time
from typing import Callable

from fastapi import Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import Receive, Scope, Send

from formhub.core.errors import error, error_code_for
from formhub.core.logging import (
    get_request_id,
    generate_request_id,
    request_id_var,
    api_logger,
)

QUIET_PATHS = ('/healthz', '/readyz')


def _request_id(request: Request) -> str:
    return getattr(request.state, 'request_id', None) or get_request_id() or 'unknown'


def _error_response(request: Request, status_code: int, body: dict, headers: dict = None) -> JSONResponse:
    request_id = _request_id(request)
    body['request_id'] = request_id
    out_headers = dict(headers or {})
    out_headers['X-Request-ID'] = request_id
    return JSONResponse(status_code=status_code, content=body, headers=out_headers)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that:
    1. Generates/propagates request_id for tracing
    2. Tracks request timing (X-Response-Time)
    3. Logs request/response summary
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        start = time.time()

        request_id_var.set(request_id)
        request.state.request_id = request_id

        path = request.url.path
        quiet = path in QUIET_PATHS
        if not quiet:
            api_logger.debug(
                f"{request.method} {path}",
                client=request.client.host if request.client else 'unknown',
            )

        try:
            response = await call_next(request)

            duration = round((time.time() - start) * 1000, 2)
            response.headers['X-Request-ID'] = request_id
            response.headers['X-Response-Time'] = str(duration)

            if not quiet:
                log_level = 'info' if response.status_code < 400 else 'warning'
                getattr(api_logger, log_level)(
                    f"{request.method} {path} -> {response.status_code}",
                    duration_ms=duration,
                    status=response.status_code,
                )

            return response

        except Exception as e:
            duration = round((time.time() - start) * 1000, 2)
            api_logger.exception(
                f"{request.method} {path} -> 500 (unhandled)",
                error=e,
                duration_ms=duration,
            )
            return _error_response(
                request,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                error('Internal server error', 'internal_error'),
            )
        finally:
            request_id_var.set(None)


class AdminCORSMiddleware(CORSMiddleware):
    """
    Static CORS for the admin dashboard.

    Public routes under /api/ answer CORS themselves from each form's
    allowed-origin list, so they bypass this middleware entirely.
    """

    public_prefix = '/api/'

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope['type'] == 'http' and scope.get('path', '').startswith(self.public_prefix):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unhandled exceptions never leak their message to the client."""
    api_logger.error(
        f"Unhandled exception in {request.method} {request.url.path}",
        error=exc,
        path=str(request.url.path),
    )
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        error('Internal server error', 'internal_error'),
    )


async def http_exception_handler(request: Request, exc) -> JSONResponse:
    """Wrap HTTPException (and ApiError) in the error envelope."""
    status_code = getattr(exc, 'status_code', 500)
    detail = getattr(exc, 'detail', 'Unknown error')
    code = getattr(exc, 'code', None) or error_code_for(status_code)
    details = getattr(exc, 'details', None)

    if status_code >= 500:
        api_logger.error(f"HTTP {status_code}: {detail}", path=str(request.url.path), status=status_code)
    elif status_code >= 400:
        api_logger.warning(f"HTTP {status_code}: {detail}", path=str(request.url.path), status=status_code)

    message = detail if isinstance(detail, str) else 'Request failed'
    return _error_response(
        request,
        status_code,
        error(message, code, details),
        headers=getattr(exc, 'headers', None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request-body validation failures are client errors: 400 with field-level detail."""
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get('loc', []) if part not in ('body', 'query', 'path')]
        errors.append({
            'field': '.'.join(loc),
            'message': err.get('msg', 'Validation error'),
            'type': err.get('type', 'value_error'),
        })

    api_logger.warning(f"Validation error in {request.method} {request.url.path}", errors=errors)

    return _error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        error('Validation failed', 'validation_error', errors),
    )
