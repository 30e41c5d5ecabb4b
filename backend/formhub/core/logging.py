"""
Structured logging for formhub.

Every record carries the current request id. Production writes one JSON
object per line; other environments get a compact text line.
"""
import json
import logging
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Dict, Optional

from formhub.core.config import settings

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def generate_request_id() -> str:
    return uuid.uuid4().hex[:8]


class StructuredLogger:
    """Thin wrapper over a stdlib logger that renders keyword context."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def _render(self, level: str, message: str, context: Dict[str, Any], error: Optional[BaseException]) -> str:
        request_id = get_request_id()

        if settings.APP_ENV == 'production':
            record = {
                'ts': time.strftime('%Y-%m-%dT%H:%M:%S%z'),
                'level': level,
                'logger': self.name,
                'request_id': request_id,
                'message': message,
            }
            if context:
                record['context'] = context
            if error is not None:
                record['error'] = {'type': type(error).__name__, 'message': str(error)}
            return json.dumps(record, default=str)

        line = f"[{request_id or '-'}] {message}"
        if context:
            line += ' | ' + ' '.join(f"{k}={v}" for k, v in context.items())
        if error is not None:
            line += f" | {type(error).__name__}: {error}"
        return line

    def _log(self, level: int, message: str, error: Optional[BaseException] = None, exc_info: bool = False, **context):
        if not self.logger.isEnabledFor(level):
            return
        text = self._render(logging.getLevelName(level), message, context, error)
        self.logger.log(level, text, exc_info=exc_info)

    def debug(self, message: str, **context):
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context):
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context):
        self._log(logging.WARNING, message, **context)

    def error(self, message: str, error: Optional[BaseException] = None, **context):
        self._log(logging.ERROR, message, error=error, **context)

    def exception(self, message: str, error: Optional[BaseException] = None, **context):
        """Like error(), plus the active traceback."""
        self._log(logging.ERROR, message, error=error, exc_info=True, **context)


api_logger = StructuredLogger('formhub.api')
auth_logger = StructuredLogger('formhub.auth')
submissions_logger = StructuredLogger('formhub.submissions')
db_logger = StructuredLogger('formhub.database')


def log_operation(operation: str, logger: StructuredLogger):
    """Log how long a coroutine took and whether it raised."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.warning(
                    f"{operation} failed",
                    error_type=type(e).__name__,
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )
                raise
            logger.debug(f"{operation} completed", duration_ms=round((time.perf_counter() - start) * 1000, 2))
            return result
        return wrapper
    return decorator
