"""
Structured Logging

Thin wrapper over stdlib logging that stamps every line with the current
request id and elapsed time. Lines are JSON in production and compact text
everywhere else.
"""
import json
import logging
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Optional

from multishop.core.config import settings

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
request_start_var: ContextVar[Optional[float]] = ContextVar('request_start', default=None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


class StructuredLogger:
    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)
        self._is_json = settings.APP_ENV == 'production'

    def _record(self, level: str, message: str, error: Optional[BaseException], fields: dict) -> dict[str, Any]:
        record: dict[str, Any] = {
            'ts': time.strftime('%Y-%m-%dT%H:%M:%S%z'),
            'level': level,
            'logger': self.name,
            'msg': message,
        }
        request_id = request_id_var.get()
        if request_id:
            record['request_id'] = request_id
        started = request_start_var.get()
        if started:
            record['elapsed_ms'] = round((time.time() - started) * 1000, 2)
        if fields:
            record.update(fields)
        if error is not None:
            record['error'] = f"{type(error).__name__}: {error}"
        return record

    def _render(self, record: dict[str, Any]) -> str:
        if self._is_json:
            return json.dumps(record, default=str)
        head = f"[{record.get('request_id', '-')}] {record['msg']}"
        rest = ' '.join(
            f"{key}={value}" for key, value in record.items()
            if key not in ('ts', 'level', 'logger', 'msg', 'request_id')
        )
        return f"{head} | {rest}" if rest else head

    def _log(self, level: int, message: str, error: Optional[BaseException] = None, **fields):
        if not self.logger.isEnabledFor(level):
            return
        record = self._record(logging.getLevelName(level), message, error, fields)
        self.logger.log(level, self._render(record), exc_info=error)

    def debug(self, message: str, **fields):
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields):
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields):
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, error: Optional[BaseException] = None, **fields):
        """Error line; `error` attaches the exception and its traceback."""
        self._log(logging.ERROR, message, error, **fields)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)


api_logger = get_logger('multishop.api')
auth_logger = get_logger('multishop.auth')
catalog_logger = get_logger('multishop.catalog')
orders_logger = get_logger('multishop.orders')
customers_logger = get_logger('multishop.customers')
dashboard_logger = get_logger('multishop.dashboard')
db_logger = get_logger('multishop.database')


def log_operation(operation: str, logger: Optional[StructuredLogger] = None):
    """
    Time an async service call.

        @log_operation("place_order", orders_logger)
        async def place_order(...): ...

    Success is logged at INFO with the duration; a raised exception is logged
    at WARNING with its type and message, then re-raised unchanged.
    """
    log = logger or api_logger

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                log.warning(
                    f"{operation} failed",
                    error_type=type(e).__name__,
                    reason=str(e),
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )
                raise
            log.info(f"{operation} completed", duration_ms=round((time.perf_counter() - start) * 1000, 2))
            return result

        return wrapper

    return decorator
