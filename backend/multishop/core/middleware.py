"""
HTTP plumbing shared by every route: request ids and timing, the JSON
error envelope `{error, request_id}`, and per-caller rate limiting.
"""
import time
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from jose import JWTError, jwt

from multishop.core.config import settings
from multishop.core.logging import (
    api_logger,
    generate_request_id,
    get_request_id,
    request_id_var,
    request_start_var,
)
from multishop.core.rate_limit_config import rate_limit_settings
from multishop.core.rate_limiter import RateLimitResult, check_rate_limit, get_client_ip

QUIET_PATHS = ('/health', '/healthz', '/readyz')


def _request_id_for(request: Request) -> str:
    return getattr(request.state, 'request_id', None) or get_request_id() or 'unknown'


def _error_response(request: Request, status_code: int, content: dict, headers: Optional[dict] = None) -> JSONResponse:
    request_id = _request_id_for(request)
    return JSONResponse(
        status_code=status_code,
        content={**content, 'request_id': request_id},
        headers={'X-Request-ID': request_id, **(headers or {})},
    )


def internal_error_body(exc: Exception) -> dict:
    """Generic 500 payload. The raw message is only exposed in development."""
    body = {'error': 'Internal server error'}
    if settings.APP_ENV == 'development':
        body['message'] = str(exc)
    return body


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns the request id, times the request and logs one summary line."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        request.state.request_id = request_id
        id_token = request_id_var.set(request_id)
        start_token = request_start_var.set(time.time())

        path = request.url.path
        quiet = path.endswith(QUIET_PATHS)
        try:
            try:
                response = await call_next(request)
            except Exception as e:
                api_logger.error(f"{request.method} {path} -> 500 (unhandled)", error=e)
                return _error_response(request, 500, internal_error_body(e))

            response.headers['X-Request-ID'] = request_id
            if not quiet:
                log = api_logger.info if response.status_code < 400 else api_logger.warning
                log(f"{request.method} {path} -> {response.status_code}", status=response.status_code)
            return response
        finally:
            request_id_var.reset(id_token)
            request_start_var.reset(start_token)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    api_logger.error(f"Unhandled exception in {request.method} {request.url.path}", error=exc)
    return _error_response(request, 500, internal_error_body(exc))


async def http_exception_handler(request: Request, exc) -> JSONResponse:
    status_code = getattr(exc, 'status_code', 500)
    detail = getattr(exc, 'detail', 'Unknown error')

    if status_code >= 500:
        api_logger.error(f"HTTP {status_code}: {detail}", path=request.url.path)
    elif status_code >= 400:
        api_logger.warning(f"HTTP {status_code}: {detail}", path=request.url.path)

    return _error_response(request, status_code, {'error': detail}, getattr(exc, 'headers', None))


async def validation_exception_handler(request: Request, exc) -> JSONResponse:
    """Request body/query validation failures are reported as 400 with per-field details."""
    details = [
        {
            'field': '.'.join(str(loc) for loc in error.get('loc', [])),
            'message': error.get('msg', 'Validation error'),
            'type': error.get('type', 'value_error'),
        }
        for error in exc.errors()
    ]
    api_logger.warning(f"Validation error in {request.method} {request.url.path}", errors=details)
    return _error_response(request, 400, {'error': 'Validation failed', 'details': details})


# === Rate Limiting ===

def _caller_from_token(request: Request) -> tuple[Optional[str], bool]:
    """(user id, is shop owner) from a bearer token, without touching the database."""
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None, False
    try:
        payload = jwt.decode(auth_header[7:], settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        # Route dependencies reject the token; limit by IP meanwhile
        return None, False
    return payload.get('sub'), payload.get('role') == 'owner'


def rate_limit_headers(result: RateLimitResult) -> dict:
    return {
        'X-RateLimit-Limit': str(result.limit),
        'X-RateLimit-Remaining': str(result.remaining),
        'X-RateLimit-Reset': str(result.reset_after),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window limits per route tier: by user when a token is present, else by IP."""

    SKIP_PATHS = QUIET_PATHS + ('/docs', '/redoc', '/openapi.json')

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if not rate_limit_settings.ENABLED or request.method == 'OPTIONS' or path.endswith(self.SKIP_PATHS):
            return await call_next(request)

        user_id, is_owner = _caller_from_token(request)
        if user_id:
            identifier, identifier_type = str(user_id), 'user'
        else:
            identifier, identifier_type = get_client_ip(request), 'ip'

        result = await check_rate_limit(identifier, identifier_type, path, is_owner=is_owner)
        if not result.allowed:
            api_logger.warning(f"Rate limit exceeded for {identifier_type}:{identifier}", path=path, limit=result.limit)
            return _error_response(
                request,
                429,
                {'error': 'Too many requests. Please slow down.', 'retry_after': result.retry_after},
                {'Retry-After': str(result.retry_after), **rate_limit_headers(result)},
            )

        response = await call_next(request)
        response.headers.update(rate_limit_headers(result))
        return response
