"""
FastAPI middleware for request/response logging.
"""

import time
from typing import Callable

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .logging_config import get_logger, set_correlation_id

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every HTTP request with timing and a correlation ID.

    The X-Correlation-ID request header is reused when present so a
    presentation layer can tie a drag gesture to the requests it caused.
    """

    EXCLUDED_PATHS = {'/health', '/favicon.ico', '/docs', '/redoc', '/openapi.json'}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = set_correlation_id(request.headers.get('X-Correlation-ID'))
        should_log = request.url.path not in self.EXCLUDED_PATHS
        method = request.method
        path = request.url.path

        if should_log:
            logger.info(
                f"→ {method} {path}",
                extra={'extra_data': {
                    'event': 'request_start',
                    'method': method,
                    'path': path,
                    'client_ip': request.client.host if request.client else 'unknown',
                }}
            )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"✗ {method} {path} failed ({duration_ms:.2f}ms): {e}",
                exc_info=True,
                extra={'extra_data': {'event': 'request_error', 'path': path, 'duration_ms': round(duration_ms, 2)}}
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        if should_log:
            log_level = 'info' if response.status_code < 400 else 'warning' if response.status_code < 500 else 'error'
            getattr(logger, log_level)(
                f"← {method} {path} {response.status_code} ({duration_ms:.2f}ms)",
                extra={'extra_data': {
                    'event': 'request_complete',
                    'status_code': response.status_code,
                    'duration_ms': round(duration_ms, 2),
                }}
            )

        response.headers['X-Correlation-ID'] = correlation_id
        response.headers['X-Response-Time'] = f"{duration_ms:.2f}ms"
        return response


def add_logging_middleware(app: FastAPI) -> None:
    """Add all logging middleware to the FastAPI app."""
    app.add_middleware(RequestLoggingMiddleware)
