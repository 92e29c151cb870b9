"""Request logging middleware for the privacy API.

Every request gets a correlation id (taken from ``X-Correlation-ID`` or
freshly generated) that is bound for all log entries written while the
request runs, including those of erasure jobs it spawns, and echoed back
in the response.

Only the caller's account id, the route and the outcome are logged.
Request and response bodies carry privacy values and are never logged.

Usage:
    app.add_middleware(LoggingMiddleware)
"""

import time
from collections.abc import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from structlog import get_logger

from src.infrastructure.observability.correlation import (
    generate_correlation_id,
    set_correlation_id,
)

logger = get_logger()

CORRELATION_HEADER = "X-Correlation-ID"
QUIET_PATHS = frozenset({"/v1/health"})


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Binds a correlation id per request and logs the outcome."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or generate_correlation_id()
        set_correlation_id(correlation_id)
        log = logger.bind(
            method=request.method,
            path=request.url.path,
            account_id=request.headers.get("X-Account-ID"),
        )
        # Health checks only log at debug level
        emit = log.debug if request.url.path in QUIET_PATHS else log.info
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            log.exception(
                "request_failed",
                duration_ms=_elapsed_ms(started),
                error_type=type(exc).__name__,
            )
            raise

        outcome = "request_rejected" if response.status_code >= 400 else "request_completed"
        emit(
            outcome,
            status_code=response.status_code,
            duration_ms=_elapsed_ms(started),
            retry_after=response.headers.get("Retry-After"),
        )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
