"""
FastAPI middleware for structured logging and request tracking.

Binds a request id to structlog contextvars so every log line emitted while
handling a request (including the Slack event acknowledgment) carries it.
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from huddle.utils.logging import (
    bind_contextvars,
    clear_contextvars,
    generate_request_id,
    get_logger,
)

logger = get_logger(__name__)

QUIET_PATHS = ("/health",)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs request start and completion with timing and sets ``X-Request-ID``.

    Slack retries carry ``X-Slack-Retry-Num``; it is bound so retried
    deliveries are easy to spot.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()

        clear_contextvars()
        bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        retry_num = request.headers.get("X-Slack-Retry-Num")
        if retry_num:
            bind_contextvars(slack_retry_num=retry_num)

        start_time = time.perf_counter()
        quiet = request.url.path in QUIET_PATHS
        if quiet:
            logger.debug("request_started")
        else:
            logger.info("request_started",
                        client=request.client.host if request.client else "unknown")

        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "request_failed",
                duration_ms=round(elapsed_ms, 1),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise
        finally:
            clear_contextvars()

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id
        log = logger.debug if quiet else logger.info
        log(
            "request_completed",
            request_id=request_id,
            status_code=response.status_code,
            duration_ms=round(elapsed_ms, 1),
        )
        return response
