# leadrelay/middleware/logging.py
from __future__ import annotations

import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from leadrelay.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

_QUIET_PATHS = ("/api/health", "/api/health/live", "/metrics")


class LoggingMiddleware(BaseHTTPMiddleware):
    """Access log: one line per request, warnings for 4xx/5xx."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request.exception",
                method=request.method,
                path=request.url.path,
                response_time_ms=(time.perf_counter() - start_time) * 1000,
                exception_type=type(e).__name__,
                exception_message=str(e),
            )
            raise

        response_time = time.perf_counter() - start_time
        response.headers["X-Response-Time"] = f"{response_time:.3f}"

        if request.url.path in _QUIET_PATHS:
            return response

        log_data = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "response_time_ms": round(response_time * 1000, 2),
            "client_ip": request.client.host if request.client else None,
        }
        if response.status_code >= 500:
            logger.warning("response.sent", error_type="server_error", **log_data)
        elif response.status_code >= 400:
            logger.warning("response.sent", error_type="client_error", **log_data)
        else:
            logger.info("response.sent", **log_data)
        return response
