# leadrelay/middleware/request_id.py
from __future__ import annotations

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from leadrelay.core.logging import set_request_id


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Binds a request id to the structlog context for the request."""

    async def dispatch(self, request: Request, call_next):
        request_id = self._get_or_create_request_id(request)
        set_request_id(None)
        set_request_id(request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    def _get_or_create_request_id(self, request: Request) -> str:
        request_id = request.headers.get("X-Request-ID") or request.headers.get("X-Correlation-ID")
        if request_id:
            return request_id

        # W3C trace context: 00-<32 hex trace id>-...
        trace_id = request.headers.get("traceparent")
        if trace_id and trace_id.startswith("00-") and len(trace_id) >= 35:
            return trace_id[3:35]

        return str(uuid.uuid4())
