# leadrelay/routes/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import Query, Request

from leadrelay.services.dispatcher import IntegrationDispatcher
from leadrelay.services.records import RequestContext
from leadrelay.services.repository import SqlStore


def get_store(request: Request) -> SqlStore:
    return request.app.state.store


def get_dispatcher(request: Request) -> IntegrationDispatcher:
    return request.app.state.dispatcher


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def get_request_context(
    request: Request,
    source: str = Query(default="organic", max_length=100),
) -> RequestContext:
    return RequestContext(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        source=source or "organic",
        origin=request.headers.get("origin"),
    )
