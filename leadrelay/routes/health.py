# leadrelay/routes/health.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from leadrelay.core.config import settings
from leadrelay.core.logging import get_structlog_logger
from leadrelay.db.session import health_check as database_health_check

logger = get_structlog_logger(__name__)

router = APIRouter(tags=["health"])


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    environment: str
    timestamp: str
    checks: Dict[str, Dict[str, Any]]


def _scheduler_check(request: Request) -> Dict[str, Any]:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return {"status": "disabled"}
    last_tick: Optional[datetime] = scheduler.last_tick_at
    return {
        "status": "running" if scheduler.running else "stopped",
        "last_tick_at": last_tick.isoformat() if last_tick else None,
        "interval_seconds": scheduler.interval,
    }


@router.get("/health", response_model=HealthCheckResponse)
async def health(request: Request):
    checks = {
        "database": await database_health_check(),
        "scheduler": _scheduler_check(request),
    }
    overall = "healthy" if checks["database"].get("status") == "healthy" else "unhealthy"

    body = HealthCheckResponse(
        status=overall,
        service="leadrelay",
        environment=settings.environment,
        timestamp=datetime.now(timezone.utc).isoformat(),
        checks=checks,
    )
    if overall != "healthy":
        logger.warning("health.check", status=overall, checks=checks)
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump())
    return body


@router.get("/health/live")
async def liveness_probe():
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}
