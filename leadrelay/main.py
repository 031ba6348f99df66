# leadrelay/main.py
from __future__ import annotations

import time
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from leadrelay import __version__
from leadrelay.core.config import settings
from leadrelay.core.exceptions import BaseAPIException
from leadrelay.core.logging import configure_structlog, get_structlog_logger, set_request_id
from leadrelay.db.session import dispose_engine, get_sessionmaker
from leadrelay.middleware.logging import LoggingMiddleware
from leadrelay.middleware.request_id import RequestIdMiddleware
from leadrelay.routes import evolution_router, health_router, logs_router, public_router
from leadrelay.services.delivery_logger import DeliveryLogger
from leadrelay.services.dispatcher import IntegrationDispatcher, default_channels
from leadrelay.services.locks import NullLock, RedisLock
from leadrelay.services.redis import close_redis_pool, init_redis_pool
from leadrelay.services.repository import SqlStore
from leadrelay.services.scheduler import RemarketingScheduler
from leadrelay.services.task_registry import BackgroundTaskRegistry


async def build_scheduler_lock():
    if not settings.scheduler_lock_enabled:
        return NullLock()
    return RedisLock(await init_redis_pool())


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = get_structlog_logger(__name__)
    logger.info("application.starting", environment=settings.environment)

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            integrations=[
                AsyncioIntegration(),
                FastApiIntegration(),
                StarletteIntegration(),
            ],
            traces_sample_rate=1.0 if settings.is_development else 0.1,
            send_default_pii=False,
        )
        logger.info("sentry.initialized")

    store = SqlStore(get_sessionmaker())
    delivery_logger = DeliveryLogger(store)
    registry = BackgroundTaskRegistry()
    app.state.store = store
    app.state.registry = registry
    app.state.dispatcher = IntegrationDispatcher(default_channels(store, delivery_logger), registry)
    app.state.scheduler = None

    if settings.scheduler_enabled:
        scheduler = RemarketingScheduler(store, delivery_logger, lock=await build_scheduler_lock())
        scheduler.start()
        app.state.scheduler = scheduler

    logger.info("application.started")
    yield

    logger.info("application.shutting_down")
    if app.state.scheduler is not None:
        await app.state.scheduler.stop()
    await registry.drain(timeout=30)
    if settings.scheduler_lock_enabled:
        await close_redis_pool()
    await dispose_engine()
    logger.info("application.shutdown_complete")


configure_structlog()
logger = get_structlog_logger(__name__)

app = FastAPI(
    title="LeadRelay",
    version=__version__,
    description="Lead notification and remarketing dispatch service",
    docs_url="/docs" if settings.is_development else None,
    redoc_url=None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins(),
    allow_credentials=settings.origins() != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIdMiddleware)


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    logger.warning(
        "api.exception",
        status_code=exc.status_code,
        code=exc.code,
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "loc": list(error.get("loc", [])),
            "msg": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]
    logger.warning("validation.error", path=request.url.path, method=request.method, errors=errors)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "error": "Request validation failed",
            "code": "validation_error",
            "details": {"errors": errors},
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    error_id = f"err_{int(time.time())}_{hash(str(exc)) % 10000:04d}"
    set_request_id(error_id)
    logger.error(
        "unhandled.exception",
        error_id=error_id,
        error_type=type(exc).__name__,
        error=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "Internal server error",
            "code": "internal_error",
            "details": {"error_id": error_id},
        },
        headers={"X-Error-ID": error_id},
    )


app.include_router(health_router, prefix=settings.api_prefix)
app.include_router(public_router, prefix=settings.api_prefix)
app.include_router(logs_router, prefix=settings.api_prefix)
app.include_router(evolution_router, prefix=settings.api_prefix)

if not settings.is_testing:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/")
async def root():
    return {
        "name": "LeadRelay",
        "version": app.version,
        "environment": settings.environment,
        "health": f"{settings.api_prefix}/health",
    }


logger.info("application.configured", environment=settings.environment)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("leadrelay.main:app", host=settings.api_host, port=settings.api_port)
