import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from accesslog.api.applications import router as applications_router
from accesslog.api.beacon import router as beacon_router
from accesslog.api.health import router as health_router
from accesslog.api.tracking import router as tracking_router
from accesslog.config import Settings, get_settings
from accesslog.core.beacon import BeaconAssets
from accesslog.core.envelope import error_response
from accesslog.core.errors import AccessLogError, NotFound, RateLimitExceeded, ValidationFailed
from accesslog.core.middleware import (
    ErrorRecoveryMiddleware,
    RequestLoggingMiddleware,
    TimeoutMiddleware,
    cors_options,
)
from accesslog.core.request_id import RequestIdMiddleware, get_scope
from accesslog.deps.db import close_db, init_db
from accesslog.deps.redis import close_redis, init_redis

logger = logging.getLogger("accesslog")

VERSION = "0.1.0"


async def handle_access_log_error(request: Request, exc: AccessLogError):
    headers = exc.headers if isinstance(exc, RateLimitExceeded) else None
    if exc.status_code >= 500:
        logger.error(
            "request_failed",
            extra={"request_id": get_scope(request).request_id, "code": exc.code, "error": exc.message},
        )
    return error_response(exc, headers=headers)


async def handle_validation_error(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return error_response(ValidationFailed("Invalid request", details=details))


async def handle_http_error(request: Request, exc: StarletteHTTPException):
    # unknown routes and unknown method+path pairs are both reported as 404
    if exc.status_code in (404, 405):
        return error_response(NotFound("Route not found"))
    err = AccessLogError(str(exc.detail))
    err.status_code = exc.status_code
    err.code = "HTTP_ERROR"
    return error_response(err)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(settings.database)
        init_redis(settings.redis)
        logger.info("startup", extra={"env": settings.app.env, "port": settings.app.port})
        yield
        await close_redis()
        await close_db()
        logger.info("shutdown")

    app = FastAPI(
        title="AccessLog Tracker",
        version=VERSION,
        debug=settings.app.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.app.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.app.debug else None,
    )
    app.state.settings = settings
    app.state.beacon_assets = BeaconAssets(
        endpoint=settings.beacon.endpoint,
        version=settings.beacon.version,
        debug=settings.app.debug,
    )

    app.add_exception_handler(AccessLogError, handle_access_log_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)

    # add_middleware wraps, so the last one added runs first:
    # request id -> request logging -> error recovery -> CORS -> timeout
    app.add_middleware(TimeoutMiddleware, timeouts=settings.timeouts)
    app.add_middleware(CORSMiddleware, **cors_options(settings.cors))
    app.add_middleware(ErrorRecoveryMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(health_router)
    app.include_router(applications_router)
    app.include_router(tracking_router)
    app.include_router(beacon_router)

    return app
