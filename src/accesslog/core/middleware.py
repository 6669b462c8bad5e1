import asyncio
import logging
import re
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from accesslog.config import CorsSection, TimeoutSection
from accesslog.core.clientip import get_client_ip
from accesslog.core.envelope import error_response
from accesslog.core.errors import InternalError, RequestTimeout
from accesslog.core.request_id import get_scope

logger = logging.getLogger("accesslog.http")

TRACKING_PREFIXES = ("/v1/tracking/track", "/v1/beacon", "/beacon", "/tracker")
LONG_RUNNING_PREFIXES = ("/v1/tracking/statistics",)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One request_completed line per request; never logs headers or bodies."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            latency_ms = int((time.perf_counter() - start) * 1000)
            scope = get_scope(request)
            if status_code >= 500:
                level = logging.ERROR
            elif status_code >= 400:
                level = logging.WARNING
            else:
                level = logging.INFO
            logger.log(
                level,
                "request_completed",
                extra={
                    "request_id": scope.request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "latency_ms": latency_ms,
                    "client_ip": scope.client_ip or get_client_ip(request),
                    "app_id": scope.app_id,
                },
            )


class ErrorRecoveryMiddleware(BaseHTTPMiddleware):
    """Turns anything unhandled into a 500 envelope; the traceback stays in the log."""

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except Exception:
            scope = get_scope(request)
            logger.exception(
                "unhandled_error",
                extra={"request_id": scope.request_id, "path": request.url.path},
            )
            return error_response(InternalError())


def timeout_for_path(path: str, timeouts: TimeoutSection) -> float:
    if path.startswith(LONG_RUNNING_PREFIXES):
        return timeouts.long_running
    if path.startswith(TRACKING_PREFIXES):
        return timeouts.tracking
    return timeouts.default


class TimeoutMiddleware(BaseHTTPMiddleware):
    """
    Per-request deadline.

    When it elapses the client gets a 408 right away; work already handed
    to the store may still finish but its result is dropped.
    """

    def __init__(self, app, timeouts: TimeoutSection):
        super().__init__(app)
        self.timeouts = timeouts

    async def dispatch(self, request: Request, call_next) -> Response:
        seconds = timeout_for_path(request.url.path, self.timeouts)
        scope = get_scope(request)
        try:
            return await asyncio.wait_for(call_next(request), timeout=seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "request_timeout",
                extra={"request_id": scope.request_id, "path": request.url.path, "timeout": seconds},
            )
            return error_response(RequestTimeout(f"Request exceeded {seconds:g}s"))


def parent_domain_regex(parent_domain: str | None) -> str | None:
    """Origin regex accepting the parent domain and any of its subdomains."""
    if not parent_domain:
        return None
    domain = parent_domain.strip().lstrip(".").lower()
    if not domain:
        return None
    return r"https?://([A-Za-z0-9-]+\.)*" + re.escape(domain) + r"(:\d+)?"


def cors_options(cors: CorsSection) -> dict:
    return {
        "allow_origins": cors.allowed_origins,
        "allow_origin_regex": parent_domain_regex(cors.parent_domain),
        "allow_methods": cors.allowed_methods,
        "allow_headers": cors.allowed_headers,
        "allow_credentials": cors.allow_credentials,
        "max_age": cors.max_age,
        "expose_headers": [
            "ETag",
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    }
