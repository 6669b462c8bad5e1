from fastapi import Depends, Request

from accesslog.config import Settings
from accesslog.core.beacon import is_valid_app_id
from accesslog.core.cache import CacheClient
from accesslog.core.clientip import get_client_ip
from accesslog.core.errors import RateLimitExceeded
from accesslog.core.rate_limit import ANONYMOUS, RateLimiter
from accesslog.core.request_id import get_scope
from accesslog.deps.services import get_application_service, get_cache, get_settings_dep
from accesslog.services.application_service import ApplicationService


async def _tenant_hint(request: Request, applications: ApplicationService) -> str:
    # runs before authentication: cached key lookups only, never the store
    api_key = (request.headers.get("x-api-key") or "").strip()
    if api_key:
        cached = await applications.get_cached_by_api_key(api_key)
        return cached.app_id if cached else ANONYMOUS

    app_id = request.query_params.get("app_id", "")
    if app_id and is_valid_app_id(app_id):
        return app_id
    return ANONYMOUS


async def enforce_rate_limit(
    request: Request,
    cache: CacheClient = Depends(get_cache),
    applications: ApplicationService = Depends(get_application_service),
    settings: Settings = Depends(get_settings_dep),
) -> None:
    scope = get_scope(request)
    scope.client_ip = get_client_ip(request)
    if not settings.rate_limit.enabled:
        return

    tenant = await _tenant_hint(request, applications)
    result = await RateLimiter(cache, settings.rate_limit).check(tenant, scope.client_ip)

    headers = result.headers()
    scope.response_headers.update(headers)
    if not result.allowed:
        raise RateLimitExceeded(
            f"Rate limit exceeded: {result.limit} requests per {result.window}",
            headers=headers,
        )
