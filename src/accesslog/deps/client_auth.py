import logging

from fastapi import Depends, Header, Request

from accesslog.core.errors import ApplicationInactive, AuthenticationError, InvalidApiKey, NotFound
from accesslog.core.keys import constant_time_equals, key_fingerprint, looks_like_api_key
from accesslog.core.request_id import get_scope
from accesslog.deps.services import get_application_service
from accesslog.models.application import ApplicationSnapshot
from accesslog.services.application_service import ApplicationService

logger = logging.getLogger("accesslog.auth")


async def require_api_key(
    request: Request,
    x_api_key: str | None = Header(default=None),
    applications: ApplicationService = Depends(get_application_service),
) -> ApplicationSnapshot:
    plain = (x_api_key or "").strip()
    if not plain:
        raise AuthenticationError()

    if not looks_like_api_key(plain):
        raise InvalidApiKey()

    try:
        app = await applications.get_by_api_key(plain)
    except NotFound:
        logger.info("invalid_api_key", extra={"key_fingerprint": key_fingerprint(plain)})
        raise InvalidApiKey() from None

    if not constant_time_equals(app.api_key, plain):
        raise InvalidApiKey()

    if not app.active:
        raise ApplicationInactive()

    get_scope(request).application = app
    return app


async def optional_api_key(
    request: Request,
    x_api_key: str | None = Header(default=None),
    applications: ApplicationService = Depends(get_application_service),
) -> ApplicationSnapshot | None:
    """Like require_api_key, but a missing or rejected key leaves the request anonymous."""
    try:
        return await require_api_key(request, x_api_key, applications)
    except (AuthenticationError, InvalidApiKey, ApplicationInactive) as exc:
        if x_api_key:
            logger.debug("optional_api_key_ignored", extra={"code": exc.code})
        return None
