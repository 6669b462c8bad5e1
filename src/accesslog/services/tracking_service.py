import logging
from dataclasses import dataclass, field
from datetime import datetime

from accesslog.core.errors import (
    AccessLogError,
    ApplicationInactive,
    Duplicate,
    Forbidden,
    NotFound,
    ValidationFailed,
)
from accesslog.core.keys import generate_id
from accesslog.core.useragent import parse_user_agent
from accesslog.models.application import ApplicationSnapshot
from accesslog.models.base import utcnow
from accesslog.models.custom_params import MAX_CUSTOM_PARAMS_BYTES, CustomParameters
from accesslog.models.tracking import TrackingEvent
from accesslog.repositories.tracking_repository import TrackingRepository
from accesslog.services.application_service import ApplicationService

logger = logging.getLogger("accesslog.tracking")

PIXEL_RESERVED_PARAMS = ("app_id", "session_id", "visitor_id", "url", "referrer", "title")

MAX_PAGE_SIZE = 1000


@dataclass
class EventInput:
    app_id: str
    user_agent: str = ""
    url: str = ""
    ip_address: str = ""
    session_id: str = ""
    visitor_id: str = ""
    referrer: str = ""
    page_title: str = ""
    language: str = ""
    timezone: str = ""
    country: str = ""
    region: str = ""
    city: str = ""
    custom_params: dict = field(default_factory=dict)


def bound_custom_params(params: dict | None) -> CustomParameters:
    wrapped = CustomParameters(dict(params or {}))
    size = wrapped.size
    if size > MAX_CUSTOM_PARAMS_BYTES:
        raise ValidationFailed(
            "custom_params too large",
            details={"size": size, "max_size": MAX_CUSTOM_PARAMS_BYTES},
        )
    return wrapped


def pixel_custom_params(query: list[tuple[str, str]]) -> dict:
    """Collect non-reserved query parameters; repeated names become lists."""
    out: dict = {}
    for name, value in query:
        if name in PIXEL_RESERVED_PARAMS:
            continue
        if name in out:
            existing = out[name]
            out[name] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            out[name] = value
    return out


class TrackingService:
    def __init__(self, repo: TrackingRepository, applications: ApplicationService):
        self.repo = repo
        self.applications = applications

    async def track(self, data: EventInput, tenant: ApplicationSnapshot, client_ip: str) -> TrackingEvent:
        """Authenticated ingestion: the body must name the authenticated tenant."""
        if not data.app_id:
            raise ValidationFailed("app_id is required", details={"field": "app_id"})
        if data.app_id != tenant.app_id:
            raise Forbidden("app_id does not match the API key")
        if not tenant.active:
            raise ApplicationInactive()
        if not data.user_agent:
            raise ValidationFailed("user_agent is required", details={"field": "user_agent"})
        return await self._persist(data, client_ip)

    async def track_pixel(self, data: EventInput, client_ip: str) -> TrackingEvent | None:
        """
        Pixel ingestion, authenticated only by a resolvable app_id.

        Never raises for an unknown or inactive application or a store
        failure: the caller always answers with the GIF.
        """
        try:
            app = await self.applications.get_by_id(data.app_id)
        except NotFound:
            logger.info("pixel_unknown_app", extra={"app_id": data.app_id})
            return None
        except AccessLogError as exc:
            logger.error("pixel_app_lookup_failed", extra={"app_id": data.app_id, "error": exc.message})
            return None
        if not app.active:
            logger.info("pixel_inactive_app", extra={"app_id": data.app_id})
            return None

        try:
            return await self._persist(data, client_ip)
        except ValidationFailed as exc:
            logger.info("pixel_rejected", extra={"app_id": data.app_id, "error": exc.message})
        except AccessLogError as exc:
            logger.error("pixel_persist_failed", extra={"app_id": data.app_id, "error": exc.message})
        return None

    async def _persist(self, data: EventInput, client_ip: str) -> TrackingEvent:
        params = bound_custom_params(data.custom_params)
        ua = parse_user_agent(data.user_agent)

        event = TrackingEvent(
            id=generate_id(),
            app_id=data.app_id,
            session_id=data.session_id or "",
            visitor_id=data.visitor_id or "",
            page_url=data.url or "",
            page_title=data.page_title or "",
            referrer=data.referrer or "",
            user_agent=data.user_agent or "",
            ip_address=data.ip_address or client_ip or "",
            country=data.country or "",
            region=data.region or "",
            city=data.city or "",
            device_type=ua.device_type,
            browser=ua.browser,
            os=ua.os,
            language=data.language or "",
            timezone=data.timezone or "",
            custom_parameters=params,
            timestamp=utcnow(),
        )

        try:
            await self.repo.create(event)
        except Duplicate:
            # id collision: one retry with a fresh id
            logger.warning("tracking_duplicate_id", extra={"app_id": data.app_id})
            event.id = generate_id()
            await self.repo.create(event)

        logger.debug("event_tracked", extra={"app_id": event.app_id, "tracking_id": event.id})
        return event

    async def get_event(self, tenant_app_id: str, event_id: str) -> TrackingEvent:
        event = await self.repo.get_by_id(event_id)
        if event.app_id != tenant_app_id:
            raise NotFound("Tracking event not found")
        return event

    async def list_events(self, app_id: str, limit: int = 100, offset: int = 0) -> list[TrackingEvent]:
        limit = min(MAX_PAGE_SIZE, max(1, limit))
        return await self.repo.get_by_app_id(app_id, limit=limit, offset=max(0, offset))

    async def list_events_in_range(
        self, app_id: str, start: datetime, end: datetime, limit: int = 100, offset: int = 0
    ) -> list[TrackingEvent]:
        if start > end:
            raise ValidationFailed("start_date must not be after end_date")
        limit = min(MAX_PAGE_SIZE, max(1, limit))
        return await self.repo.get_by_time_range(app_id, start, end, limit=limit, offset=max(0, offset))

    async def session_events(self, app_id: str, session_id: str) -> list[TrackingEvent]:
        return await self.repo.get_by_session_id(session_id, app_id=app_id)

    async def count(self, app_id: str) -> int:
        return await self.repo.count_by_app_id(app_id)

    async def purge(self, app_id: str, start: datetime | None = None, end: datetime | None = None) -> int:
        if start is None and end is None:
            deleted = await self.repo.delete_by_app_id(app_id)
        else:
            end = end or utcnow()
            if start is not None and start > end:
                raise ValidationFailed("start_date must not be after end_date")
            deleted = await self.repo.delete_by_time_range(start, end, app_id=app_id)
        logger.info("tracking_purged", extra={"app_id": app_id, "deleted": deleted})
        return deleted
