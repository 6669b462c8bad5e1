from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from accesslog.core.envelope import ok
from accesslog.core.errors import Forbidden, ValidationFailed
from accesslog.core.request_id import get_scope
from accesslog.deps.client_auth import require_api_key
from accesslog.deps.rate_limit import enforce_rate_limit
from accesslog.deps.services import get_statistics_service, get_tracking_service
from accesslog.models.application import ApplicationSnapshot
from accesslog.services.statistics_service import DEFAULT_TOP_N, StatisticsService, parse_date_param
from accesslog.services.tracking_service import EventInput, TrackingService

router = APIRouter(
    prefix="/v1/tracking",
    tags=["tracking"],
    dependencies=[Depends(enforce_rate_limit)],
)


class TrackIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    app_id: str = Field(min_length=1, max_length=64)
    user_agent: str = Field(min_length=1)
    url: str = ""
    ip_address: str = ""
    session_id: str = Field(default="", max_length=255)
    visitor_id: str = Field(default="", max_length=255)
    referrer: str = ""
    page_title: str = ""
    language: str = Field(default="", max_length=64)
    timezone: str = Field(default="", max_length=64)
    country: str = Field(default="", max_length=64)
    region: str = Field(default="", max_length=128)
    city: str = Field(default="", max_length=128)
    custom_params: dict = Field(default_factory=dict)


@router.post("/track")
async def track(
    request: Request,
    payload: TrackIn,
    app: ApplicationSnapshot = Depends(require_api_key),
    service: TrackingService = Depends(get_tracking_service),
):
    scope = get_scope(request)
    event = await service.track(EventInput(**payload.model_dump()), app, client_ip=scope.client_ip or "")
    return ok(
        {
            "tracking_id": event.id,
            "app_id": event.app_id,
            "session_id": event.session_id,
            "timestamp": event.timestamp.isoformat(),
        }
    )


@router.get("/statistics")
async def statistics(
    app_id: str = Query(default=""),
    start_date: str = Query(default=""),
    end_date: str = Query(default=""),
    group_by: str = Query(default="day"),
    limit: int = Query(default=DEFAULT_TOP_N),
    app: ApplicationSnapshot = Depends(require_api_key),
    service: StatisticsService = Depends(get_statistics_service),
):
    if not app_id:
        raise ValidationFailed("app_id is required", details={"field": "app_id"})
    if app_id != app.app_id:
        raise Forbidden("app_id does not match the API key")
    start = parse_date_param(start_date, "start_date")
    end = parse_date_param(end_date, "end_date", end_of_day=True)
    stats = await service.get_statistics(app.app_id, start, end, group_by=group_by, limit=limit)
    return ok(stats)


@router.get("/statistics/custom-params/{param_name}")
async def custom_param_statistics(
    param_name: str,
    app_id: str = Query(default=""),
    start_date: str = Query(default=""),
    end_date: str = Query(default=""),
    limit: int = Query(default=DEFAULT_TOP_N),
    app: ApplicationSnapshot = Depends(require_api_key),
    service: StatisticsService = Depends(get_statistics_service),
):
    if app_id and app_id != app.app_id:
        raise Forbidden("app_id does not match the API key")
    start = parse_date_param(start_date, "start_date")
    end = parse_date_param(end_date, "end_date", end_of_day=True)
    stats = await service.get_custom_param_stats(app.app_id, param_name, start, end, limit=limit)
    return ok(stats)


@router.get("/events")
async def list_events(
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
    app: ApplicationSnapshot = Depends(require_api_key),
    service: TrackingService = Depends(get_tracking_service),
):
    if start_date or end_date:
        start = parse_date_param(start_date or "", "start_date")
        end = parse_date_param(end_date or "", "end_date", end_of_day=True)
        events = await service.list_events_in_range(app.app_id, start, end, limit=limit, offset=offset)
    else:
        events = await service.list_events(app.app_id, limit=limit, offset=offset)
    return ok({"events": [e.to_dict() for e in events], "limit": limit, "offset": offset})


@router.delete("/events")
async def purge_events(
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
    app: ApplicationSnapshot = Depends(require_api_key),
    service: TrackingService = Depends(get_tracking_service),
):
    start = parse_date_param(start_date, "start_date") if start_date else None
    end = parse_date_param(end_date, "end_date", end_of_day=True) if end_date else None
    deleted = await service.purge(app.app_id, start, end)
    return ok({"app_id": app.app_id, "deleted": deleted})


@router.get("/events/{event_id}")
async def get_event(
    event_id: str,
    app: ApplicationSnapshot = Depends(require_api_key),
    service: TrackingService = Depends(get_tracking_service),
):
    event = await service.get_event(app.app_id, event_id)
    return ok(event.to_dict())


@router.get("/sessions/{session_id}")
async def get_session(
    session_id: str,
    app: ApplicationSnapshot = Depends(require_api_key),
    service: TrackingService = Depends(get_tracking_service),
):
    events = await service.session_events(app.app_id, session_id)
    return ok({"session_id": session_id, "events": [e.to_dict() for e in events], "count": len(events)})


@router.get("/count")
async def count_events(
    app: ApplicationSnapshot = Depends(require_api_key),
    service: TrackingService = Depends(get_tracking_service),
):
    return ok({"app_id": app.app_id, "count": await service.count(app.app_id)})
