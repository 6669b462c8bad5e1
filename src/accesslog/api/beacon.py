from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from accesslog.config import Settings
from accesslog.core.beacon import (
    GIF_HEADERS,
    JS_MEDIA_TYPE,
    TRANSPARENT_GIF,
    BeaconAsset,
    BeaconAssets,
    etag_matches,
    is_valid_app_id,
)
from accesslog.core.envelope import ok
from accesslog.core.errors import ValidationFailed
from accesslog.core.request_id import get_scope
from accesslog.deps.client_auth import optional_api_key
from accesslog.deps.rate_limit import enforce_rate_limit
from accesslog.deps.services import get_beacon_assets, get_settings_dep, get_tracking_service
from accesslog.models.application import ApplicationSnapshot
from accesslog.services.tracking_service import EventInput, TrackingService, pixel_custom_params

router = APIRouter(tags=["beacon"])


class BeaconGenerateIn(BaseModel):
    app_id: str | None = Field(default=None, min_length=1, max_length=64)
    endpoint: str | None = None
    debug: bool | None = None
    minify: bool = False
    custom_params: dict[str, str] = Field(default_factory=dict)


def _js_response(request: Request, asset: BeaconAsset, max_age: int) -> Response:
    headers = {"ETag": asset.etag, "Cache-Control": f"public, max-age={max_age}"}
    if etag_matches(request.headers.get("if-none-match"), asset.etag):
        return Response(status_code=304, headers=headers)
    return Response(content=asset.body, media_type=JS_MEDIA_TYPE, headers=headers)


async def _pixel(request: Request, service: TrackingService) -> Response:
    q = request.query_params
    app_id = (q.get("app_id") or "").strip()
    if not app_id:
        raise ValidationFailed("app_id is required", details={"field": "app_id"})

    data = EventInput(
        app_id=app_id,
        user_agent=request.headers.get("user-agent", ""),
        url=q.get("url") or "/",
        session_id=q.get("session_id", ""),
        visitor_id=q.get("visitor_id", ""),
        referrer=q.get("referrer") or request.headers.get("referer", ""),
        page_title=q.get("title", ""),
        custom_params=pixel_custom_params(q.multi_items()),
    )
    scope = get_scope(request)
    await service.track_pixel(data, client_ip=scope.client_ip or "")
    return Response(content=TRANSPARENT_GIF, media_type="image/gif", headers=GIF_HEADERS)


@router.get("/tracker.js")
async def tracker_js(
    request: Request,
    assets: BeaconAssets = Depends(get_beacon_assets),
    settings: Settings = Depends(get_settings_dep),
):
    return _js_response(request, assets.tracker, settings.beacon.max_age)


@router.get("/tracker.min.js")
async def tracker_min_js(
    request: Request,
    assets: BeaconAssets = Depends(get_beacon_assets),
    settings: Settings = Depends(get_settings_dep),
):
    return _js_response(request, assets.tracker_min, settings.beacon.max_age)


@router.get("/tracker/{app_id}")
async def tracker_for_app(
    app_id: str,
    request: Request,
    assets: BeaconAssets = Depends(get_beacon_assets),
    settings: Settings = Depends(get_settings_dep),
):
    app_id = app_id.removesuffix(".js")
    if not is_valid_app_id(app_id):
        raise ValidationFailed("invalid app_id", details={"app_id": app_id[:64]})
    return _js_response(request, assets.for_app(app_id), settings.beacon.max_age)


@router.get("/beacon.gif", dependencies=[Depends(enforce_rate_limit)])
async def beacon_gif(request: Request, service: TrackingService = Depends(get_tracking_service)):
    return await _pixel(request, service)


@router.get("/beacon", dependencies=[Depends(enforce_rate_limit)])
async def beacon(request: Request, service: TrackingService = Depends(get_tracking_service)):
    return await _pixel(request, service)


@router.get("/v1/beacon/generate", dependencies=[Depends(enforce_rate_limit)])
async def generate_pixel(request: Request, service: TrackingService = Depends(get_tracking_service)):
    return await _pixel(request, service)


@router.post("/v1/beacon/generate", dependencies=[Depends(enforce_rate_limit)])
async def generate_script(
    payload: BeaconGenerateIn,
    assets: BeaconAssets = Depends(get_beacon_assets),
    tenant: ApplicationSnapshot | None = Depends(optional_api_key),
):
    # an authenticated caller may omit app_id
    app_id = payload.app_id or (tenant.app_id if tenant else None)
    if not app_id:
        raise ValidationFailed("app_id is required", details={"field": "app_id"})
    asset = assets.generate(
        app_id=app_id,
        endpoint=payload.endpoint,
        debug=payload.debug,
        minify=payload.minify,
        custom_params=payload.custom_params,
    )
    return ok(
        {
            "app_id": app_id,
            "version": assets.version,
            "script": asset.body.decode("utf-8"),
            "etag": asset.etag,
            "size": len(asset.body),
            "minified": payload.minify,
        }
    )


@router.get("/v1/beacon/health")
async def beacon_health(assets: BeaconAssets = Depends(get_beacon_assets)):
    return ok(
        {
            "status": "healthy",
            "beacon": {
                "version": assets.version,
                "gif_size": len(TRANSPARENT_GIF),
                "tracker_etag": assets.tracker.etag,
            },
        }
    )
