
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from accesslog.core.envelope import ok
from accesslog.deps.services import get_application_service
from accesslog.models.application import ApplicationSnapshot
from accesslog.services.application_service import DEFAULT_PAGE_SIZE, ApplicationService

router = APIRouter(prefix="/v1/applications", tags=["applications"])


class ApplicationCreateIn(BaseModel):
    name: str = Field(max_length=255)
    domain: str = Field(max_length=253)
    description: str | None = None


class ApplicationUpdateIn(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    domain: str | None = Field(default=None, max_length=253)
    description: str | None = None
    active: bool | None = None


class ApplicationOut(BaseModel):
    app_id: str
    name: str
    description: str
    domain: str
    api_key: str
    active: bool
    created_at: str
    updated_at: str


def to_out(app: ApplicationSnapshot) -> ApplicationOut:
    return ApplicationOut(
        app_id=app.app_id,
        name=app.name,
        description=app.description,
        domain=app.domain,
        api_key=app.api_key,
        active=app.active,
        created_at=app.created_at.isoformat(),
        updated_at=app.updated_at.isoformat(),
    )


@router.post("")
async def create_application(
    payload: ApplicationCreateIn,
    service: ApplicationService = Depends(get_application_service),
):
    app = await service.create(payload.name, payload.domain, payload.description)
    return ok(to_out(app), status_code=201)


@router.get("")
async def list_applications(
    page: int = Query(default=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE),
    service: ApplicationService = Depends(get_application_service),
):
    result = await service.list(page=page, limit=limit)
    return ok(
        {
            "applications": [to_out(a) for a in result.applications],
            "pagination": {
                "page": result.page,
                "limit": result.limit,
                "total": result.total,
                "total_pages": result.total_pages,
            },
        }
    )


@router.get("/{app_id}")
async def get_application(app_id: str, service: ApplicationService = Depends(get_application_service)):
    return ok(to_out(await service.get_by_id(app_id)))


@router.put("/{app_id}")
async def update_application(
    app_id: str,
    payload: ApplicationUpdateIn,
    service: ApplicationService = Depends(get_application_service),
):
    app = await service.update(app_id, payload.model_dump(exclude_unset=True))
    return ok(to_out(app))


@router.delete("/{app_id}")
async def delete_application(app_id: str, service: ApplicationService = Depends(get_application_service)):
    await service.delete(app_id)
    return ok({"app_id": app_id, "deleted": True})


@router.post("/{app_id}/api-key/regenerate")
async def regenerate_api_key(app_id: str, service: ApplicationService = Depends(get_application_service)):
    new_key = await service.regenerate_api_key(app_id)
    return ok({"app_id": app_id, "new_api_key": new_key})
