from fastapi import Depends, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from accesslog.config import Settings
from accesslog.core.beacon import BeaconAssets
from accesslog.core.cache import CacheClient
from accesslog.deps.db import get_db
from accesslog.deps.redis import get_redis
from accesslog.repositories.application_repository import ApplicationRepository
from accesslog.repositories.tracking_repository import TrackingRepository
from accesslog.services.application_service import ApplicationService
from accesslog.services.statistics_service import StatisticsService
from accesslog.services.tracking_service import TrackingService


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_beacon_assets(request: Request) -> BeaconAssets:
    return request.app.state.beacon_assets


async def get_cache(r: Redis = Depends(get_redis)) -> CacheClient:
    return CacheClient(r)


def get_application_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    settings: Settings = Depends(get_settings_dep),
) -> ApplicationService:
    repo = ApplicationRepository(db, op_timeout=settings.timeouts.database)
    return ApplicationService(repo, cache, cache_ttl=settings.cache.application_ttl)


def get_tracking_service(
    db: AsyncSession = Depends(get_db),
    applications: ApplicationService = Depends(get_application_service),
    settings: Settings = Depends(get_settings_dep),
) -> TrackingService:
    repo = TrackingRepository(db, op_timeout=settings.timeouts.database)
    return TrackingService(repo, applications)


def get_statistics_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    settings: Settings = Depends(get_settings_dep),
) -> StatisticsService:
    repo = TrackingRepository(db, op_timeout=settings.timeouts.long_running)
    return StatisticsService(repo, cache, cache_ttl=settings.cache.statistics_ttl)
