import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from accesslog.core.cache import CacheClient
from accesslog.core.envelope import envelope, error_response, ok
from accesslog.core.errors import CacheUnavailable, ServiceUnavailable
from accesslog.deps.db import get_db
from accesslog.deps.services import get_cache

logger = logging.getLogger("accesslog.health")

router = APIRouter(tags=["health"])


async def _check_store(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("store_unhealthy", extra={"error": str(exc)})
        return False


async def _check_cache(cache: CacheClient) -> bool:
    try:
        return await cache.ping()
    except CacheUnavailable as exc:
        logger.warning("cache_unhealthy", extra={"error": exc.message})
        return False


def _status(flag: bool) -> str:
    return "healthy" if flag else "unhealthy"


@router.get("/health")
async def health(db: AsyncSession = Depends(get_db), cache: CacheClient = Depends(get_cache)):
    store_ok = await _check_store(db)
    cache_ok = await _check_cache(cache)
    healthy = store_ok and cache_ok
    body = {
        "status": _status(healthy),
        "services": {"database": _status(store_ok), "redis": _status(cache_ok)},
    }
    if not healthy:
        return error_response(ServiceUnavailable("one or more dependencies are unhealthy"), data=body)
    return ok(body)


@router.get("/ready")
async def ready(db: AsyncSession = Depends(get_db), cache: CacheClient = Depends(get_cache)):
    store_ok = await _check_store(db)
    cache_ok = await _check_cache(cache)
    if store_ok and cache_ok:
        return ok({"status": "ready"})
    return error_response(
        ServiceUnavailable("not ready"),
        data={"status": "not_ready", "services": {"database": _status(store_ok), "redis": _status(cache_ok)}},
    )


@router.get("/live")
async def live():
    return envelope({"status": "alive"})
