import asyncio
import logging
from datetime import timedelta

from accesslog.config import Settings
from accesslog.core.errors import AccessLogError
from accesslog.deps import db
from accesslog.models.base import utcnow
from accesslog.repositories.tracking_repository import TrackingRepository

logger = logging.getLogger("accesslog.worker")


async def cleanup_once(settings: Settings) -> int:
    """Delete every event older than the retention window; returns rows removed."""
    if settings.worker.retention_days <= 0:
        return 0
    cutoff = utcnow() - timedelta(days=settings.worker.retention_days)
    async with db.SessionLocal() as session:
        repo = TrackingRepository(session, op_timeout=settings.timeouts.long_running)
        deleted = await repo.delete_by_time_range(None, cutoff)
    logger.info("retention_cleanup", extra={"deleted": deleted, "cutoff": cutoff.isoformat()})
    return deleted


async def run_worker(settings: Settings, stop: asyncio.Event) -> None:
    db.init_db(settings.database)
    logger.info(
        "worker_started",
        extra={
            "retention_days": settings.worker.retention_days,
            "interval": settings.worker.cleanup_interval,
        },
    )
    try:
        while not stop.is_set():
            try:
                await cleanup_once(settings)
            except AccessLogError as exc:
                # next tick retries
                logger.error("retention_cleanup_failed", extra={"code": exc.code, "error": exc.message})
            try:
                await asyncio.wait_for(stop.wait(), timeout=settings.worker.cleanup_interval)
            except asyncio.TimeoutError:
                pass
    finally:
        await db.close_db()
        logger.info("worker_stopped")
