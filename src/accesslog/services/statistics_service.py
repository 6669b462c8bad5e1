import logging
import re
from datetime import date, datetime, time, timedelta, timezone

from accesslog.core.cache import CacheClient
from accesslog.core.errors import CacheUnavailable, ValidationFailed
from accesslog.repositories.tracking_repository import GROUP_BY_VALUES, TrackingRepository

logger = logging.getLogger("accesslog.statistics")

DEFAULT_TOP_N = 10
MAX_TOP_N = 100
MAX_BUCKETS = 24 * 366
PARAM_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")


def stats_cache_key(app_id: str, start: datetime, end: datetime, group_by: str, limit: int) -> str:
    return f"stats:{app_id}:{start.isoformat()}:{end.isoformat()}:{group_by}:{limit}"


def custom_stats_cache_key(app_id: str, param: str, start: datetime, end: datetime, limit: int) -> str:
    return f"stats:custom:{app_id}:{param}:{start.isoformat()}:{end.isoformat()}:{limit}"


def parse_date_param(value: str, name: str, end_of_day: bool = False) -> datetime:
    """
    Accept YYYY-MM-DD or an RFC 3339 timestamp.

    A bare end date covers the whole day.
    """
    value = (value or "").strip()
    if not value:
        raise ValidationFailed(f"{name} is required", details={"field": name})
    if len(value) == 10:
        try:
            day = date.fromisoformat(value)
        except ValueError:
            raise ValidationFailed(f"{name} must be YYYY-MM-DD or RFC 3339", details={"field": name}) from None
        t = time.max if end_of_day else time.min
        return datetime.combine(day, t, tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00").replace("z", "+00:00"))
    except ValueError:
        raise ValidationFailed(f"{name} must be YYYY-MM-DD or RFC 3339", details={"field": name}) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def bucket_floor(value: datetime, group_by: str) -> datetime:
    value = value.astimezone(timezone.utc)
    if group_by == "hour":
        return value.replace(minute=0, second=0, microsecond=0)
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def bucket_count(start: datetime, end: datetime, group_by: str) -> int:
    step = timedelta(hours=1) if group_by == "hour" else timedelta(days=1)
    return (bucket_floor(end, group_by) - bucket_floor(start, group_by)) // step + 1


def fill_buckets(counts: dict[datetime, int], start: datetime, end: datetime, group_by: str) -> list[dict]:
    step = timedelta(hours=1) if group_by == "hour" else timedelta(days=1)
    series = []
    current = bucket_floor(start, group_by)
    last = bucket_floor(end, group_by)
    while current <= last:
        series.append({"timestamp": current.isoformat(), "count": counts.get(current, 0)})
        current += step
    return series


class StatisticsService:
    """Tenant rollups over a closed interval, cached briefly."""

    def __init__(self, repo: TrackingRepository, cache: CacheClient, cache_ttl: int = 30):
        self.repo = repo
        self.cache = cache
        self.cache_ttl = cache_ttl

    async def get_statistics(
        self,
        app_id: str,
        start: datetime,
        end: datetime,
        group_by: str = "day",
        limit: int = DEFAULT_TOP_N,
    ) -> dict:
        if start > end:
            raise ValidationFailed("start_date must not be after end_date")
        if group_by not in GROUP_BY_VALUES:
            raise ValidationFailed("group_by must be one of: hour, day", details={"field": "group_by"})
        if not 1 <= limit <= MAX_TOP_N:
            raise ValidationFailed(f"limit must be between 1 and {MAX_TOP_N}", details={"field": "limit"})
        buckets = bucket_count(start, end, group_by)
        if buckets > MAX_BUCKETS:
            raise ValidationFailed(
                f"range too large for group_by={group_by}",
                details={"buckets": buckets, "max_buckets": MAX_BUCKETS},
            )

        key = stats_cache_key(app_id, start, end, group_by, limit)
        cached = await self._cache_get(app_id, key)
        if cached is not None:
            return cached

        stats = await self._compute(app_id, start, end, group_by, limit)
        await self._cache_put(app_id, key, stats)
        return stats

    async def get_custom_param_stats(
        self,
        app_id: str,
        param: str,
        start: datetime,
        end: datetime,
        limit: int = DEFAULT_TOP_N,
    ) -> dict:
        """Value distribution of one custom parameter over the interval."""
        if not PARAM_NAME_RE.match(param or ""):
            raise ValidationFailed(
                "param_name must be 1-64 letters, digits, dots, dashes or underscores",
                details={"field": "param_name"},
            )
        if start > end:
            raise ValidationFailed("start_date must not be after end_date")
        if not 1 <= limit <= MAX_TOP_N:
            raise ValidationFailed(f"limit must be between 1 and {MAX_TOP_N}", details={"field": "limit"})

        key = custom_stats_cache_key(app_id, param, start, end, limit)
        cached = await self._cache_get(app_id, key)
        if cached is not None:
            return cached

        values = await self.repo.top_custom_values(param, app_id, start, end, limit)
        stats = {
            "app_id": app_id,
            "param_name": param,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "values": [{"value": v, "count": n} for v, n in values],
        }
        await self._cache_put(app_id, key, stats)
        return stats

    async def _cache_get(self, app_id: str, key: str) -> dict | None:
        try:
            return await self.cache.get_json(key)
        except CacheUnavailable as exc:
            logger.warning("statistics_cache_read_failed", extra={"app_id": app_id, "error": exc.message})
            return None

    async def _cache_put(self, app_id: str, key: str, stats: dict) -> None:
        try:
            await self.cache.set_json(key, stats, self.cache_ttl)
        except CacheUnavailable as exc:
            logger.warning("statistics_cache_write_failed", extra={"app_id": app_id, "error": exc.message})

    async def _compute(self, app_id: str, start: datetime, end: datetime, group_by: str, limit: int) -> dict:
        repo = self.repo
        total = await repo.count_in_range(app_id, start, end)
        visitors = await repo.count_distinct("visitor_id", app_id, start, end)
        sessions = await repo.count_distinct("session_id", app_id, start, end)
        pages = await repo.top_values("page_url", app_id, start, end, limit)
        referrers = await repo.top_values("referrer", app_id, start, end, limit)
        agents = await repo.top_values("user_agent", app_id, start, end, limit)
        countries = await repo.top_values("country", app_id, start, end, limit)
        spans = await repo.session_spans(app_id, start, end)
        buckets = await repo.time_buckets(app_id, start, end, group_by)

        # single-event sessions count as zero-length
        average = sum(s.duration_seconds for s in spans) / len(spans) if spans else 0.0

        return {
            "app_id": app_id,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "group_by": group_by,
            "total_requests": total,
            "unique_visitors": visitors,
            "unique_sessions": sessions,
            "average_session_duration": round(average, 3),
            "top_pages": [{"url": v, "count": n} for v, n in pages],
            "top_referrers": [{"referrer": v, "count": n} for v, n in referrers],
            "top_user_agents": [{"user_agent": v, "count": n} for v, n in agents],
            "top_countries": [{"country": v, "count": n} for v, n in countries],
            "time_series": fill_buckets(buckets, start, end, group_by),
        }
